"""Test fixtures for the web layer."""

import pytest
from fastapi.testclient import TestClient

from app.dependencies import clear_sessions
from app.main import app

PARSE_RESULT = {
    "success": True,
    "data": {"move": {"type": "full_pack"}},
    "confidence": {"move.type": 0.95},
    "message": "포장이사로 확인했어요",
    "error": None,
}


@pytest.fixture
def client(tmp_output_dir, monkeypatch):
    """Create a TestClient with output directed to temp directory and a canned parser."""
    monkeypatch.setattr("intake.conversation.parse_moving_input", lambda text: dict(PARSE_RESULT))
    clear_sessions()
    yield TestClient(app)
    clear_sessions()


@pytest.fixture
def created_request(client):
    """Create a request and return its id."""
    response = client.post("/estimates", json={"platform": "mobile"})
    return response.json()["requestId"]


@pytest.fixture
def complete_form():
    """Return a form payload answering every required field."""
    return {
        "move": {
            "category": "one_room",
            "type": "truck",
            "schedule": {"dateType": "exact", "date": "2025-06-01"},
            "timeSlot": "morning",
        },
        "departure": {"address": "서울 강남구 역삼동", "floor": 3, "hasElevator": True, "squareFootage": 20},
        "arrival": {"address": "서울 마포구 합정동", "floor": 2, "hasElevator": False},
        "contact": {"name": "홍길동", "phone": "010-1234-5678"},
    }
