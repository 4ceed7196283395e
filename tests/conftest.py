"""Shared test fixtures for the moving-request intake test suite."""

import pytest

from intake.moving_schema import create_default_schema
from intake.schema_paths import set_by_path


@pytest.fixture(autouse=True)
def set_test_environment(monkeypatch):
    """Ensure all tests run with ENVIRONMENT=test."""
    monkeypatch.setenv("ENVIRONMENT", "test")


@pytest.fixture
def tmp_output_dir(monkeypatch, tmp_path):
    """Redirect OUTPUT_DIR to a temporary directory for test isolation."""
    import config.settings as settings
    import intake.request_store as store

    monkeypatch.setattr(settings, "OUTPUT_DIR", tmp_path)
    # Also patch it in modules that import OUTPUT_DIR at module level
    monkeypatch.setattr(store, "OUTPUT_DIR", tmp_path)
    return tmp_path


REQUIRED_VALUES = {
    "move.category": "one_room",
    "move.type": "truck",
    "move.schedule": {"dateType": "exact", "date": "2025-06-01", "dateFrom": None, "dateTo": None},
    "move.timeSlot": "morning",
    "departure.address": "강남구 역삼동",
    "departure.floor": 3,
    "departure.hasElevator": "yes",
    "departure.squareFootage": "15_25",
    "arrival.address": "마포구 합정동",
    "arrival.floor": 2,
    "arrival.hasElevator": "no",
    "contact.name": "홍길동",
    "contact.phone": "010-1234-5678",
}


@pytest.fixture
def required_values():
    """Return valid values for all 13 required paths."""
    return dict(REQUIRED_VALUES)


@pytest.fixture
def blank_schema():
    """Return a default record with a fixed request id."""
    return create_default_schema(request_id="req-test-001")


@pytest.fixture
def filled_schema(blank_schema):
    """Return a record with every required field answered."""
    schema = blank_schema
    for path, value in REQUIRED_VALUES.items():
        schema = set_by_path(schema, path, value)
    schema = set_by_path(schema, "departure.floorStatus", "known")
    schema = set_by_path(schema, "arrival.floorStatus", "known")
    return schema


@pytest.fixture
def fake_parser():
    """Return an async parse collaborator that replays queued results."""

    class FakeParser:
        def __init__(self):
            self.results = []
            self.calls = []

        async def __call__(self, text):
            self.calls.append(text)
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

    return FakeParser()
