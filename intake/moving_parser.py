"""Free-text moving information extraction.

Sends the user's message to the LLM with an extraction prompt and converts
the JSON reply into a partial moving-request record plus a per-path
confidence map. Failures never raise: they come back as
``{"success": False, "error": ...}`` so the chat can apologise and carry on.
"""

import logging
from datetime import date

from intake.llm_client import LLMClientError, LLMUnavailableError, chat_json, is_available
from intake.moving_schema import (
    MOVE_CATEGORIES,
    MOVE_TYPES,
    TIME_SLOTS,
    UNKNOWN,
    blank_schedule,
    bucket_square_footage,
)
from intake.schema_paths import get_by_path

logger = logging.getLogger(__name__)

DEFAULT_REPLY = "정보를 입력받았어요!"

# Confidence keys the model reports under a different path than the record.
CONFIDENCE_ALIASES = {
    "move.date": "move.schedule",
}

SYSTEM_PROMPT = """당신은 이사 정보를 추출하는 AI 어시스턴트입니다.
사용자의 자연어 입력에서 이사 관련 정보를 정확하게 추출하여 JSON 형식으로 반환합니다.

## 오늘 날짜

{today}

## 추출 규칙

1. **이사 날짜**: "다음주 토요일", "3월 15일", "이번달 말" 등을 오늘 날짜 기준 YYYY-MM-DD 형식으로 변환
2. **주소**: 시/도, 구/군, 동/읍/면 단위까지 추출
3. **평수**: 숫자로 추출 (예: "20평" → 20)
4. **층수**: 숫자로 추출, 지하는 음수 (예: "지하1층" → -1, 반지하는 0)
5. **이사 형태**: truck(용달), general(일반), half_pack(반포장), full_pack(포장), storage(보관)
6. **주거 형태**: one_room, two_room, three_room_plus, officetel, apartment, villa_house, office

## 신뢰도 점수

각 필드에 대해 0.0~1.0 사이의 신뢰도 점수를 부여합니다:
- 0.8~1.0: 명확하게 언급됨
- 0.5~0.79: 추론됨 (확인 필요)
- 0.0~0.49: 불확실함

## 응답 형식

반드시 아래 JSON 객체로만 응답하세요:

{{
  "message": "사용자에게 보여줄 친근한 확인 메시지",
  "move": {{"category": "...", "type": "...", "date": "YYYY-MM-DD", "timeSlot": "early_morning/morning/early_afternoon/late_afternoon/flexible"}},
  "departure": {{"address": "...", "floor": 3, "hasElevator": true, "squareFootage": 20}},
  "arrival": {{"address": "...", "floor": 2, "hasElevator": false}},
  "contact": {{"name": "...", "phone": "..."}},
  "conditions": {{"extraRequests": "..."}},
  "confidence": {{"move.category": 0.9, "move.date": 0.8, "departure.address": 0.95}}
}}

존재하지 않는 필드는 생략하세요. message 필드는 항상 포함하세요."""


def build_system_prompt(today: date | None = None) -> str:
    """Return the extraction prompt with today's date filled in."""
    return SYSTEM_PROMPT.format(today=(today or date.today()).isoformat())


def _failure(error: str) -> dict:
    return {"success": False, "data": None, "confidence": {}, "message": None, "error": error}


def _text(value) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _floor(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _enum(value, allowed) -> str | None:
    if isinstance(value, str) and value in allowed and value != UNKNOWN:
        return value
    return None


def _parse_date(value) -> str | None:
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError:
        return None


def _location_patch(raw: dict, with_footage: bool) -> dict:
    patch = {}
    address = _text(raw.get("address"))
    if address:
        patch["address"] = address
    floor = _floor(raw.get("floor"))
    if floor is not None:
        patch["floor"] = floor
        patch["floorStatus"] = "known"
    elevator = raw.get("hasElevator")
    if isinstance(elevator, bool):
        patch["hasElevator"] = "yes" if elevator else "no"
        patch["transportMethod"] = "elevator" if elevator else "stairs"
    footage = raw.get("squareFootage")
    if with_footage and isinstance(footage, (int, float)) and not isinstance(footage, bool) and footage > 0:
        patch["squareFootage"] = bucket_square_footage(footage)
    return patch


def to_partial_schema(parsed: dict) -> dict:
    """Convert the model's JSON reply into a partial moving-request record.

    Values outside the record's enumerations, malformed dates and
    non-integer floors are dropped rather than written.
    """
    result = {}

    move = parsed.get("move")
    if isinstance(move, dict):
        patch = {}
        for key, allowed in (("category", MOVE_CATEGORIES), ("type", MOVE_TYPES), ("timeSlot", TIME_SLOTS)):
            value = _enum(move.get(key), allowed)
            if value:
                patch[key] = value
        move_date = _parse_date(move["date"]) if move.get("date") else None
        if move_date:
            patch["schedule"] = {**blank_schedule(), "dateType": "exact", "date": move_date}
        if patch:
            result["move"] = patch

    for section, with_footage in (("departure", True), ("arrival", False)):
        raw = parsed.get(section)
        if isinstance(raw, dict):
            patch = _location_patch(raw, with_footage)
            if patch:
                result[section] = patch

    conditions = parsed.get("conditions")
    if isinstance(conditions, dict) and _text(conditions.get("extraRequests")):
        result["conditions"] = {"extraRequests": _text(conditions["extraRequests"])}

    contact = parsed.get("contact")
    if isinstance(contact, dict):
        patch = {key: _text(contact.get(key)) for key in ("name", "phone") if _text(contact.get(key))}
        if patch:
            result["contact"] = patch

    return result


_MISSING = object()


def extract_confidence(parsed: dict, data: dict) -> dict:
    """Return the confidence map restricted to paths present in ``data``.

    Keys are normalised through CONFIDENCE_ALIASES, non-numeric scores are
    dropped and the rest clamped to [0, 1].
    """
    raw = parsed.get("confidence")
    if not isinstance(raw, dict):
        return {}
    confidence = {}
    for key, score in raw.items():
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            continue
        path = CONFIDENCE_ALIASES.get(key, key)
        if get_by_path(data, path, _MISSING) is _MISSING:
            continue
        confidence[path] = max(0.0, min(1.0, float(score)))
    return confidence


def parse_moving_input(text: str, today: date | None = None) -> dict:
    """Extract moving information from a free-text message.

    Args:
        text: The user's message.
        today: Reference date for relative expressions (defaults to today).

    Returns:
        Dict with ``success``, ``data`` (partial record or None),
        ``confidence`` (path -> 0..1), ``message`` (reply to show) and
        ``error`` (human-readable reason when ``success`` is False).
    """
    if not text or not text.strip():
        return _failure("입력 내용이 비어 있어요")

    if not is_available():
        logger.info("LLM unavailable, free-text parsing skipped")
        return _failure("AI 분석을 사용할 수 없어요. 단계별 입력을 이용해주세요.")

    try:
        parsed = chat_json(build_system_prompt(today), text.strip())
    except (LLMUnavailableError, LLMClientError) as e:
        logger.warning("Moving info extraction failed: %s", e)
        return _failure("입력을 분석하지 못했어요. 다시 시도해주세요.")

    data = to_partial_schema(parsed)
    return {
        "success": True,
        "data": data,
        "confidence": extract_confidence(parsed, data),
        "message": _text(parsed.get("message")) or DEFAULT_REPLY,
        "error": None,
    }
