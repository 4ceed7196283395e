"""Local interpretation of free-text chat input.

Decides whether a message needs the AI parser at all, and resolves trivially
recognizable answers (an option label, a floor number, an ISO date) against
the step currently being asked, so those never cost an AI round-trip.
"""

import re
from datetime import date

from intake.moving_schema import UNKNOWN

MOVING_KEYWORDS = [
    # move type
    "이사", "용달", "포장", "반포장", "보관",
    # dwelling
    "원룸", "투룸", "쓰리룸", "오피스텔", "아파트", "빌라", "주택", "사무실",
    # location
    "에서", "으로", "까지", "층", "평",
    # date
    "월", "일", "주", "내일", "모레", "다음", "이번",
    # time
    "오전", "오후", "아침", "점심", "저녁",
    # cargo
    "짐", "가전", "가구", "냉장고", "세탁기", "침대", "옷장",
]

DATE_KEYWORDS = ["월", "일", "다음", "이번", "내일", "모레", "주말", "토", "일요일"]

DONT_KNOW_WORDS = frozenset({"unknown", "모름", "모르겠어요", "몰라요", "잘 모르겠어요"})

_SIMPLE_NUMBER = re.compile(r"^[\d\s]+$")
_YES_NO = [
    re.compile(r"^(네|예|응|맞아|그래|좋아|ㅇㅇ|ok|yes)$", re.IGNORECASE),
    re.compile(r"^(아니|아뇨|노|안|ㄴㄴ|no|nope)$", re.IGNORECASE),
]
_FLOOR = re.compile(r"^(-?\d+)\s*층?$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_QUESTION_MARKERS = ("뭐", "어떻게", "왜")
_COMMAND_PREFIXES = ("다시", "취소", "수정")


def count_keywords(text: str) -> int:
    """Count distinct moving keywords contained in ``text``."""
    lowered = text.lower()
    return sum(1 for keyword in MOVING_KEYWORDS if keyword in lowered)


def _option_matches_loosely(text: str, step) -> bool:
    lowered = text.lower()
    for option in step.options:
        label = option.label.lower()
        if label == lowered or lowered in label or label in lowered:
            return True
    return False


def should_call_ai(text: str, step=None) -> bool:
    """Return True if ``text`` likely carries information only the AI can extract.

    Short, numeric, yes/no and option-like inputs are handled locally;
    inputs mentioning at least two moving keywords, or long inputs, go to
    the parser.
    """
    trimmed = text.strip()
    if len(trimmed) < 5:
        return False
    if _SIMPLE_NUMBER.match(trimmed):
        return False
    if any(pattern.match(trimmed) for pattern in _YES_NO):
        return False
    if step is not None and step.options and _option_matches_loosely(trimmed, step):
        return False

    keywords = count_keywords(trimmed)
    if keywords >= 2:
        return True
    if len(trimmed) >= 20 and keywords >= 1:
        return True
    return len(trimmed) >= 30


def match_step_option(text: str, step):
    """Match ``text`` against a step's options.

    A case-insensitive exact match on label or value wins. Otherwise a
    substring match (either direction) is accepted only when exactly one
    option matches.

    Returns:
        The matching StepOption, or None.
    """
    lowered = text.strip().lower()
    if not lowered or step is None or not step.options:
        return None

    for option in step.options:
        if lowered in (option.label.lower(), str(option.value).lower()):
            return option

    candidates = [
        option for option in step.options
        if lowered in option.label.lower() or option.label.lower() in lowered
    ]
    if len(candidates) == 1:
        return candidates[0]
    return None


def _is_dont_know(text: str) -> bool:
    return text.strip().lower() in DONT_KNOW_WORDS


def _parse_iso_date(text: str) -> str | None:
    if not _ISO_DATE.match(text):
        return None
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        return None


def parse_local_answer(text: str, step):
    """Resolve ``text`` to an answer value for ``step`` without the AI.

    Returns:
        The value to feed to the step (option value, floor integer, ISO
        date, ``"unknown"`` or the text itself for short address/text
        answers), or None when the input needs the AI parser.
    """
    trimmed = text.strip()
    if step is None or not trimmed:
        return None

    option = match_step_option(trimmed, step)
    if option is not None:
        return option.value

    if step.input_type == "number":
        if _is_dont_know(trimmed):
            return UNKNOWN
        match = _FLOOR.match(trimmed)
        return int(match.group(1)) if match else None

    if step.input_type == "calendar":
        if _is_dont_know(trimmed):
            return UNKNOWN
        return _parse_iso_date(trimmed)

    if step.input_type in ("address", "text"):
        if is_valid_step_answer(trimmed, step) and not should_call_ai(trimmed, step):
            return trimmed
    return None


def is_valid_step_answer(text: str, step) -> bool:
    """Return True if ``text`` is a plausible answer for the step's input type."""
    trimmed = text.strip()
    input_type = step.input_type

    if input_type == "calendar":
        if _ISO_DATE.match(trimmed):
            return _parse_iso_date(trimmed) is not None
        return any(keyword in trimmed for keyword in DATE_KEYWORDS)
    if input_type == "number":
        return _FLOOR.match(trimmed) is not None
    if input_type in ("button_list", "card"):
        lowered = trimmed.lower()
        return any(
            lowered in (option.label.lower(), str(option.value).lower())
            for option in step.options
        )
    if input_type == "address":
        return len(trimmed) >= 5
    if input_type in ("text", "toggle_list", "select"):
        return len(trimmed) > 0
    if input_type == "phone_verify":
        digits = re.sub(r"\D", "", trimmed)
        return 10 <= len(digits) <= 11
    return True


def infer_intent(text: str) -> str:
    """Classify a message as ``question``, ``command`` or ``answer``."""
    trimmed = text.strip().lower()
    if trimmed.endswith("?") or any(marker in trimmed for marker in _QUESTION_MARKERS):
        return "question"
    if trimmed.startswith(_COMMAND_PREFIXES):
        return "command"
    return "answer"
