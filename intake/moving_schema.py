"""Canonical moving-request record (schema v2.1).

Guided answers, free-text parses and manual form edits all converge on the
structure built by ``create_default_schema``. Every leaf has an explicit
empty value (``None``, ``"unknown"`` or an empty collection); keys are never
left absent.
"""

import uuid
from datetime import datetime, timezone

from config.settings import DEFAULT_PLATFORM, SCHEMA_VERSION

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

UNKNOWN = "unknown"

MOVE_CATEGORIES = [
    "one_room", "two_room", "three_room_plus", "officetel",
    "apartment", "villa_house", "office", UNKNOWN,
]
MOVE_TYPES = ["truck", "general", "half_pack", "full_pack", "storage", UNKNOWN]
DATE_TYPES = ["exact", "range", UNKNOWN]
TIME_SLOTS = [
    "early_morning", "morning", "early_afternoon", "late_afternoon",
    "flexible", UNKNOWN,
]
YES_NO_UNKNOWN = ["yes", "no", UNKNOWN]
FLOOR_STATUSES = ["known", UNKNOWN]
SQUARE_FOOTAGES = ["under_10", "10_15", "15_25", "25_35", "35_45", "over_45", UNKNOWN]
BOX_RANGES = ["1_5", "6_10", "11_15", "16_20", "over_20", "none", UNKNOWN]
LADDER_TRUCK = ["required", "not_required", UNKNOWN]
CONTACT_TIMES = ["anytime", "morning", "afternoon", "evening"]
CARRIERS = ["SKT", "KT", "LGU+", "알뜰폰"]
INPUT_SOURCES = ["guided", "chat", "form", "mixed"]
CONFIDENCE_SOURCES = ["guided", "chat", "form", "system"]
VEHICLE_PREFERENCES = ["1", "2", UNKNOWN]
TRANSPORT_METHODS = ["elevator", "stairs", "ladder", UNKNOWN]

APPLIANCE_KEYS = ["refrigerator", "washer", "tv", "airConditioner", "dryer", "dishwasher"]
FURNITURE_KEYS = ["bed", "wardrobe", "sofa", "desk", "bookshelf", "diningTable"]
SPECIAL_KEYS = ["piano", "stoneBed", "safe", "aquarium"]

LOCATION_SECTIONS = ("departure", "arrival")

# Exactly these 13 paths gate completion and submission.
REQUIRED_FIELDS = (
    "move.category",
    "move.type",
    "move.schedule",
    "move.timeSlot",
    "departure.address",
    "departure.floor",
    "departure.hasElevator",
    "departure.squareFootage",
    "arrival.address",
    "arrival.floor",
    "arrival.hasElevator",
    "contact.name",
    "contact.phone",
)

# ---------------------------------------------------------------------------
# Korean display labels
# ---------------------------------------------------------------------------

MOVE_CATEGORY_LABELS = {
    "one_room": "원룸",
    "two_room": "투룸",
    "three_room_plus": "쓰리룸 이상",
    "officetel": "오피스텔",
    "apartment": "아파트",
    "villa_house": "빌라/주택",
    "office": "사무실",
    "unknown": "모름",
}

MOVE_TYPE_LABELS = {
    "truck": "용달이사",
    "general": "일반이사",
    "half_pack": "반포장이사",
    "full_pack": "포장이사",
    "storage": "보관이사",
    "unknown": "모름",
}

TIME_SLOT_LABELS = {
    "early_morning": "오전 (이른) 06:00~09:00",
    "morning": "오전 09:00~12:00",
    "early_afternoon": "오후 (이른) 12:00~15:00",
    "late_afternoon": "오후 (늦은) 15:00~18:00",
    "flexible": "시간 협의",
    "unknown": "모름",
}

SQUARE_FOOTAGE_LABELS = {
    "under_10": "10평 이하",
    "10_15": "10~15평",
    "15_25": "15~25평",
    "25_35": "25~35평",
    "35_45": "35~45평",
    "over_45": "45평 이상",
    "unknown": "모름",
}

BOX_RANGE_LABELS = {
    "1_5": "1~5개",
    "6_10": "6~10개",
    "11_15": "11~15개",
    "16_20": "16~20개",
    "over_20": "20개 초과",
    "none": "잔짐 없음",
    "unknown": "모름",
}

CARRIER_LABELS = {
    "SKT": "SKT",
    "KT": "KT",
    "LGU+": "LG U+",
    "알뜰폰": "알뜰폰",
}

CONTACT_TIME_LABELS = {
    "anytime": "언제든",
    "morning": "오전",
    "afternoon": "오후",
    "evening": "저녁",
}

TRANSPORT_METHOD_LABELS = {
    "elevator": "엘리베이터",
    "stairs": "계단",
    "ladder": "사다리차",
    "unknown": "모름",
}


# ---------------------------------------------------------------------------
# Default record
# ---------------------------------------------------------------------------

def now_iso() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def bucket_square_footage(pyeong) -> str:
    """Map a floor area in pyeong to its square-footage bucket."""
    if pyeong <= 10:
        return "under_10"
    if pyeong <= 15:
        return "10_15"
    if pyeong <= 25:
        return "15_25"
    if pyeong <= 35:
        return "25_35"
    if pyeong <= 45:
        return "35_45"
    return "over_45"


def _blank_cargo_item() -> dict:
    return {"has": False, "qty": 0, "note": ""}


def _blank_special_item() -> dict:
    return {"has": False, "note": ""}


def blank_schedule() -> dict:
    """Return an unresolved schedule."""
    return {"dateType": UNKNOWN, "date": None, "dateFrom": None, "dateTo": None}


def blank_location() -> dict:
    """Return an empty departure/arrival location.

    ``floorStatus`` stays ``None`` until the floor question is answered; it
    only becomes ``"unknown"`` when the user says they don't know.
    """
    return {
        "address": None,
        "detailAddress": None,
        "floor": None,
        "floorStatus": None,
        "hasElevator": UNKNOWN,
        "transportMethod": UNKNOWN,
        "parking": UNKNOWN,
        "squareFootage": None,
    }


def blank_status() -> dict:
    """Return the derived status section for an untouched record."""
    return {
        "completionRate": 0.0,
        "missingRequired": [],
        "fieldConfidence": {},
        "readyForSubmit": False,
        "submittedAt": None,
    }


def create_default_schema(request_id: str | None = None, platform: str | None = None) -> dict:
    """Create a new moving-request record with every field at its empty value.

    Args:
        request_id: Optional identifier; a UUID4 is generated when omitted.
        platform: ``mobile`` or ``desktop`` (defaults to DEFAULT_PLATFORM).

    Returns:
        The initialized record dictionary.
    """
    now = now_iso()
    return {
        "meta": {
            "requestId": request_id or str(uuid.uuid4()),
            "source": "guided",
            "platform": platform or DEFAULT_PLATFORM,
            "createdAt": now,
            "updatedAt": now,
            "version": SCHEMA_VERSION,
        },
        "move": {
            "category": UNKNOWN,
            "type": UNKNOWN,
            "schedule": blank_schedule(),
            "timeSlot": UNKNOWN,
        },
        "departure": blank_location(),
        "arrival": blank_location(),
        "cargo": {
            "appliances": {key: _blank_cargo_item() for key in APPLIANCE_KEYS},
            "furniture": {key: _blank_cargo_item() for key in FURNITURE_KEYS},
            "special": {
                **{key: _blank_special_item() for key in SPECIAL_KEYS},
                "custom": [],
            },
            "boxes": {"range": UNKNOWN, "exactCount": None},
        },
        "services": {
            "ladderTruck": UNKNOWN,
            "airconInstall": {"needed": False, "qty": 0},
            "cleaning": False,
            "organizing": False,
            "storage": {"needed": False, "durationDays": 0},
            "disposal": False,
        },
        "conditions": {
            "extraRequests": None,
            "vehiclePreference": None,
            "customerParticipation": None,
        },
        "contact": {
            "name": None,
            "phone": None,
            "carrier": None,
            "preferredTime": None,
        },
        "status": blank_status(),
    }


def backfill_defaults(record: dict) -> dict:
    """Return a copy of ``record`` with any missing keys filled from defaults.

    Stored records may predate a schema change; missing sections or leaves
    are restored to their empty values while present values win.
    """
    defaults = create_default_schema(
        request_id=record.get("meta", {}).get("requestId"),
    )
    return _fill_missing(record, defaults)


def _fill_missing(value, default):
    if not isinstance(default, dict) or not isinstance(value, dict):
        return value
    filled = dict(value)
    for key, default_value in default.items():
        if key not in filled:
            filled[key] = default_value
        else:
            filled[key] = _fill_missing(filled[key], default_value)
    return filled
