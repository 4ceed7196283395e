"""Guided-flow step catalog.

Defines the 16 guided questions in order, the tip cards shown before some of
them, the recovery questions used for required fields that are still empty
once the guided sequence ends, and two strategy maps keyed by step id:

- ``SKIP_CONDITIONS``: ``(schema) -> bool``; True removes the step from the
  active sequence.
- ``TRANSFORMS``: ``(value, schema) -> patch``; converts an answer into a
  section patch. Steps without a transform write the answer directly to
  their ``schema_path``.

Both maps hold pure functions only.
"""

from dataclasses import dataclass, field
from datetime import date

from intake.moving_schema import (
    CARRIERS,
    CONTACT_TIMES,
    MOVE_CATEGORY_LABELS,
    MOVE_TYPE_LABELS,
    REQUIRED_FIELDS,
    SQUARE_FOOTAGE_LABELS,
    TRANSPORT_METHOD_LABELS,
    TRANSPORT_METHODS,
    UNKNOWN,
    blank_schedule,
)

INPUT_TYPES = {
    "calendar", "select", "card", "button_list", "address",
    "number", "toggle_list", "text", "phone_verify",
}


@dataclass(frozen=True)
class StepOption:
    """A selectable answer (button, card or toggle)."""

    label: str
    value: str
    description: str = ""
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class TipCard:
    """Advice shown just before a step's question."""

    id: str
    badge: str
    badge_color: str
    title: str
    description: str


@dataclass(frozen=True)
class GuidedStep:
    """One question in the guided sequence (immutable at runtime)."""

    id: str
    step_number: int
    question: str
    input_type: str
    schema_path: str
    required: bool
    description: str = ""
    options: tuple[StepOption, ...] = ()
    tip_card: TipCard | None = None
    placeholder: str = ""
    field_path: str | None = field(default=None, compare=False)


# ---------------------------------------------------------------------------
# Tip cards
# ---------------------------------------------------------------------------

TIP_CARDS = {
    "peak_season": TipCard(
        id="peak_season",
        badge="성수기 안내",
        badge_color="yellow",
        title="이 날짜는 이사 성수기예요",
        description="금요일·주말·공휴일 전날은 평일 대비 20~30% 비쌀 수 있어요",
    ),
    "truck_count": TipCard(
        id="truck_count",
        badge="트럭 선택 팁",
        badge_color="blue",
        title="아래 가구가 3개 이상이라면 2대가 적당해요",
        description="양문형 냉장고 / 옷장 / 더블 이상 침대 / 3인용 소파 중 3개",
    ),
    "worker_participation": TipCard(
        id="worker_participation",
        badge="작업인원 팁",
        badge_color="green",
        title="무거운 짐을 함께 옮길 수 있다면 약 13만원 저렴해요",
        description="냉장고, 옷장, 침대, 소파 등",
    ),
    "ladder_truck": TipCard(
        id="ladder_truck",
        badge="사다리차 안내",
        badge_color="orange",
        title="3층 이상이고 엘리베이터가 없으면 사다리차를 추천해요",
        description="사다리차 비용: 5~15만원",
    ),
}


# ---------------------------------------------------------------------------
# Shared option lists
# ---------------------------------------------------------------------------

CATEGORY_OPTIONS = tuple(
    StepOption(label=label, value=value)
    for value, label in MOVE_CATEGORY_LABELS.items()
    if value != UNKNOWN
) + (StepOption(label="모르겠어요", value=UNKNOWN),)

SQUARE_FOOTAGE_OPTIONS = tuple(
    StepOption(label=label, value=value)
    for value, label in SQUARE_FOOTAGE_LABELS.items()
    if value != UNKNOWN
) + (StepOption(label="모르겠어요", value=UNKNOWN),)

MOVE_TYPE_OPTIONS = (
    StepOption(
        label=MOVE_TYPE_LABELS["truck"], value="truck",
        description="운반만 해드려요. 짐 포장과 정리는 직접 해야 해요",
        tags=("가장 저렴",),
    ),
    StepOption(
        label=MOVE_TYPE_LABELS["general"], value="general",
        description="운반 + 큰 가구 배치까지 해드려요",
        tags=("인기",),
    ),
    StepOption(
        label=MOVE_TYPE_LABELS["half_pack"], value="half_pack",
        description="큰 짐은 포장해드리고, 잔짐은 직접 포장해주세요",
    ),
    StepOption(
        label=MOVE_TYPE_LABELS["full_pack"], value="full_pack",
        description="포장, 운반, 정리 모두 해드려요",
        tags=("프리미엄",),
    ),
    StepOption(
        label=MOVE_TYPE_LABELS["storage"], value="storage",
        description="이사 전후 짐을 보관했다가 옮겨드려요",
    ),
)

TIME_SLOT_OPTIONS = (
    StepOption(label="오전 (이른) 06~09시", value="early_morning"),
    StepOption(label="오전 09~12시", value="morning"),
    StepOption(label="오후 (이른) 12~15시", value="early_afternoon"),
    StepOption(label="오후 (늦은) 15~18시", value="late_afternoon"),
    StepOption(label="시간 협의", value="flexible"),
)

TRANSPORT_OPTIONS = (
    StepOption(label=TRANSPORT_METHOD_LABELS["elevator"], value="elevator", description="엘리베이터로 운반"),
    StepOption(label=TRANSPORT_METHOD_LABELS["stairs"], value="stairs", description="계단으로 운반"),
    StepOption(label=TRANSPORT_METHOD_LABELS["ladder"], value="ladder", description="사다리차 필요"),
)

VEHICLE_OPTIONS = (
    StepOption(label="1대", value="1"),
    StepOption(label="2대", value="2"),
    StepOption(label="모르겠어요", value=UNKNOWN),
)

PARTICIPATION_OPTIONS = (
    StepOption(label="네, 함께 할게요", value="true"),
    StepOption(label="아니요, 업체분만 작업해요", value="false"),
)

ADDITIONAL_SERVICE_OPTIONS = (
    StepOption(label="에어컨 이전 설치", value="airconInstall", description="에어컨 이설 서비스"),
    StepOption(label="입주 청소", value="cleaning", description="새 집 입주 전 청소"),
    StepOption(label="정리 정돈", value="organizing", description="짐 정리 도움"),
    StepOption(label="폐기물 처리", value="disposal", description="버릴 가구/짐 처리"),
)


# ---------------------------------------------------------------------------
# The guided sequence
# ---------------------------------------------------------------------------

GUIDED_STEPS = (
    GuidedStep(
        id="move_date",
        step_number=1,
        question="이사 예정일이 언제인가요?",
        description="날짜가 확정되지 않았다면 대략적인 기간을 선택해주세요",
        input_type="calendar",
        schema_path="move.schedule",
        required=True,
        tip_card=TIP_CARDS["peak_season"],
    ),
    GuidedStep(
        id="move_category",
        step_number=2,
        question="어떤 곳에서 이사하시나요?",
        description="현재 살고 계신 주거 형태를 선택해주세요",
        input_type="card",
        options=CATEGORY_OPTIONS,
        schema_path="move.category",
        required=True,
    ),
    GuidedStep(
        id="square_footage",
        step_number=3,
        question="현재 살고 계신 곳의 평수는 어떻게 되나요?",
        input_type="select",
        options=SQUARE_FOOTAGE_OPTIONS,
        schema_path="departure.squareFootage",
        required=True,
    ),
    GuidedStep(
        id="move_type",
        step_number=4,
        question="어떤 이사를 원하시나요?",
        description="서비스 범위에 따라 가격이 달라져요",
        input_type="card",
        options=MOVE_TYPE_OPTIONS,
        schema_path="move.type",
        required=True,
    ),
    GuidedStep(
        id="time_slot",
        step_number=5,
        question="이사 시작 시간대를 선택해주세요",
        input_type="button_list",
        options=TIME_SLOT_OPTIONS,
        schema_path="move.timeSlot",
        required=True,
    ),
    GuidedStep(
        id="departure_address",
        step_number=6,
        question="출발지 주소를 알려주세요",
        description="짐을 가져갈 현재 주소예요",
        input_type="address",
        schema_path="departure.address",
        required=True,
        placeholder="주소 검색 (예: 강남구 역삼동)",
    ),
    GuidedStep(
        id="departure_transport",
        step_number=7,
        question="출발지에서 짐을 어떻게 운반하나요?",
        input_type="button_list",
        options=TRANSPORT_OPTIONS,
        schema_path="departure.hasElevator",
        required=True,
        tip_card=TIP_CARDS["ladder_truck"],
    ),
    GuidedStep(
        id="departure_floor",
        step_number=8,
        question="출발지는 몇 층인가요?",
        description="지하는 -1, 반지하는 0으로 입력해주세요",
        input_type="number",
        schema_path="departure.floor",
        required=True,
        placeholder="층수 입력",
    ),
    GuidedStep(
        id="arrival_address",
        step_number=9,
        question="도착지 주소를 알려주세요",
        description="짐을 옮길 새 주소예요",
        input_type="address",
        schema_path="arrival.address",
        required=True,
        placeholder="주소 검색 (예: 마포구 합정동)",
    ),
    GuidedStep(
        id="arrival_transport",
        step_number=10,
        question="도착지에서 짐을 어떻게 운반하나요?",
        input_type="button_list",
        options=TRANSPORT_OPTIONS,
        schema_path="arrival.hasElevator",
        required=True,
    ),
    GuidedStep(
        id="arrival_floor",
        step_number=11,
        question="도착지는 몇 층인가요?",
        description="지하는 -1, 반지하는 0으로 입력해주세요",
        input_type="number",
        schema_path="arrival.floor",
        required=True,
        placeholder="층수 입력",
    ),
    GuidedStep(
        id="vehicle_preference",
        step_number=12,
        question="트럭은 몇 대가 필요하실까요?",
        description="짐 양에 따라 선택해주세요",
        input_type="button_list",
        options=VEHICLE_OPTIONS,
        schema_path="conditions.vehiclePreference",
        required=False,
        tip_card=TIP_CARDS["truck_count"],
    ),
    GuidedStep(
        id="customer_participation",
        step_number=13,
        question="짐 운반을 함께 도와주실 수 있나요?",
        description="무거운 가구를 함께 옮기면 비용이 절약돼요",
        input_type="button_list",
        options=PARTICIPATION_OPTIONS,
        schema_path="conditions.customerParticipation",
        required=False,
        tip_card=TIP_CARDS["worker_participation"],
    ),
    GuidedStep(
        id="extra_requests",
        step_number=14,
        question="짐 정보나 요청사항을 자유롭게 적어주세요",
        description="냉장고, 세탁기, 침대 등 주요 짐과 특별히 조심해야 할 물건이 있다면 알려주세요",
        input_type="text",
        schema_path="conditions.extraRequests",
        required=True,
        placeholder="예: 냉장고 양문형 1대, 드럼세탁기 1대, 퀸침대 1개 있어요.",
    ),
    GuidedStep(
        id="additional_services",
        step_number=15,
        question="추가로 필요한 서비스가 있으신가요?",
        description="선택하지 않아도 괜찮아요",
        input_type="toggle_list",
        options=ADDITIONAL_SERVICE_OPTIONS,
        schema_path="services",
        required=False,
    ),
    GuidedStep(
        id="contact_verification",
        step_number=16,
        question="마지막으로 연락처를 확인해주세요",
        description="견적을 받으실 연락처를 인증해주세요",
        input_type="phone_verify",
        schema_path="contact",
        required=True,
    ),
)

_STEPS_BY_ID = {step.id: step for step in GUIDED_STEPS}


# ---------------------------------------------------------------------------
# Skip predicates
# ---------------------------------------------------------------------------

# Packing and storage tiers bundle labor, so truck count and helping hands
# are not asked.
LABOR_BUNDLED_TYPES = frozenset({"full_pack", "half_pack", "storage"})


def _labor_bundled(schema: dict) -> bool:
    return schema["move"]["type"] in LABOR_BUNDLED_TYPES


def _bare_truck(schema: dict) -> bool:
    return schema["move"]["type"] == "truck"


SKIP_CONDITIONS = {
    "vehicle_preference": _labor_bundled,
    "customer_participation": _labor_bundled,
    "additional_services": _bare_truck,
}


def is_skipped(step: GuidedStep, schema: dict) -> bool:
    """Return True if the step's skip predicate holds for ``schema``."""
    predicate = SKIP_CONDITIONS.get(step.id)
    return bool(predicate and predicate(schema))


def active_steps(schema: dict) -> list[GuidedStep]:
    """Return the catalog minus currently skipped steps, in catalog order."""
    return [step for step in GUIDED_STEPS if not is_skipped(step, schema)]


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------

_TRANSPORT_ALIASES = {"yes": "elevator", "no": "stairs"}
_DONT_KNOW_ANSWERS = frozenset({"", UNKNOWN, "모름", "모르겠어요"})


def _is_dont_know(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() in _DONT_KNOW_ANSWERS)


def _iso_date(value) -> str:
    """Validate and normalise a YYYY-MM-DD date string."""
    return date.fromisoformat(str(value).strip()).isoformat()


def transform_schedule(value, schema: dict) -> dict:
    """Convert a date answer into a ``move.schedule`` patch.

    Accepts an ISO date string (exact date), ``"unknown"``/empty (unresolved),
    or a mapping with ``date`` or ``dateFrom``/``dateTo`` keys.
    """
    schedule = blank_schedule()
    if isinstance(value, dict):
        date_type = value.get("dateType")
        if date_type is None:
            if value.get("dateFrom") or value.get("dateTo"):
                date_type = "range"
            elif value.get("date"):
                date_type = "exact"
            else:
                date_type = UNKNOWN
        if date_type == "exact":
            schedule.update(dateType="exact", date=_iso_date(value["date"]) if value.get("date") else None)
        elif date_type == "range":
            schedule.update(
                dateType="range",
                dateFrom=_iso_date(value["dateFrom"]) if value.get("dateFrom") else None,
                dateTo=_iso_date(value["dateTo"]) if value.get("dateTo") else None,
            )
        elif date_type != UNKNOWN:
            raise ValueError(f"Invalid dateType: {date_type}")
    elif not _is_dont_know(value):
        schedule.update(dateType="exact", date=_iso_date(value))
    return {"move": {"schedule": schedule}}


def resolve_ladder_truck(departure_method: str, arrival_method: str, current: str) -> str:
    """Derive ``services.ladderTruck`` from both locations' transport methods.

    Any location using a ladder truck makes it required. The flag is only
    cleared (to ``not_required``) when it was required and neither location
    still needs one; otherwise the current value is kept.
    """
    if "ladder" in (departure_method, arrival_method):
        return "required"
    if current == "required":
        return "not_required"
    return current


def _make_transport_transform(section: str):
    other = "arrival" if section == "departure" else "departure"

    def transform(value, schema: dict) -> dict:
        if _is_dont_know(value):
            method = UNKNOWN
        elif isinstance(value, str):
            method = _TRANSPORT_ALIASES.get(value.strip().lower(), value.strip().lower())
        else:
            raise ValueError(f"Invalid transport method: {value!r}")
        if method not in TRANSPORT_METHODS:
            raise ValueError(f"Invalid transport method: {value!r}")
        if method == "elevator":
            has_elevator = "yes"
        elif method == UNKNOWN:
            has_elevator = UNKNOWN
        else:
            has_elevator = "no"
        methods = {section: method, other: schema[other]["transportMethod"]}
        ladder = resolve_ladder_truck(
            methods["departure"], methods["arrival"], schema["services"]["ladderTruck"],
        )
        return {
            section: {"transportMethod": method, "hasElevator": has_elevator},
            "services": {"ladderTruck": ladder},
        }

    transform.__name__ = f"transform_{section}_transport"
    return transform


def _make_floor_transform(section: str):
    def transform(value, schema: dict) -> dict:
        if _is_dont_know(value):
            return {section: {"floor": None, "floorStatus": UNKNOWN}}
        if isinstance(value, bool):
            raise ValueError(f"Invalid floor: {value!r}")
        try:
            floor = int(str(value).strip())
        except ValueError:
            raise ValueError(f"Invalid floor: {value!r}") from None
        return {section: {"floor": floor, "floorStatus": "known"}}

    transform.__name__ = f"transform_{section}_floor"
    return transform


def transform_participation(value, schema: dict) -> dict:
    """Convert a yes/no answer to ``conditions.customerParticipation``."""
    if isinstance(value, bool):
        participation = value
    elif str(value).strip().lower() in ("true", "yes"):
        participation = True
    elif str(value).strip().lower() in ("false", "no"):
        participation = False
    else:
        raise ValueError(f"Invalid participation answer: {value!r}")
    return {"conditions": {"customerParticipation": participation}}


_SERVICE_TOGGLES = tuple(option.value for option in ADDITIONAL_SERVICE_OPTIONS)


def transform_additional_services(value, schema: dict) -> dict:
    """Convert toggled service keys (list or mapping) into a services patch."""
    if isinstance(value, dict):
        selected = {key for key, enabled in value.items() if enabled}
    elif value is None:
        selected = set()
    elif isinstance(value, str):
        selected = {value} if value else set()
    else:
        selected = set(value)
    unknown = selected - set(_SERVICE_TOGGLES)
    if unknown:
        raise ValueError(f"Unknown services: {sorted(unknown)}")

    aircon = dict(schema["services"]["airconInstall"])
    aircon["needed"] = "airconInstall" in selected
    if aircon["needed"] and not aircon["qty"]:
        aircon["qty"] = 1
    if not aircon["needed"]:
        aircon["qty"] = 0
    return {
        "services": {
            "airconInstall": aircon,
            "cleaning": "cleaning" in selected,
            "organizing": "organizing" in selected,
            "disposal": "disposal" in selected,
        }
    }


_CONTACT_KEYS = ("name", "phone", "carrier", "preferredTime")
_CONTACT_CHOICES = {"carrier": CARRIERS, "preferredTime": CONTACT_TIMES}


def transform_contact(value, schema: dict) -> dict:
    """Copy verified contact details into the contact section.

    ``carrier`` and ``preferredTime`` must be canonical values (``"LGU+"``,
    not the ``"LG U+"`` label).
    """
    if not isinstance(value, dict):
        raise ValueError("Contact answer must be a mapping")
    patch = {}
    for key in _CONTACT_KEYS:
        if key in value:
            item = value[key]
            item = (item.strip() or None) if isinstance(item, str) else item
            choices = _CONTACT_CHOICES.get(key)
            if choices is not None and item is not None and item not in choices:
                raise ValueError(f"Invalid {key}: {item!r}")
            patch[key] = item
    return {"contact": patch}


TRANSFORMS = {
    "move_date": transform_schedule,
    "departure_transport": _make_transport_transform("departure"),
    "departure_floor": _make_floor_transform("departure"),
    "arrival_transport": _make_transport_transform("arrival"),
    "arrival_floor": _make_floor_transform("arrival"),
    "customer_participation": transform_participation,
    "additional_services": transform_additional_services,
    "contact_verification": transform_contact,
}


# ---------------------------------------------------------------------------
# Recovery questions (one per required field)
# ---------------------------------------------------------------------------

QUESTION_TEMPLATES = {
    "move.category": "어떤 공간에서 이사하시나요?",
    "move.type": "어떤 이사 서비스를 원하시나요?",
    "move.schedule": "이사 예정일이 언제인가요?",
    "move.timeSlot": "희망 시간대를 알려주세요",
    "departure.address": "출발지 주소를 알려주세요",
    "departure.floor": "출발지 층수를 알려주세요",
    "departure.hasElevator": "출발지에 엘리베이터가 있나요?",
    "departure.squareFootage": "출발지 평수를 알려주세요",
    "arrival.address": "도착지 주소를 알려주세요",
    "arrival.floor": "도착지 층수를 알려주세요",
    "arrival.hasElevator": "도착지에 엘리베이터가 있나요?",
    "contact.name": "이름을 알려주세요",
    "contact.phone": "연락처를 알려주세요",
}

# (input type, options, transform key) per required field; options are
# shared with the guided step asking the same thing.
_RECOVERY_SHAPES = {
    "move.category": ("card", CATEGORY_OPTIONS, None),
    "move.type": ("card", MOVE_TYPE_OPTIONS, None),
    "move.schedule": ("calendar", (), "move_date"),
    "move.timeSlot": ("button_list", TIME_SLOT_OPTIONS, None),
    "departure.address": ("address", (), None),
    "departure.floor": ("number", (), "departure_floor"),
    "departure.hasElevator": ("button_list", TRANSPORT_OPTIONS, "departure_transport"),
    "departure.squareFootage": ("select", SQUARE_FOOTAGE_OPTIONS, None),
    "arrival.address": ("address", (), None),
    "arrival.floor": ("number", (), "arrival_floor"),
    "arrival.hasElevator": ("button_list", TRANSPORT_OPTIONS, "arrival_transport"),
    "contact.name": ("text", (), None),
    "contact.phone": ("text", (), None),
}


def recovery_step_id(field_path: str) -> str:
    """Return the recovery step id for a required field path."""
    return "recover_" + field_path.replace(".", "_")


def question_template(field_path: str) -> str:
    """Return the human question used to ask for a missing field."""
    return QUESTION_TEMPLATES.get(field_path, f"{field_path}을(를) 입력해주세요")


def _build_recovery_steps() -> dict:
    steps = {}
    for number, field_path in enumerate(REQUIRED_FIELDS, start=1):
        input_type, options, transform_key = _RECOVERY_SHAPES[field_path]
        step = GuidedStep(
            id=recovery_step_id(field_path),
            step_number=number,
            question=question_template(field_path),
            input_type=input_type,
            options=options,
            schema_path=field_path,
            required=True,
            field_path=field_path,
        )
        steps[field_path] = step
        if transform_key:
            TRANSFORMS[step.id] = TRANSFORMS[transform_key]
    return steps


RECOVERY_STEPS = _build_recovery_steps()
_RECOVERY_BY_ID = {step.id: step for step in RECOVERY_STEPS.values()}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_step(step_id: str) -> GuidedStep | None:
    """Look up a guided step by id."""
    return _STEPS_BY_ID.get(step_id)


def get_step_by_number(step_number: int) -> GuidedStep | None:
    """Look up a guided step by its ordinal."""
    for step in GUIDED_STEPS:
        if step.step_number == step_number:
            return step
    return None


def get_recovery_step(field_path: str) -> GuidedStep | None:
    """Return the recovery step asking for a required field."""
    return RECOVERY_STEPS.get(field_path)


def get_recovery_step_by_id(step_id: str) -> GuidedStep | None:
    """Look up a recovery step by its id."""
    return _RECOVERY_BY_ID.get(step_id)


def find_step_by_path(path: str) -> GuidedStep | None:
    """Return the guided step owning ``path``.

    A step owns its exact ``schema_path`` and every path beneath it
    (``contact.phone`` belongs to the step writing ``contact``).
    """
    for step in GUIDED_STEPS:
        if path == step.schema_path or path.startswith(step.schema_path + "."):
            return step
    return None


def build_patch(step: GuidedStep, value, schema: dict) -> dict | None:
    """Return the patch a step's transform produces, or None for direct writes."""
    transform = TRANSFORMS.get(step.id)
    if transform is None:
        return None
    return transform(value, schema)
