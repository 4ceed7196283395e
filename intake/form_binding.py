"""Two-way binding between the canonical record and the manual form.

The form works at a different granularity than the record: tri-state
yes/no answers are checkboxes (``True``/``False``/``None``), square-footage
buckets are a representative number of pyeong, and cargo is a list of
selected items. ``schema_to_form`` and ``form_to_schema`` convert every
section except ``meta`` and ``status``, which the form never edits.

``FormSync`` keeps one form model in step with a flow engine using an
explicit last-writer flag, so a form edit is not echoed back into the form
while changes from any other source always are.
"""

import logging

from pydantic import BaseModel, Field, field_validator

from intake.moving_schema import (
    APPLIANCE_KEYS,
    BOX_RANGES,
    CARRIERS,
    CONTACT_TIMES,
    DATE_TYPES,
    FURNITURE_KEYS,
    MOVE_CATEGORIES,
    MOVE_TYPES,
    SPECIAL_KEYS,
    TIME_SLOTS,
    TRANSPORT_METHODS,
    UNKNOWN,
    VEHICLE_PREFERENCES,
    blank_location,
    bucket_square_footage,
)

logger = logging.getLogger(__name__)

# Representative pyeong shown in the form for each bucket. Each midpoint
# re-buckets to its own bucket.
SQUARE_FOOTAGE_MIDPOINTS = {
    "under_10": 10,
    "10_15": 15,
    "15_25": 20,
    "25_35": 30,
    "35_45": 40,
    "over_45": 50,
}

FORM_SECTIONS = ("move", "departure", "arrival", "cargo", "services", "conditions", "contact")


def _check_choice(value, allowed, name: str):
    if value is not None and value not in allowed:
        raise ValueError(f"Invalid {name}: {value!r}")
    return value


# ---------------------------------------------------------------------------
# Form model
# ---------------------------------------------------------------------------

class ScheduleForm(BaseModel):
    dateType: str = UNKNOWN
    date: str | None = None
    dateFrom: str | None = None
    dateTo: str | None = None

    @field_validator("dateType")
    @classmethod
    def _date_type(cls, value):
        return _check_choice(value, DATE_TYPES, "date type")


class MoveForm(BaseModel):
    category: str | None = None
    type: str | None = None
    schedule: ScheduleForm = Field(default_factory=ScheduleForm)
    timeSlot: str | None = None

    @field_validator("category")
    @classmethod
    def _category(cls, value):
        return _check_choice(value, MOVE_CATEGORIES, "move category")

    @field_validator("type")
    @classmethod
    def _type(cls, value):
        return _check_choice(value, MOVE_TYPES, "move type")

    @field_validator("timeSlot")
    @classmethod
    def _time_slot(cls, value):
        return _check_choice(value, TIME_SLOTS, "time slot")


class LocationForm(BaseModel):
    address: str | None = None
    detailAddress: str | None = None
    floor: int | None = None
    floorUnknown: bool = False
    hasElevator: bool | None = None
    transportMethod: str | None = None
    parkingAvailable: bool | None = None
    squareFootage: int | None = Field(default=None, ge=1)

    @field_validator("transportMethod")
    @classmethod
    def _transport(cls, value):
        return _check_choice(value, TRANSPORT_METHODS, "transport method")


class CargoSelection(BaseModel):
    key: str
    qty: int = Field(default=1, ge=0)
    note: str = ""


class SpecialSelection(BaseModel):
    key: str
    note: str = ""


class CustomItem(BaseModel):
    name: str = Field(..., min_length=1)
    note: str = ""


class CargoForm(BaseModel):
    appliances: list[CargoSelection] = Field(default_factory=list)
    furniture: list[CargoSelection] = Field(default_factory=list)
    special: list[SpecialSelection] = Field(default_factory=list)
    custom: list[CustomItem] = Field(default_factory=list)
    boxRange: str | None = None
    boxCount: int | None = Field(default=None, ge=0)

    @field_validator("appliances")
    @classmethod
    def _appliances(cls, value):
        for item in value:
            _check_choice(item.key, APPLIANCE_KEYS, "appliance")
        return value

    @field_validator("furniture")
    @classmethod
    def _furniture(cls, value):
        for item in value:
            _check_choice(item.key, FURNITURE_KEYS, "furniture item")
        return value

    @field_validator("special")
    @classmethod
    def _special(cls, value):
        for item in value:
            _check_choice(item.key, SPECIAL_KEYS, "special item")
        return value

    @field_validator("boxRange")
    @classmethod
    def _box_range(cls, value):
        return _check_choice(value, BOX_RANGES, "box range")


class ServicesForm(BaseModel):
    ladderTruck: bool | None = None
    airconInstall: bool = False
    airconCount: int = Field(default=0, ge=0)
    cleaning: bool = False
    organizing: bool = False
    storage: bool = False
    storageDays: int = Field(default=0, ge=0)
    disposal: bool = False


class ConditionsForm(BaseModel):
    extraRequests: str | None = None
    vehiclePreference: str | None = None
    customerParticipation: bool | None = None

    @field_validator("vehiclePreference")
    @classmethod
    def _vehicle(cls, value):
        return _check_choice(value, VEHICLE_PREFERENCES, "vehicle preference")


class ContactForm(BaseModel):
    name: str | None = None
    phone: str | None = None
    carrier: str | None = None
    preferredTime: str | None = None

    @field_validator("carrier")
    @classmethod
    def _carrier(cls, value):
        return _check_choice(value, CARRIERS, "carrier")

    @field_validator("preferredTime")
    @classmethod
    def _preferred_time(cls, value):
        return _check_choice(value, CONTACT_TIMES, "contact time")


class EstimateForm(BaseModel):
    """The manual estimate form."""

    move: MoveForm = Field(default_factory=MoveForm)
    departure: LocationForm = Field(default_factory=LocationForm)
    arrival: LocationForm = Field(default_factory=LocationForm)
    cargo: CargoForm = Field(default_factory=CargoForm)
    services: ServicesForm = Field(default_factory=ServicesForm)
    conditions: ConditionsForm = Field(default_factory=ConditionsForm)
    contact: ContactForm = Field(default_factory=ContactForm)


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------

def _tri_state_to_bool(value) -> bool | None:
    if value == "yes":
        return True
    if value == "no":
        return False
    return None


def _bool_to_tri_state(value: bool | None) -> str:
    if value is True:
        return "yes"
    if value is False:
        return "no"
    return UNKNOWN


def _unknown_to_none(value):
    return None if value == UNKNOWN else value


def _location_to_form(location: dict) -> LocationForm:
    return LocationForm(
        address=location.get("address"),
        detailAddress=location.get("detailAddress"),
        floor=location.get("floor"),
        floorUnknown=location.get("floorStatus") == UNKNOWN,
        hasElevator=_tri_state_to_bool(location.get("hasElevator")),
        transportMethod=_unknown_to_none(location.get("transportMethod")),
        parkingAvailable=_tri_state_to_bool(location.get("parking")),
        squareFootage=SQUARE_FOOTAGE_MIDPOINTS.get(location.get("squareFootage")),
    )


def _location_from_form(form: LocationForm, current_footage=None) -> dict:
    location = blank_location()
    if form.floorUnknown:
        floor, floor_status = None, UNKNOWN
    elif form.floor is not None:
        floor, floor_status = form.floor, "known"
    else:
        floor, floor_status = None, None
    if form.squareFootage is None:
        # An explicit "unknown" bucket has no number in the form; keep it.
        footage = UNKNOWN if current_footage == UNKNOWN else None
    else:
        footage = bucket_square_footage(form.squareFootage)
    location.update(
        address=form.address or None,
        detailAddress=form.detailAddress or None,
        floor=floor,
        floorStatus=floor_status,
        hasElevator=_bool_to_tri_state(form.hasElevator),
        transportMethod=form.transportMethod or UNKNOWN,
        parking=_bool_to_tri_state(form.parkingAvailable),
        squareFootage=footage,
    )
    return location


def _selected_items(items: dict) -> list[CargoSelection]:
    return [
        CargoSelection(key=key, qty=item.get("qty", 0), note=item.get("note", ""))
        for key, item in items.items()
        if item.get("has")
    ]


def schema_to_form(schema: dict) -> EstimateForm:
    """Project a canonical record onto the form model."""
    move = schema["move"]
    cargo = schema["cargo"]
    services = schema["services"]
    ladder = services.get("ladderTruck")
    special = cargo["special"]

    return EstimateForm(
        move=MoveForm(
            category=_unknown_to_none(move.get("category")),
            type=_unknown_to_none(move.get("type")),
            schedule=ScheduleForm(**move["schedule"]),
            timeSlot=_unknown_to_none(move.get("timeSlot")),
        ),
        departure=_location_to_form(schema["departure"]),
        arrival=_location_to_form(schema["arrival"]),
        cargo=CargoForm(
            appliances=_selected_items(cargo["appliances"]),
            furniture=_selected_items(cargo["furniture"]),
            special=[
                SpecialSelection(key=key, note=special[key].get("note", ""))
                for key in SPECIAL_KEYS
                if special.get(key, {}).get("has")
            ],
            custom=[CustomItem(**item) for item in special.get("custom", [])],
            boxRange=_unknown_to_none(cargo["boxes"].get("range")),
            boxCount=cargo["boxes"].get("exactCount"),
        ),
        services=ServicesForm(
            ladderTruck=None if ladder == UNKNOWN else ladder == "required",
            airconInstall=services["airconInstall"]["needed"],
            airconCount=services["airconInstall"]["qty"],
            cleaning=services["cleaning"],
            organizing=services["organizing"],
            storage=services["storage"]["needed"],
            storageDays=services["storage"]["durationDays"],
            disposal=services["disposal"],
        ),
        conditions=ConditionsForm(**schema["conditions"]),
        contact=ContactForm(**schema["contact"]),
    )


def _cargo_items_from_form(selections, keys) -> dict:
    selected = {item.key: item for item in selections}
    return {
        key: (
            {"has": True, "qty": selected[key].qty, "note": selected[key].note}
            if key in selected
            else {"has": False, "qty": 0, "note": ""}
        )
        for key in keys
    }


def form_to_schema(form: EstimateForm, schema: dict | None = None) -> dict:
    """Convert the form model back into a section patch for the record.

    Numeric square footage is re-bucketed (10 -> under_10, 15 -> 10_15, 25
    -> 15_25, 35 -> 25_35, 45 -> 35_45, above -> over_45). Unselected cargo
    items come back as blank entries.

    Args:
        form: The form model.
        schema: The current record, consulted only to keep an explicit
            ``unknown`` square footage that the form cannot display.

    Returns:
        A patch with one entry per form section.
    """
    special_selected = {item.key: item for item in form.cargo.special}
    ladder = form.services.ladderTruck
    current_footage = {
        section: (schema or {}).get(section, {}).get("squareFootage")
        for section in ("departure", "arrival")
    }

    return {
        "move": {
            "category": form.move.category or UNKNOWN,
            "type": form.move.type or UNKNOWN,
            "schedule": form.move.schedule.model_dump(),
            "timeSlot": form.move.timeSlot or UNKNOWN,
        },
        "departure": _location_from_form(form.departure, current_footage["departure"]),
        "arrival": _location_from_form(form.arrival, current_footage["arrival"]),
        "cargo": {
            "appliances": _cargo_items_from_form(form.cargo.appliances, APPLIANCE_KEYS),
            "furniture": _cargo_items_from_form(form.cargo.furniture, FURNITURE_KEYS),
            "special": {
                **{
                    key: {"has": key in special_selected, "note": special_selected[key].note if key in special_selected else ""}
                    for key in SPECIAL_KEYS
                },
                "custom": [item.model_dump() for item in form.cargo.custom],
            },
            "boxes": {"range": form.cargo.boxRange or UNKNOWN, "exactCount": form.cargo.boxCount},
        },
        "services": {
            "ladderTruck": UNKNOWN if ladder is None else ("required" if ladder else "not_required"),
            "airconInstall": {"needed": form.services.airconInstall, "qty": form.services.airconCount},
            "cleaning": form.services.cleaning,
            "organizing": form.services.organizing,
            "storage": {"needed": form.services.storage, "durationDays": form.services.storageDays},
            "disposal": form.services.disposal,
        },
        "conditions": form.conditions.model_dump(),
        "contact": form.contact.model_dump(),
    }


def changed_sections(patch: dict, schema: dict) -> dict:
    """Return only the keys of ``patch`` whose values differ from ``schema``."""
    changes = {}
    for section, section_patch in patch.items():
        current = schema.get(section, {})
        diff = {key: value for key, value in section_patch.items() if current.get(key) != value}
        if diff:
            changes[section] = diff
    return changes


# ---------------------------------------------------------------------------
# Synchronization
# ---------------------------------------------------------------------------

class FormSync:
    """Keeps a form model and a flow engine converged.

    ``last_update_source`` is ``"form"`` from just before a form edit is
    written until the engine's change notification for that write arrives,
    and ``"store"`` while the form is being rebuilt from the record.
    """

    def __init__(self, engine):
        self.engine = engine
        self.form = schema_to_form(engine.schema)
        self.last_update_source: str | None = None
        self._unsubscribe = engine.subscribe(self.on_schema_change)

    def submit_form_edit(self, form) -> dict:
        """Write a form edit into the record.

        Args:
            form: An EstimateForm or a mapping validated into one.

        Returns:
            The record after the edit.

        Raises:
            pydantic.ValidationError: If a mapping does not validate.
        """
        if self.last_update_source == "store":
            logger.info("Ignoring form edit raised while the form is being resynced")
            return self.engine.schema
        if not isinstance(form, EstimateForm):
            form = EstimateForm.model_validate(form)

        self.form = form
        patch = changed_sections(form_to_schema(form, self.engine.schema), self.engine.schema)
        if not patch:
            return self.engine.schema
        self.last_update_source = "form"
        try:
            return self.engine.merge_schema_updates(patch, source="form")
        finally:
            self.last_update_source = None

    def on_schema_change(self, schema: dict, source: str) -> None:
        """Engine listener: mirror non-form changes into the form."""
        if self.last_update_source == "form":
            self.last_update_source = None
            return
        self.last_update_source = "store"
        try:
            self.form = schema_to_form(schema)
        finally:
            self.last_update_source = None

    def close(self) -> None:
        self._unsubscribe()
