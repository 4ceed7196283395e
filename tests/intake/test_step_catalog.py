"""Tests for the guided step catalog, skip predicates and transforms."""

import pytest

from intake.moving_schema import REQUIRED_FIELDS, create_default_schema
from intake.schema_paths import merge_section, set_by_path
from intake.step_catalog import (
    GUIDED_STEPS,
    INPUT_TYPES,
    RECOVERY_STEPS,
    SKIP_CONDITIONS,
    TRANSFORMS,
    TRANSPORT_OPTIONS,
    active_steps,
    build_patch,
    find_step_by_path,
    get_recovery_step,
    get_recovery_step_by_id,
    get_step,
    get_step_by_number,
    recovery_step_id,
    resolve_ladder_truck,
    transform_additional_services,
    transform_contact,
    transform_participation,
    transform_schedule,
)


def _with_type(move_type):
    return set_by_path(create_default_schema(), "move.type", move_type)


class TestCatalogShape:
    def test_sixteen_steps_in_order(self):
        assert len(GUIDED_STEPS) == 16
        assert [step.step_number for step in GUIDED_STEPS] == list(range(1, 17))
        assert GUIDED_STEPS[0].id == "move_date"
        assert GUIDED_STEPS[-1].id == "contact_verification"

    def test_step_ids_unique(self):
        assert len({step.id for step in GUIDED_STEPS}) == 16

    def test_input_types_known(self):
        for step in GUIDED_STEPS:
            assert step.input_type in INPUT_TYPES

    def test_tip_cards_attached(self):
        assert get_step("move_date").tip_card.id == "peak_season"
        assert get_step("vehicle_preference").tip_card.id == "truck_count"
        assert get_step("customer_participation").tip_card.id == "worker_participation"
        assert get_step("departure_transport").tip_card.id == "ladder_truck"

    def test_lookups(self):
        assert get_step("time_slot").step_number == 5
        assert get_step_by_number(5).id == "time_slot"
        assert get_step("nope") is None
        assert get_step_by_number(99) is None


class TestSkipConditions:
    @pytest.mark.parametrize("move_type", ["full_pack", "half_pack", "storage"])
    def test_labor_bundled_tiers_skip_vehicle_and_participation(self, move_type):
        ids = [step.id for step in active_steps(_with_type(move_type))]
        assert "vehicle_preference" not in ids
        assert "customer_participation" not in ids
        assert "additional_services" in ids

    def test_truck_skips_additional_services(self):
        ids = [step.id for step in active_steps(_with_type("truck"))]
        assert "additional_services" not in ids
        assert "vehicle_preference" in ids

    def test_unknown_type_skips_nothing(self):
        assert len(active_steps(create_default_schema())) == 16

    def test_skip_predicates_are_pure(self):
        schema = _with_type("full_pack")
        for predicate in SKIP_CONDITIONS.values():
            predicate(schema)
        assert schema["move"]["type"] == "full_pack"

    def test_active_steps_idempotent(self):
        schema = _with_type("half_pack")
        assert active_steps(schema) == active_steps(schema)


class TestTransformSchedule:
    def test_iso_string_is_exact_date(self):
        patch = transform_schedule("2025-06-01", create_default_schema())
        assert patch == {"move": {"schedule": {
            "dateType": "exact", "date": "2025-06-01", "dateFrom": None, "dateTo": None,
        }}}

    def test_unknown_resets_schedule(self):
        assert transform_schedule("unknown", create_default_schema())["move"]["schedule"]["dateType"] == "unknown"

    def test_range_mapping(self):
        patch = transform_schedule({"dateFrom": "2025-06-01", "dateTo": "2025-06-07"}, create_default_schema())
        schedule = patch["move"]["schedule"]
        assert schedule["dateType"] == "range"
        assert schedule["dateFrom"] == "2025-06-01"
        assert schedule["dateTo"] == "2025-06-07"

    def test_invalid_date_raises(self):
        with pytest.raises(ValueError):
            transform_schedule("next friday", create_default_schema())

    def test_invalid_date_type_raises(self):
        with pytest.raises(ValueError):
            transform_schedule({"dateType": "someday"}, create_default_schema())


class TestLadderTruck:
    def _answer(self, schema, step_id, value):
        return merge_section(schema, TRANSFORMS[step_id](value, schema))

    def test_ladder_sets_required(self):
        schema = self._answer(create_default_schema(), "departure_transport", "ladder")
        assert schema["services"]["ladderTruck"] == "required"
        assert schema["departure"]["transportMethod"] == "ladder"
        assert schema["departure"]["hasElevator"] == "no"

    def test_other_location_keeps_flag(self):
        schema = self._answer(create_default_schema(), "departure_transport", "ladder")
        schema = self._answer(schema, "arrival_transport", "ladder")
        schema = self._answer(schema, "departure_transport", "elevator")
        assert schema["departure"]["hasElevator"] == "yes"
        assert schema["services"]["ladderTruck"] == "required"

    def test_clearing_both_clears_flag(self):
        schema = self._answer(create_default_schema(), "departure_transport", "ladder")
        schema = self._answer(schema, "arrival_transport", "ladder")
        schema = self._answer(schema, "departure_transport", "elevator")
        schema = self._answer(schema, "arrival_transport", "stairs")
        assert schema["services"]["ladderTruck"] == "not_required"

    def test_never_required_stays_unknown(self):
        schema = self._answer(create_default_schema(), "departure_transport", "stairs")
        assert schema["services"]["ladderTruck"] == "unknown"

    def test_yes_no_aliases(self):
        schema = self._answer(create_default_schema(), "arrival_transport", "yes")
        assert schema["arrival"]["transportMethod"] == "elevator"
        schema = self._answer(schema, "arrival_transport", "no")
        assert schema["arrival"]["transportMethod"] == "stairs"
        assert schema["arrival"]["hasElevator"] == "no"

    def test_invalid_method_raises(self):
        with pytest.raises(ValueError):
            TRANSFORMS["departure_transport"]("helicopter", create_default_schema())

    def test_resolve_ladder_truck(self):
        assert resolve_ladder_truck("ladder", "stairs", "unknown") == "required"
        assert resolve_ladder_truck("stairs", "stairs", "required") == "not_required"
        assert resolve_ladder_truck("stairs", "elevator", "unknown") == "unknown"


class TestFloorTransform:
    def test_integer_floor(self):
        assert TRANSFORMS["departure_floor"](3, create_default_schema()) == {
            "departure": {"floor": 3, "floorStatus": "known"},
        }

    def test_basement_and_semi_basement(self):
        assert TRANSFORMS["arrival_floor"]("-1", create_default_schema())["arrival"]["floor"] == -1
        assert TRANSFORMS["arrival_floor"](0, create_default_schema())["arrival"]["floor"] == 0

    def test_dont_know(self):
        assert TRANSFORMS["arrival_floor"]("모르겠어요", create_default_schema()) == {
            "arrival": {"floor": None, "floorStatus": "unknown"},
        }

    @pytest.mark.parametrize("value", ["three", True, 2.5])
    def test_invalid_floor_raises(self, value):
        with pytest.raises(ValueError):
            TRANSFORMS["departure_floor"](value, create_default_schema())


class TestOtherTransforms:
    def test_participation(self):
        schema = create_default_schema()
        assert transform_participation("true", schema) == {"conditions": {"customerParticipation": True}}
        assert transform_participation(False, schema) == {"conditions": {"customerParticipation": False}}
        with pytest.raises(ValueError):
            transform_participation("maybe", schema)

    def test_additional_services_list(self):
        patch = transform_additional_services(["airconInstall", "cleaning"], create_default_schema())
        services = patch["services"]
        assert services["airconInstall"] == {"needed": True, "qty": 1}
        assert services["cleaning"] is True
        assert services["organizing"] is False
        assert "ladderTruck" not in services

    def test_additional_services_mapping(self):
        patch = transform_additional_services({"disposal": True, "cleaning": False}, create_default_schema())
        assert patch["services"]["disposal"] is True
        assert patch["services"]["cleaning"] is False

    def test_additional_services_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown services"):
            transform_additional_services(["massage"], create_default_schema())

    def test_contact(self):
        patch = transform_contact({"name": " 홍길동 ", "phone": "010-1234-5678", "carrier": "SKT"}, create_default_schema())
        assert patch == {"contact": {"name": "홍길동", "phone": "010-1234-5678", "carrier": "SKT"}}

    def test_contact_requires_mapping(self):
        with pytest.raises(ValueError):
            transform_contact("홍길동", create_default_schema())

    def test_contact_rejects_carrier_label(self):
        with pytest.raises(ValueError, match="carrier"):
            transform_contact({"name": "홍길동", "carrier": "LG U+"}, create_default_schema())

    def test_contact_rejects_unknown_time(self):
        with pytest.raises(ValueError, match="preferredTime"):
            transform_contact({"preferredTime": "midnight"}, create_default_schema())

    def test_contact_accepts_canonical_choices(self):
        patch = transform_contact({"carrier": "LGU+", "preferredTime": "evening"}, create_default_schema())
        assert patch == {"contact": {"carrier": "LGU+", "preferredTime": "evening"}}

    def test_contact_blank_carrier_is_cleared(self):
        patch = transform_contact({"carrier": "  "}, create_default_schema())
        assert patch == {"contact": {"carrier": None}}

    def test_build_patch_none_for_direct_steps(self):
        assert build_patch(get_step("move_category"), "one_room", create_default_schema()) is None


class TestRecoverySteps:
    def test_one_per_required_field(self):
        assert set(RECOVERY_STEPS) == set(REQUIRED_FIELDS)

    def test_recovery_reuses_options(self):
        step = get_recovery_step("departure.hasElevator")
        assert step.options == TRANSPORT_OPTIONS
        assert step.field_path == "departure.hasElevator"
        assert step.id == recovery_step_id("departure.hasElevator") == "recover_departure_hasElevator"

    def test_recovery_transforms_registered(self):
        assert TRANSFORMS["recover_move_schedule"] is TRANSFORMS["move_date"]
        assert TRANSFORMS["recover_arrival_floor"] is TRANSFORMS["arrival_floor"]

    def test_lookup_by_id(self):
        assert get_recovery_step_by_id("recover_contact_name").field_path == "contact.name"
        assert get_recovery_step_by_id("move_date") is None


class TestFindStepByPath:
    def test_exact_path(self):
        assert find_step_by_path("move.type").id == "move_type"

    def test_descendant_path(self):
        assert find_step_by_path("contact.phone").id == "contact_verification"
        assert find_step_by_path("move.schedule.date").id == "move_date"

    def test_unowned_path(self):
        assert find_step_by_path("cargo.boxes") is None
        assert find_step_by_path("departure.transportMethod") is None
