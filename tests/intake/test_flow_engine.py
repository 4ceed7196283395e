"""Tests for the flow engine: progression, skips, status and provenance."""

import pytest

from intake.flow_engine import (
    FlowEngine,
    StepNotActiveError,
    UnknownStepError,
    can_submit,
    completion_rate,
    field_priority,
    is_field_empty,
    missing_required_fields,
)
from intake.moving_schema import REQUIRED_FIELDS
from intake.schema_paths import set_by_path


def _fill_all(engine, values):
    for path, value in values.items():
        engine.set_field_value(path, value)
    engine.set_field_value("departure.floorStatus", "known")
    engine.set_field_value("arrival.floorStatus", "known")


class TestEmptinessRules:
    def test_unknown_and_blank_strings_are_empty(self, blank_schema):
        assert is_field_empty(blank_schema, "move.category")
        schema = set_by_path(blank_schema, "departure.address", "   ")
        assert is_field_empty(schema, "departure.address")

    def test_schedule_rules(self, blank_schema):
        exact_no_date = set_by_path(blank_schema, "move.schedule", {"dateType": "exact", "date": None, "dateFrom": None, "dateTo": None})
        half_range = set_by_path(blank_schema, "move.schedule", {"dateType": "range", "date": None, "dateFrom": "2025-06-01", "dateTo": None})
        full_range = set_by_path(blank_schema, "move.schedule", {"dateType": "range", "date": None, "dateFrom": "2025-06-01", "dateTo": "2025-06-05"})
        assert is_field_empty(blank_schema, "move.schedule")
        assert is_field_empty(exact_no_date, "move.schedule")
        assert is_field_empty(half_range, "move.schedule")
        assert not is_field_empty(full_range, "move.schedule")

    def test_floor_dont_know_counts_as_answered(self, blank_schema):
        assert is_field_empty(blank_schema, "departure.floor")
        schema = set_by_path(blank_schema, "departure.floorStatus", "unknown")
        assert not is_field_empty(schema, "departure.floor")

    def test_floor_zero_is_answered(self, blank_schema):
        schema = set_by_path(blank_schema, "arrival.floor", 0)
        assert not is_field_empty(schema, "arrival.floor")


class TestMissingRequiredFields:
    def test_default_schema_misses_all(self, blank_schema):
        missing = missing_required_fields(blank_schema)
        assert {item["field"] for item in missing} == set(REQUIRED_FIELDS)

    def test_sorted_by_priority(self, blank_schema):
        priorities = [item["priority"] for item in missing_required_fields(blank_schema)]
        assert priorities == sorted(priorities)
        assert missing_required_fields(blank_schema)[-1]["field"].startswith("contact.")

    def test_entries_carry_question_template(self, blank_schema):
        item = next(i for i in missing_required_fields(blank_schema) if i["field"] == "arrival.address")
        assert item["questionTemplate"] == "도착지 주소를 알려주세요"

    def test_priorities(self):
        assert field_priority("departure.floor") == 1
        assert field_priority("arrival.hasElevator") == 1
        assert field_priority("move.schedule") == 2
        assert field_priority("move.category") == 3
        assert field_priority("departure.address") == 3
        assert field_priority("contact.phone") == 4


class TestCompletionAndSubmit:
    def test_default_is_zero_and_not_submittable(self):
        engine = FlowEngine()
        assert engine.get_completion_rate() == 0
        assert engine.can_submit() is False
        assert engine.schema["status"]["readyForSubmit"] is False

    def test_all_required_filled(self, required_values):
        engine = FlowEngine()
        _fill_all(engine, required_values)
        assert engine.get_completion_rate() == 1.0
        assert engine.can_submit() is True
        assert engine.schema["status"]["missingRequired"] == []
        assert engine.schema["status"]["readyForSubmit"] is True

    def test_completion_monotonic_under_fill(self, required_values):
        engine = FlowEngine()
        previous = engine.get_completion_rate()
        for path, value in required_values.items():
            engine.set_field_value(path, value)
            rate = engine.get_completion_rate()
            assert rate >= previous
            previous = rate

    def test_filling_a_field_increases_rate(self):
        engine = FlowEngine()
        engine.set_field_value("move.category", "apartment")
        assert engine.get_completion_rate() == pytest.approx(1 / 13)

    def test_pure_helpers_agree(self, filled_schema):
        assert completion_rate(filled_schema) == 1.0
        assert can_submit(filled_schema) is True
        no_phone = set_by_path(filled_schema, "contact.phone", "")
        assert can_submit(no_phone) is False


class TestProcessAnswer:
    def test_direct_write_and_completion(self):
        engine = FlowEngine()
        engine.process_answer("move_category", "one_room")
        assert engine.schema["move"]["category"] == "one_room"
        assert "move_category" in engine.completed_steps
        assert engine.answers["move_category"] == "one_room"

    def test_transform_applied(self):
        engine = FlowEngine()
        engine.process_answer("move_date", "2025-06-01")
        assert engine.schema["move"]["schedule"]["date"] == "2025-06-01"

    def test_unknown_step(self):
        with pytest.raises(UnknownStepError):
            FlowEngine().process_answer("teleport", "now")

    def test_invalid_option_rejected_without_change(self):
        engine = FlowEngine()
        before = engine.schema
        with pytest.raises(ValueError):
            engine.process_answer("move_category", "castle")
        assert engine.schema is before
        assert "move_category" not in engine.completed_steps

    def test_carrier_label_rejected_without_change(self):
        engine = FlowEngine()
        before = engine.schema
        with pytest.raises(ValueError):
            engine.process_answer(
                "contact_verification",
                {"name": "홍길동", "phone": "010-1234-5678", "carrier": "LG U+"},
            )
        assert engine.schema is before
        assert engine.schema["contact"]["carrier"] is None
        assert not engine.is_completed("contact_verification")

        engine.set_field_value("move.category", "one_room")
        assert engine.schema["move"]["category"] == "one_room"

    def test_text_answers_are_stripped(self):
        engine = FlowEngine()
        engine.process_answer("departure_address", "  강남구 역삼동 ")
        assert engine.schema["departure"]["address"] == "강남구 역삼동"

    def test_copy_on_write(self):
        engine = FlowEngine()
        before = engine.schema
        engine.process_answer("move_type", "general")
        assert engine.schema is not before
        assert before["move"]["type"] == "unknown"

    def test_updated_at_bumped(self):
        engine = FlowEngine()
        before = engine.schema["meta"]["updatedAt"]
        engine.process_answer("move_type", "general")
        assert engine.schema["meta"]["updatedAt"] >= before

    def test_guided_provenance(self):
        engine = FlowEngine()
        engine.process_answer("departure_floor", 4)
        entry = engine.schema["status"]["fieldConfidence"]["departure.floor"]
        assert entry == {"value": 4, "confidence": 1.0, "source": "guided"}

    def test_cross_step_side_effect_attributed_to_system(self):
        engine = FlowEngine()
        engine.process_answer("departure_transport", "ladder")
        confidence = engine.schema["status"]["fieldConfidence"]
        assert confidence["departure.hasElevator"]["source"] == "guided"
        assert confidence["services.ladderTruck"]["source"] == "system"
        assert confidence["services.ladderTruck"]["value"] == "required"

    def test_current_step_advances(self):
        engine = FlowEngine()
        assert engine.get_current_step().id == "move_date"
        assert engine.get_next_step().id == "move_category"
        engine.process_answer("move_date", "2025-06-01")
        assert engine.get_current_step().id == "move_category"


class TestSkipRetroactivity:
    def test_switching_to_bundled_tier_rescinds_vehicle_answer(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "truck")
        engine.process_answer("vehicle_preference", "2")
        assert "vehicle_preference" in engine.completed_steps

        engine.process_answer("move_type", "full_pack")
        active = [step.id for step in engine.get_active_steps()]
        assert "vehicle_preference" not in active
        assert "vehicle_preference" not in engine.completed_steps
        assert "vehicle_preference" not in engine.answers

        engine.process_answer("move_type", "truck")
        assert "vehicle_preference" in [step.id for step in engine.get_active_steps()]
        assert "vehicle_preference" not in engine.completed_steps

    def test_truck_rescinds_additional_services(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "full_pack")
        engine.process_answer("additional_services", ["cleaning"])
        engine.process_answer("move_type", "truck")
        assert "additional_services" not in engine.completed_steps

    def test_active_steps_idempotent(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "half_pack")
        assert engine.get_active_steps() == engine.get_active_steps()


class TestRevertToStep:
    def test_clears_target_and_later_steps(self):
        engine = FlowEngine()
        for step_id, value in [("move_date", "2025-06-01"), ("move_category", "one_room"), ("square_footage", "10_15")]:
            engine.process_answer(step_id, value)
        engine.revert_to_step("move_category")
        assert engine.completed_steps == {"move_date"}
        assert engine.get_current_step().id == "move_category"
        assert engine.schema["move"]["category"] == "one_room"

    def test_skipped_step_raises(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "full_pack")
        with pytest.raises(StepNotActiveError):
            engine.revert_to_step("vehicle_preference")

    def test_unknown_step_raises(self):
        with pytest.raises(UnknownStepError):
            FlowEngine().revert_to_step("nope")


class TestApplyExternalParse:
    def test_high_confidence_completes_owning_step(self):
        engine = FlowEngine()
        completed = engine.apply_external_parse({"move": {"type": "full_pack"}}, {"move.type": 0.95})
        assert completed == ["move_type"]
        assert "move_type" in engine.completed_steps
        assert engine.schema["move"]["type"] == "full_pack"
        entry = engine.schema["status"]["fieldConfidence"]["move.type"]
        assert entry == {"value": "full_pack", "confidence": 0.95, "source": "chat"}

    def test_low_confidence_leaves_step_open(self):
        engine = FlowEngine()
        completed = engine.apply_external_parse({"move": {"type": "full_pack"}}, {"move.type": 0.3})
        assert completed == []
        assert "move_type" not in engine.completed_steps
        assert engine.schema["move"]["type"] == "full_pack"
        assert engine.schema["status"]["fieldConfidence"]["move.type"]["confidence"] == 0.3

    def test_threshold_is_inclusive(self):
        engine = FlowEngine()
        engine.apply_external_parse({"departure": {"address": "강남구"}}, {"departure.address": 0.8})
        assert "departure_address" in engine.completed_steps

    def test_missing_confidence_does_not_complete(self):
        engine = FlowEngine()
        engine.apply_external_parse({"move": {"category": "office"}})
        assert engine.schema["move"]["category"] == "office"
        assert engine.completed_steps == frozenset()

    def test_descendant_path_completes_parent_step(self):
        engine = FlowEngine()
        engine.apply_external_parse({"contact": {"phone": "010-1111-2222"}}, {"contact.phone": 0.9})
        assert "contact_verification" in engine.completed_steps

    def test_rejects_status_patch(self):
        engine = FlowEngine()
        with pytest.raises(ValueError):
            engine.apply_external_parse({"status": {"readyForSubmit": True}}, {})
        assert engine.schema["status"]["readyForSubmit"] is False

    def test_source_becomes_mixed(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "general")
        assert engine.schema["meta"]["source"] == "guided"
        engine.apply_external_parse({"move": {"category": "office"}}, {"move.category": 0.9})
        assert engine.schema["meta"]["source"] == "mixed"

    def test_first_writer_sets_source(self):
        engine = FlowEngine()
        engine.apply_external_parse({"move": {"category": "office"}}, {"move.category": 0.9})
        assert engine.schema["meta"]["source"] == "chat"


class TestDirectWrites:
    def test_set_field_value_records_form_provenance(self):
        engine = FlowEngine()
        engine.set_field_value("contact.name", "홍길동")
        entry = engine.schema["status"]["fieldConfidence"]["contact.name"]
        assert entry == {"value": "홍길동", "confidence": 1.0, "source": "form"}

    def test_merge_schema_updates(self):
        engine = FlowEngine()
        engine.merge_schema_updates({"arrival": {"address": "마포구", "floor": 2}})
        assert engine.schema["arrival"]["address"] == "마포구"
        assert engine.schema["arrival"]["floor"] == 2
        assert engine.schema["arrival"]["hasElevator"] == "unknown"

    def test_status_cannot_be_written(self):
        engine = FlowEngine()
        with pytest.raises(ValueError):
            engine.set_field_value("status.readyForSubmit", True)
        with pytest.raises(ValueError):
            engine.merge_schema_updates({"meta": {"source": "form"}})

    def test_direct_writes_do_not_complete_steps(self):
        engine = FlowEngine()
        engine.set_field_value("move.type", "general")
        assert engine.completed_steps == frozenset()

    def test_direct_type_change_rescinds_skipped_answers(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "truck")
        engine.process_answer("customer_participation", "true")
        engine.set_field_value("move.type", "storage")
        assert "customer_participation" not in engine.completed_steps


class TestListenersAndReset:
    def test_listener_receives_schema_and_source(self):
        engine = FlowEngine()
        calls = []
        engine.subscribe(lambda schema, source: calls.append((schema["move"]["type"], source)))
        engine.process_answer("move_type", "general")
        engine.set_field_value("move.type", "truck", source="form")
        assert calls == [("general", "guided"), ("truck", "form")]

    def test_failing_listener_rolls_back_answer(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "general")
        before = engine.schema

        def broken(schema, source):
            raise RuntimeError("listener down")

        unsubscribe = engine.subscribe(broken)
        with pytest.raises(RuntimeError):
            engine.process_answer("move_category", "one_room")
        assert engine.schema == before
        assert engine.completed_steps == frozenset({"move_type"})
        assert "move_category" not in engine.answers

        unsubscribe()
        engine.process_answer("move_category", "one_room")
        assert engine.schema["move"]["category"] == "one_room"

    def test_failing_listener_rolls_back_parse(self):
        engine = FlowEngine()

        def broken(schema, source):
            raise ValueError("bad")

        engine.subscribe(broken)
        with pytest.raises(ValueError):
            engine.apply_external_parse({"move": {"type": "full_pack"}}, {"move.type": 0.95})
        assert engine.schema["move"]["type"] == "unknown"
        assert engine.completed_steps == frozenset()

    def test_unsubscribe(self):
        engine = FlowEngine()
        calls = []
        unsubscribe = engine.subscribe(lambda schema, source: calls.append(source))
        unsubscribe()
        engine.process_answer("move_type", "general")
        assert calls == []

    def test_reset(self):
        engine = FlowEngine()
        old_id = engine.schema["meta"]["requestId"]
        engine.process_answer("move_type", "general")
        engine.reset()
        assert engine.completed_steps == frozenset()
        assert engine.schema["move"]["type"] == "unknown"
        assert engine.schema["meta"]["requestId"] != old_id

    def test_mark_step_completed(self):
        engine = FlowEngine()
        engine.mark_step_completed("time_slot")
        assert "time_slot" in engine.completed_steps
        with pytest.raises(UnknownStepError):
            engine.mark_step_completed("nope")

    def test_set_submitted_at(self):
        engine = FlowEngine()
        engine.set_submitted_at("2025-06-01T00:00:00+00:00")
        assert engine.schema["status"]["submittedAt"] == "2025-06-01T00:00:00+00:00"
        engine.process_answer("move_type", "general")
        assert engine.schema["status"]["submittedAt"] == "2025-06-01T00:00:00+00:00"


class TestRecoveryAnswer:
    def test_applies_recovery_transform(self):
        engine = FlowEngine()
        engine.process_recovery_answer("arrival.floor", "모르겠어요")
        assert engine.schema["arrival"]["floorStatus"] == "unknown"
        assert "arrival.floor" not in [item["field"] for item in engine.get_missing_required_fields()]
        assert "arrival_floor" in engine.completed_steps

    def test_direct_recovery_write(self):
        engine = FlowEngine()
        engine.process_recovery_answer("contact.name", "홍길동")
        assert engine.schema["contact"]["name"] == "홍길동"

    def test_unknown_field(self):
        with pytest.raises(KeyError):
            FlowEngine().process_recovery_answer("cargo.boxes", "1_5")


class TestResume:
    def test_completed_steps_restored_from_provenance(self):
        engine = FlowEngine()
        engine.process_answer("move_type", "general")
        engine.apply_external_parse({"move": {"category": "office"}}, {"move.category": 0.9})
        engine.apply_external_parse({"move": {"timeSlot": "morning"}}, {"move.timeSlot": 0.4})
        engine.set_field_value("departure.address", "강남구")

        resumed = FlowEngine(engine.schema)
        assert resumed.completed_steps == {"move_type", "move_category"}


class TestLadderTruckFlag:
    def test_flag_tracks_both_locations(self):
        engine = FlowEngine()
        engine.process_answer("departure_transport", "ladder")
        assert engine.schema["services"]["ladderTruck"] == "required"

        engine.process_answer("arrival_transport", "ladder")
        engine.process_answer("departure_transport", "elevator")
        assert engine.schema["services"]["ladderTruck"] == "required"
        assert engine.schema["departure"]["hasElevator"] == "yes"

        engine.process_answer("arrival_transport", "stairs")
        assert engine.schema["services"]["ladderTruck"] == "not_required"
        assert engine.schema["arrival"]["hasElevator"] == "no"

    def test_untouched_flag_stays_unknown(self):
        engine = FlowEngine()
        engine.process_answer("departure_transport", "stairs")
        assert engine.schema["services"]["ladderTruck"] == "unknown"
