"""Guided-flow engine.

Owns the canonical record for one request plus the authoritative set of
completed guided steps. Every mutation replaces the record wholesale
(copy-on-write), bumps ``meta.updatedAt``, recomputes ``status`` and
re-evaluates skip predicates before listeners are notified, so readers never
observe a half-updated record.

The status helpers at module level are pure functions of a record and are
shared with the record store, which recomputes readiness before every save
and after every load.
"""

import logging

from config.settings import AUTO_COMPLETE_CONFIDENCE
from intake.moving_schema import (
    INPUT_SOURCES,
    REQUIRED_FIELDS,
    UNKNOWN,
    create_default_schema,
    now_iso,
)
from intake.schema_paths import get_by_path, merge_section, set_by_path, split_path
from intake.step_catalog import (
    GUIDED_STEPS,
    build_patch,
    find_step_by_path,
    get_recovery_step,
    get_step,
    is_skipped,
    question_template,
)

logger = logging.getLogger(__name__)

# Sections that only the engine itself may write.
PROTECTED_SECTIONS = ("meta", "status")


class UnknownStepError(KeyError):
    """Raised when a step id is not in the guided catalog."""


class StepNotActiveError(ValueError):
    """Raised when a step exists but is currently skipped."""


# ---------------------------------------------------------------------------
# Derived status (pure)
# ---------------------------------------------------------------------------

def _is_blank(value) -> bool:
    if value is None or value == UNKNOWN:
        return True
    return isinstance(value, str) and not value.strip()


def is_field_empty(schema: dict, field_path: str) -> bool:
    """Return True if a required field counts as unanswered.

    ``move.schedule`` is empty while unresolved or when its dates are
    incomplete. A floor is answered either by a number or by an explicit
    "don't know" (``floorStatus == "unknown"``).
    """
    value = get_by_path(schema, field_path)

    if field_path in ("departure.floor", "arrival.floor"):
        section = field_path.split(".")[0]
        if get_by_path(schema, f"{section}.floorStatus") == UNKNOWN:
            return False
        return value is None

    if _is_blank(value):
        return True

    if field_path == "move.schedule":
        if not isinstance(value, dict):
            return True
        date_type = value.get("dateType")
        if date_type == "exact":
            return not value.get("date")
        if date_type == "range":
            return not value.get("dateFrom") or not value.get("dateTo")
        return True

    return False


def field_priority(field_path: str) -> int:
    """Return the recovery priority of a required field (1 asked first).

    1 = floor/elevator (cost-driving), 2 = schedule, 3 = move
    classification and everything else, 4 = contact.
    """
    if "floor" in field_path or "Elevator" in field_path:
        return 1
    if "schedule" in field_path:
        return 2
    if "contact" in field_path:
        return 4
    return 3


def missing_required_fields(schema: dict) -> list[dict]:
    """Return the unanswered required fields, sorted by ascending priority.

    Each entry is ``{"field", "priority", "questionTemplate"}``. The sort is
    stable, so fields sharing a priority keep their declaration order.
    """
    missing = [
        {
            "field": field_path,
            "priority": field_priority(field_path),
            "questionTemplate": question_template(field_path),
        }
        for field_path in REQUIRED_FIELDS
        if is_field_empty(schema, field_path)
    ]
    return sorted(missing, key=lambda item: item["priority"])


def completion_rate(schema: dict) -> float:
    """Return the answered share of the required fields, clamped to [0, 1]."""
    total = len(REQUIRED_FIELDS)
    answered = total - len(missing_required_fields(schema))
    return max(0.0, min(1.0, answered / total))


def can_submit(schema: dict) -> bool:
    """Return True when every required field, the contact and the date are set."""
    if missing_required_fields(schema):
        return False
    contact = schema.get("contact") or {}
    if _is_blank(contact.get("name")) or _is_blank(contact.get("phone")):
        return False
    schedule = get_by_path(schema, "move.schedule") or {}
    return schedule.get("dateType", UNKNOWN) != UNKNOWN


def compute_status(schema: dict) -> dict:
    """Return a fresh status section for ``schema``.

    Provenance (``fieldConfidence``) and ``submittedAt`` are carried over;
    everything else is recomputed.
    """
    previous = schema.get("status") or {}
    return {
        "completionRate": completion_rate(schema),
        "missingRequired": missing_required_fields(schema),
        "fieldConfidence": dict(previous.get("fieldConfidence") or {}),
        "readyForSubmit": can_submit(schema),
        "submittedAt": previous.get("submittedAt"),
    }


def with_status(schema: dict) -> dict:
    """Return a copy of ``schema`` with its status recomputed."""
    return {**schema, "status": compute_status(schema)}


def _patch_paths(patch: dict) -> list[str]:
    """Return the ``section.key`` paths a section patch writes."""
    paths = []
    for section, section_patch in patch.items():
        if isinstance(section_patch, dict):
            paths.extend(f"{section}.{key}" for key in section_patch)
    return paths


def _check_writable(paths) -> None:
    for path in paths:
        if path.split(".")[0] in PROTECTED_SECTIONS:
            raise ValueError(f"Section is managed by the engine: {path}")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class FlowEngine:
    """Step progression and schema mutation for one moving request.

    Args:
        schema: An existing record to resume. Steps whose answers are
            recorded in its provenance log start out completed. A default
            record is created when omitted.
    """

    def __init__(self, schema: dict | None = None):
        self._completed: set[str] = set()
        self._answers: dict = {}
        self._listeners: list = []
        if schema is None:
            self._schema = with_status(create_default_schema())
        else:
            self._schema = with_status(schema)
            self._restore_completed_steps()
            self._reevaluate_skips()

    # -- read access --------------------------------------------------------

    @property
    def schema(self) -> dict:
        """The current canonical record. Treat as read-only."""
        return self._schema

    @property
    def completed_steps(self) -> frozenset:
        """Ids of completed guided steps."""
        return frozenset(self._completed)

    @property
    def answers(self) -> dict:
        """Raw answers keyed by step id (a copy)."""
        return dict(self._answers)

    def is_completed(self, step_id: str) -> bool:
        return step_id in self._completed

    def subscribe(self, listener):
        """Register ``listener(schema, source)`` for every committed change.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- step sequence ------------------------------------------------------

    def get_active_steps(self) -> list:
        """Return catalog steps not skipped for the current record, in order."""
        return [step for step in GUIDED_STEPS if not is_skipped(step, self._schema)]

    def get_current_step(self):
        """Return the first active step not yet completed, or None."""
        for step in self.get_active_steps():
            if step.id not in self._completed:
                return step
        return None

    def get_next_step(self):
        """Return the active step following the current one, or None."""
        current = self.get_current_step()
        if current is None:
            return None
        active = self.get_active_steps()
        index = active.index(current)
        if index + 1 >= len(active):
            return None
        return active[index + 1]

    def _require_step(self, step_id: str):
        step = get_step(step_id)
        if step is None:
            raise UnknownStepError(step_id)
        return step

    # -- mutations ----------------------------------------------------------

    def process_answer(self, step_id: str, value) -> dict:
        """Apply a guided answer and mark its step complete.

        The step's transform produces a section patch when one is
        registered; otherwise the answer is written to the step's schema
        path. Skip predicates are re-evaluated afterwards, which may rescind
        later answers.

        Args:
            step_id: Catalog step id.
            value: The raw answer (option value, text, number or mapping).

        Returns:
            The updated record.

        Raises:
            UnknownStepError: If ``step_id`` is not in the catalog.
            ValueError: If the answer is not valid for the step.
        """
        step = self._require_step(step_id)
        schema, paths = self._apply_step_value(step, value)
        completed, answers = set(self._completed), dict(self._answers)
        answers[step.id] = value
        completed.add(step.id)
        schema = self._record_provenance(schema, paths, 1.0, "guided", owner=step)
        return self._commit(schema, "guided", completed, answers)

    def process_recovery_answer(self, field_path: str, value) -> dict:
        """Apply an answer to the recovery question for a required field.

        The guided step owning the field (if any) is marked complete.

        Raises:
            KeyError: If ``field_path`` is not a required field.
            ValueError: If the answer is not valid for the field.
        """
        recovery_step = get_recovery_step(field_path)
        if recovery_step is None:
            raise KeyError(f"No recovery question for field: {field_path}")
        schema, paths = self._apply_step_value(recovery_step, value)
        owner = find_step_by_path(field_path)
        completed, answers = set(self._completed), dict(self._answers)
        if owner is not None and not is_skipped(owner, schema):
            completed.add(owner.id)
            answers[owner.id] = value
        schema = self._record_provenance(schema, paths, 1.0, "guided", owner=owner)
        return self._commit(schema, "guided", completed, answers)

    def revert_to_step(self, step_id: str) -> None:
        """Discard completion for ``step_id`` and every later active step.

        Schema values stay in place until the steps are answered again.

        Raises:
            UnknownStepError: If ``step_id`` is not in the catalog.
            StepNotActiveError: If the step is currently skipped.
        """
        step = self._require_step(step_id)
        active = self.get_active_steps()
        if step not in active:
            raise StepNotActiveError(f"Step is currently skipped: {step_id}")
        for later in active[active.index(step):]:
            self._completed.discard(later.id)
            self._answers.pop(later.id, None)

    def apply_external_parse(self, patch: dict, confidence_by_path: dict | None = None) -> list[str]:
        """Merge an externally parsed partial record.

        Every path in ``confidence_by_path`` gets a ``chat`` provenance
        entry. Paths at or above AUTO_COMPLETE_CONFIDENCE also complete the
        guided step owning them; lower scores leave the step re-askable.

        Returns:
            Ids of the steps auto-completed by this parse.
        """
        if not isinstance(patch, dict):
            raise ValueError("Parsed data must be a mapping")
        _check_writable(patch)
        schema = merge_section(self._schema, patch)

        completed = []
        completed_steps, answers = set(self._completed), dict(self._answers)
        field_confidence = dict(schema["status"]["fieldConfidence"])
        for path, confidence in (confidence_by_path or {}).items():
            value = get_by_path(schema, path)
            field_confidence[path] = {"value": value, "confidence": confidence, "source": "chat"}
            if confidence < AUTO_COMPLETE_CONFIDENCE:
                continue
            step = find_step_by_path(path)
            if step is None or is_skipped(step, schema):
                continue
            answers[step.id] = value
            if step.id not in completed_steps:
                completed_steps.add(step.id)
                completed.append(step.id)
        schema = {**schema, "status": {**schema["status"], "fieldConfidence": field_confidence}}
        self._commit(schema, "chat", completed_steps, answers)
        return [step_id for step_id in completed if step_id in self._completed]

    def set_field_value(self, path: str, value, source: str = "form") -> dict:
        """Write one value outside the guided sequence (e.g. a form edit)."""
        split_path(path)
        _check_writable([path])
        schema = set_by_path(self._schema, path, value)
        schema = self._record_provenance(schema, [path], 1.0, source)
        return self._commit(schema, source)

    def merge_schema_updates(self, patch: dict, source: str = "form") -> dict:
        """Merge a section patch outside the guided sequence."""
        if not isinstance(patch, dict):
            raise ValueError("Schema updates must be a mapping")
        _check_writable(patch)
        schema = merge_section(self._schema, patch)
        schema = self._record_provenance(schema, _patch_paths(patch), 1.0, source)
        return self._commit(schema, source)

    def mark_step_completed(self, step_id: str) -> None:
        """Mark a guided step complete without changing the record.

        Raises:
            UnknownStepError: If ``step_id`` is not in the catalog.
            StepNotActiveError: If the step is currently skipped.
        """
        step = self._require_step(step_id)
        if is_skipped(step, self._schema):
            raise StepNotActiveError(f"Step is currently skipped: {step_id}")
        self._completed.add(step.id)

    def set_submitted_at(self, timestamp: str | None) -> dict:
        """Record (or clear) the submission timestamp."""
        status = {**self._schema["status"], "submittedAt": timestamp}
        return self._commit({**self._schema, "status": status}, "system")

    def get_completion_rate(self) -> float:
        return completion_rate(self._schema)

    def get_missing_required_fields(self) -> list[dict]:
        return missing_required_fields(self._schema)

    def can_submit(self) -> bool:
        return can_submit(self._schema)

    def reset(self, schema: dict | None = None) -> dict:
        """Reinitialize to a default record and forget all step progress."""
        self._completed.clear()
        self._answers.clear()
        self._schema = with_status(schema if schema is not None else create_default_schema())
        logger.info("Flow engine reset for request %s", self._schema["meta"]["requestId"])
        self._notify("system")
        return self._schema

    # -- internals ----------------------------------------------------------

    def _apply_step_value(self, step, value) -> tuple[dict, list[str]]:
        """Return the record with ``value`` applied and the paths written."""
        patch = build_patch(step, value, self._schema)
        if patch is not None:
            _check_writable(patch)
            return merge_section(self._schema, patch), _patch_paths(patch)

        if step.options:
            allowed = {option.value for option in step.options}
            if value not in allowed:
                raise ValueError(f"Invalid answer for step {step.id}: {value!r}")
        elif isinstance(value, str):
            value = value.strip() or None
        return set_by_path(self._schema, step.schema_path, value), [step.schema_path]

    def _record_provenance(self, schema: dict, paths, confidence: float, source: str, owner=None) -> dict:
        """Return ``schema`` with provenance entries written for ``paths``.

        When ``owner`` is given, paths belonging to a different guided step
        are derived side effects and are attributed to ``system``.
        """
        field_confidence = dict(schema["status"]["fieldConfidence"])
        for path in paths:
            path_source = source
            if owner is not None:
                path_owner = find_step_by_path(path)
                if path_owner is not None and path_owner != owner:
                    path_source = "system"
            field_confidence[path] = {
                "value": get_by_path(schema, path),
                "confidence": confidence,
                "source": path_source,
            }
        return {**schema, "status": {**schema["status"], "fieldConfidence": field_confidence}}

    def _restore_completed_steps(self) -> None:
        """Rebuild step completion from the provenance log of a resumed record."""
        for path, entry in self._schema["status"]["fieldConfidence"].items():
            if not isinstance(entry, dict):
                continue
            source = entry.get("source")
            confidence = entry.get("confidence") or 0
            if source == "guided" or (source == "chat" and confidence >= AUTO_COMPLETE_CONFIDENCE):
                step = find_step_by_path(path)
                if step is not None:
                    self._completed.add(step.id)
                    self._answers.setdefault(step.id, entry.get("value"))

    def _reevaluate_skips(self) -> None:
        for step in GUIDED_STEPS:
            if is_skipped(step, self._schema) and step.id in self._completed:
                logger.info("Step %s is now skipped; its answer was rescinded", step.id)
                self._completed.discard(step.id)
                self._answers.pop(step.id, None)

    def _commit(self, schema: dict, source: str, completed: set | None = None, answers: dict | None = None) -> dict:
        """Install ``schema`` (and new step progress) and notify listeners.

        If a listener raises, the record and step progress are restored to
        their state before the mutation and the error is re-raised.
        """
        previous = (self._schema, self._completed, self._answers)
        meta = dict(schema["meta"])
        meta["updatedAt"] = now_iso()
        if source in INPUT_SOURCES and meta.get("source") != source:
            meta["source"] = "mixed" if self._has_writes() else source
        schema = {**schema, "meta": meta}
        self._schema = with_status(schema)
        self._completed = set(self._completed if completed is None else completed)
        self._answers = dict(self._answers if answers is None else answers)
        self._reevaluate_skips()
        try:
            self._notify(source)
        except Exception as e:
            logger.warning("Schema change listener failed, change rolled back: %s", e)
            self._schema, self._completed, self._answers = previous
            raise
        return self._schema

    def _has_writes(self) -> bool:
        """True once any user-originated value has been recorded."""
        return any(
            isinstance(entry, dict) and entry.get("source") != "system"
            for entry in self._schema["status"]["fieldConfidence"].values()
        )

    def _notify(self, source: str) -> None:
        for listener in list(self._listeners):
            listener(self._schema, source)
