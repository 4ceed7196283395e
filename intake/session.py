"""One moving request's working state.

An ``EstimateSession`` wires a flow engine, a conversation controller and a
form binding around a single record. Sessions are created per request and
passed around explicitly; nothing here is process-wide.
"""

import logging

from intake.conversation import ConversationController
from intake.flow_engine import FlowEngine
from intake.form_binding import FormSync
from intake.moving_schema import create_default_schema, now_iso
from intake.request_store import load_request, save_request

logger = logging.getLogger(__name__)

SAVE_ERROR_MESSAGE = "죄송해요, 저장 중 문제가 발생했어요. 잠시 후 다시 시도해주세요."
SUBMIT_ERROR_MESSAGE = "죄송해요, 견적 요청을 보내지 못했어요. 잠시 후 다시 시도해주세요."


class EstimateSession:
    """Engine, chat and form for one request.

    Args:
        schema: A record to resume; a fresh default record when omitted.
        parser: Optional async parse collaborator for free-text chat.
        persisted: True when ``schema`` already exists in the store.
    """

    def __init__(self, schema: dict | None = None, parser=None, persisted: bool = False):
        self.engine = FlowEngine(schema)
        self.chat = ConversationController(self.engine, parser=parser)
        self.form_sync = FormSync(self.engine)
        self._persisted = persisted
        self.engine.subscribe(self._on_schema_change)

    def _on_schema_change(self, schema: dict, source: str) -> None:
        # Any write not coming from a parse result makes pending parses stale.
        if source != "chat":
            self.chat.invalidate_pending_parses()

    @classmethod
    def from_store(cls, request_id: str, parser=None) -> "EstimateSession":
        """Resume a stored request (status is recomputed on load).

        Raises:
            FileNotFoundError: If the request is not stored.
        """
        return cls(load_request(request_id), parser=parser, persisted=True)

    @property
    def request_id(self) -> str:
        return self.engine.schema["meta"]["requestId"]

    def start(self) -> None:
        """Open the conversation (no-op if it already started)."""
        self.chat.initialize_chat()

    def start_new_request(self, platform: str | None = None) -> str:
        """Discard the current request and begin a fresh one.

        Returns:
            The new request id.
        """
        self.engine.reset(create_default_schema(platform=platform))
        self.chat.clear_chat()
        self._persisted = False
        self.chat.initialize_chat()
        return self.request_id

    def _persist(self, record: dict) -> None:
        if self._persisted:
            save_request(record, self.request_id)
        else:
            save_request(record)
            self._persisted = True

    def save_draft(self) -> bool:
        """Persist the current record; apologise in chat on failure."""
        try:
            self._persist(self.engine.schema)
        except (OSError, ValueError) as e:
            logger.warning("Saving draft %s failed: %s", self.request_id, e)
            self.chat.add_message("system", SAVE_ERROR_MESSAGE)
            return False
        logger.info("Draft saved for request %s", self.request_id)
        return True

    def submit(self) -> dict:
        """Submit the request if every required field is answered.

        The record is stamped with ``submittedAt`` only once it has been
        written, so a failed write leaves it unchanged.

        Returns:
            ``{"submitted", "request_id", "missing"}`` where ``missing``
            lists the unanswered required field paths.
        """
        if not self.engine.can_submit():
            missing = [item["field"] for item in self.engine.get_missing_required_fields()]
            return {"submitted": False, "request_id": self.request_id, "missing": missing}

        submitted_at = now_iso()
        schema = self.engine.schema
        record = {**schema, "status": {**schema["status"], "submittedAt": submitted_at}}
        try:
            self._persist(record)
        except (OSError, ValueError) as e:
            logger.warning("Submitting request %s failed: %s", self.request_id, e)
            self.chat.add_message("system", SUBMIT_ERROR_MESSAGE)
            return {"submitted": False, "request_id": self.request_id, "missing": []}

        self.engine.set_submitted_at(submitted_at)
        logger.info("Request %s submitted", self.request_id)
        return {"submitted": True, "request_id": self.request_id, "missing": []}

    def status(self) -> dict:
        """Return progress for the request."""
        current = self.engine.get_current_step()
        return {
            "requestId": self.request_id,
            "completionRate": self.engine.get_completion_rate(),
            "missingRequired": self.engine.get_missing_required_fields(),
            "canSubmit": self.engine.can_submit(),
            "submittedAt": self.engine.schema["status"]["submittedAt"],
            "currentStep": current.id if current else None,
            "activeSteps": [step.id for step in self.engine.get_active_steps()],
            "completedSteps": sorted(self.engine.completed_steps),
        }

    def snapshot(self) -> dict:
        """Return a JSON-able view of the whole session."""
        return {
            "requestId": self.request_id,
            "schema": self.engine.schema,
            "chat": self.chat.snapshot(),
            "form": self.form_sync.form.model_dump(),
            "status": self.status(),
        }
