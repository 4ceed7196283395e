"""Chat turn-taking on top of the flow engine.

Keeps the message log and the input mode, asks guided questions in order,
short-circuits trivially recognizable free text to a local answer, sends the
rest to the AI parse collaborator, and runs the recovery pass that asks once
for each required field still empty after the guided sequence ends.

Step completion is owned by the engine; the controller only reads it.
"""

import asyncio
import logging
import uuid

from intake.flow_engine import FlowEngine
from intake.input_detector import parse_local_answer
from intake.moving_parser import DEFAULT_REPLY, parse_moving_input
from intake.moving_schema import now_iso
from intake.step_catalog import get_recovery_step, get_recovery_step_by_id

logger = logging.getLogger(__name__)

MESSAGE_ROLES = ("user", "system", "ai")
INPUT_MODES = ("guided", "free_text")

WELCOME_MESSAGE = (
    "안녕하세요! 이사 견적을 도와드릴게요. "
    "몇 가지 질문에 답해주시면 최적의 업체를 찾아드릴게요."
)
RECOVERY_NOTICE = "입력되지 않은 필수 정보가 있어요. 몇 가지만 더 여쭤볼게요."
READY_MESSAGE = "모든 정보 입력이 완료되었어요! 아래 버튼을 눌러 견적을 요청해주세요."
PARSE_ERROR_MESSAGE = "죄송해요, 입력을 처리하는 중 오류가 발생했어요. 다시 시도해주세요."


async def default_parser(text: str) -> dict:
    """Run the blocking LLM extraction off the event loop."""
    return await asyncio.to_thread(parse_moving_input, text)


def _option_payload(step) -> list[dict]:
    return [
        {"label": option.label, "value": option.value, "description": option.description}
        for option in step.options
    ]


def question_with_hint(step) -> str:
    """Return the step question followed by an option or description hint."""
    if step.options:
        labels = " / ".join(option.label for option in step.options)
        return f"{step.question}\n({labels})"
    if step.description:
        return f"{step.question}\n({step.description})"
    return step.question


class ConversationController:
    """Message log and turn logic for one request.

    Args:
        engine: The request's flow engine.
        parser: Async callable ``text -> parse result`` (see
            ``intake.moving_parser.parse_moving_input``). Defaults to the
            LLM-backed parser run in a worker thread.
    """

    def __init__(self, engine: FlowEngine, parser=None):
        self.engine = engine
        self._parser = parser or default_parser
        self.messages: list[dict] = []
        self.input_mode = "guided"
        self.current_step_id: str | None = None
        self.recovery_mode = False
        self.current_recovery_field: str | None = None
        self.attempted_recovery_fields: set[str] = set()
        self._recovery_notice_shown = False
        self._ready_announced = False
        self._pending_tokens: set[int] = set()
        self._parse_token = 0

    # -- state --------------------------------------------------------------

    @property
    def is_loading(self) -> bool:
        """True while at least one free-text parse is in flight."""
        return bool(self._pending_tokens)

    @property
    def completed_steps(self) -> frozenset:
        return self.engine.completed_steps

    @property
    def current_recovery_step(self):
        if self.current_recovery_field is None:
            return None
        return get_recovery_step(self.current_recovery_field)

    def add_message(self, role: str, content: str, **fields) -> dict:
        """Append a chat message.

        Args:
            role: 'user', 'system' or 'ai'.
            content: The message text.
            **fields: Optional extras (step_id, input_type, options,
                editable, confidence, tip_card). None values are omitted.

        Returns:
            The appended message.
        """
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Invalid chat role: {role}. Must be one of {MESSAGE_ROLES}")
        message = {
            "id": f"msg_{uuid.uuid4().hex[:12]}",
            "role": role,
            "content": content,
            "timestamp": now_iso(),
        }
        message.update({key: value for key, value in fields.items() if value is not None})
        self.messages.append(message)
        return message

    def invalidate_pending_parses(self) -> None:
        """Make every in-flight parse stale so its result is discarded."""
        self._parse_token += 1

    # -- turns --------------------------------------------------------------

    def initialize_chat(self) -> None:
        """Emit the welcome message and the first question (once)."""
        if self.messages:
            return
        self.add_message("system", WELCOME_MESSAGE)
        self.show_next_step()

    def handle_guided_answer(self, step_id: str, value, display_text: str | None = None) -> None:
        """Apply an answer to a guided or recovery step and move on.

        The record is updated before anything is logged, so an invalid
        answer (``ValueError``) or an unknown step (``UnknownStepError``)
        leaves the conversation unchanged.
        """
        recovery_step = get_recovery_step_by_id(step_id)
        if recovery_step is not None:
            self.engine.process_recovery_answer(recovery_step.field_path, value)
            if recovery_step.field_path == self.current_recovery_field:
                self.current_recovery_field = None
        else:
            self.engine.process_answer(step_id, value)

        self.invalidate_pending_parses()
        self.add_message(
            "user",
            display_text if display_text is not None else str(value),
            step_id=step_id,
            editable=recovery_step is None,
        )
        self.current_step_id = step_id
        self.show_next_step()

    def show_next_step(self):
        """Ask the next unanswered question, or run the recovery pass.

        Returns:
            The step asked (guided or recovery), or None when nothing is
            left to ask.
        """
        step = self.engine.get_current_step()
        if step is not None:
            self.current_recovery_field = None
            self.recovery_mode = False
            self._ask(step)
            return step

        pending = [
            item["field"]
            for item in self.engine.get_missing_required_fields()
            if item["field"] not in self.attempted_recovery_fields
        ]
        if pending:
            field_path = pending[0]
            if not self.recovery_mode:
                self.recovery_mode = True
                if not self._recovery_notice_shown:
                    self.add_message("system", RECOVERY_NOTICE)
                    self._recovery_notice_shown = True
            # Attempted as soon as asked: each field is asked at most once.
            self.attempted_recovery_fields.add(field_path)
            self.current_recovery_field = field_path
            recovery_step = get_recovery_step(field_path)
            self._ask(recovery_step)
            return recovery_step

        self.recovery_mode = False
        self.current_recovery_field = None
        self.current_step_id = None
        if self.engine.can_submit() and not self._ready_announced:
            self.add_message("system", READY_MESSAGE)
            self._ready_announced = True
        return None

    def _ask(self, step) -> None:
        if step.tip_card is not None:
            tip = step.tip_card
            self.add_message(
                "system",
                f"💡 {tip.title}\n{tip.description}",
                step_id=step.id,
                tip_card={"id": tip.id, "badge": tip.badge, "badgeColor": tip.badge_color},
            )
        self.add_message(
            "system",
            question_with_hint(step),
            step_id=step.id,
            input_type=step.input_type,
            options=_option_payload(step) or None,
        )
        self.current_step_id = step.id
        self._ready_announced = False

    def revert_to_step(self, step_id: str) -> None:
        """Rewind the conversation to re-answer ``step_id``.

        Raises:
            UnknownStepError: If ``step_id`` is not in the catalog.
            StepNotActiveError: If the step is currently skipped.
        """
        self.engine.revert_to_step(step_id)
        self.invalidate_pending_parses()
        self.messages = self.messages[:self._rewind_index(step_id)]
        self.recovery_mode = False
        self.current_recovery_field = None
        self.attempted_recovery_fields.clear()
        self._recovery_notice_shown = False
        self.current_step_id = step_id
        self.show_next_step()

    def _rewind_index(self, step_id: str) -> int:
        """Index of the first message to drop when rewinding to ``step_id``.

        The cut is placed before the question (and tip card) that preceded
        the step's user answer, so re-showing the step does not duplicate it.
        """
        answer_index = next(
            (i for i, msg in enumerate(self.messages)
             if msg["role"] == "user" and msg.get("step_id") == step_id),
            None,
        )
        if answer_index is None:
            return len(self.messages)
        cut = answer_index
        while cut > 0:
            previous = self.messages[cut - 1]
            if previous["role"] != "system" or previous.get("step_id") != step_id:
                break
            cut -= 1
        return cut

    def set_input_mode(self, mode: str) -> None:
        if mode not in INPUT_MODES:
            raise ValueError(f"Invalid input mode: {mode}. Must be one of {INPUT_MODES}")
        self.input_mode = mode

    async def handle_free_text_input(self, text: str) -> None:
        """Handle a free-text chat message.

        A message recognizable as an answer to the question being asked is
        applied locally. Anything else goes to the parser; its result is
        merged only if no newer answer, revert or parse happened meanwhile.
        Failures leave the record untouched and add an apology message.
        """
        text = text.strip()
        if not text:
            return

        step = self.current_recovery_step or self.engine.get_current_step()
        local_answer = parse_local_answer(text, step)
        if local_answer is not None:
            try:
                self.handle_guided_answer(step.id, local_answer, text)
                return
            except ValueError as e:
                logger.info("Local answer rejected for %s: %s. Using AI parse.", step.id, e)

        self.add_message("user", text)
        self.invalidate_pending_parses()
        token = self._parse_token
        self._pending_tokens.add(token)
        try:
            result = await self._parser(text)
            if token != self._parse_token:
                logger.info("Discarding stale parse result (token %d, latest %d)", token, self._parse_token)
                return
            if not result.get("success") or result.get("data") is None:
                logger.info("Free-text parse unsuccessful: %s", result.get("error"))
                self.add_message("system", PARSE_ERROR_MESSAGE, error=result.get("error"))
                return
            confidence = result.get("confidence") or {}
            self.engine.apply_external_parse(result["data"], confidence)
            average = sum(confidence.values()) / len(confidence) if confidence else None
            self.add_message("ai", result.get("message") or DEFAULT_REPLY, confidence=average)
            self.show_next_step()
        except Exception as e:
            logger.warning("Free-text parse failed: %s. Asking user to retry.", e)
            self.add_message("system", PARSE_ERROR_MESSAGE)
        finally:
            self._pending_tokens.discard(token)

    def clear_chat(self) -> None:
        """Reset all conversation state (the engine is reset by its owner)."""
        self.invalidate_pending_parses()
        self.messages = []
        self.input_mode = "guided"
        self.current_step_id = None
        self.recovery_mode = False
        self.current_recovery_field = None
        self.attempted_recovery_fields = set()
        self._recovery_notice_shown = False
        self._ready_announced = False

    def snapshot(self) -> dict:
        """Return a JSON-able view of the conversation state."""
        return {
            "messages": list(self.messages),
            "inputMode": self.input_mode,
            "isLoading": self.is_loading,
            "currentStepId": self.current_step_id,
            "completedSteps": sorted(self.completed_steps),
            "recoveryMode": self.recovery_mode,
            "currentRecoveryField": self.current_recovery_field,
            "attemptedRecoveryFields": sorted(self.attempted_recovery_fields),
        }
