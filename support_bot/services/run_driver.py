"""Drives one assistant run from creation to a terminal state.

The run lives on the assistant service and is observed by polling. Each poll
result goes through `transition`, a pure function of (loop state, run status)
that says what to do next; `RunDriver` performs those effects: dispatching
tool calls, submitting their outputs, and producing the single reply text.
"""
import asyncio
import json
from dataclasses import dataclass, field, replace
from enum import Enum

from fastapi.concurrency import run_in_threadpool

from support_bot.config import OPENAI_ASSISTANT_ID, RUN_MAX_POLL_ATTEMPTS, RUN_POLL_INTERVAL_SECONDS
from support_bot.errors import RunTransportError
from support_bot.logging_config import get_logger
from support_bot.schemas.ticket import Attachment
from support_bot.services.sessions import ConversationSession, SessionStore

logger = get_logger(__name__)

ACTIVATION_ERROR_MESSAGE = "⚠️ Could not start the assistant. Please try again in a moment."
TRANSIENT_ERROR_MESSAGE = "⚠️ Processing error. Please try again."
EXPIRED_MESSAGE = "⚠️ Processing expired. Please try again."
TIMEOUT_MESSAGE = "⚠️ Processing took too long. Please try again."
EMPTY_REPLY_MESSAGE = "⚠️ The assistant did not return a response."
FAILED_MESSAGE = "⚠️ Error: {detail}"


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"
    EXPIRED = "expired"


class Effect(str, Enum):
    WAIT = "wait"
    DISPATCH_TOOLS = "dispatch_tools"
    REPLY_COMPLETED = "reply_completed"
    REPLY_FAILED = "reply_failed"
    REPLY_EXPIRED = "reply_expired"
    REPLY_TIMEOUT = "reply_timeout"


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class PollState:
    max_attempts: int
    attempt: int = 0
    done: bool = False


_TERMINAL_EFFECTS = {
    RunStatus.COMPLETED: Effect.REPLY_COMPLETED,
    RunStatus.FAILED: Effect.REPLY_FAILED,
    RunStatus.CANCELLED: Effect.REPLY_FAILED,
    RunStatus.INCOMPLETE: Effect.REPLY_FAILED,
    RunStatus.EXPIRED: Effect.REPLY_EXPIRED,
}


def transition(state: PollState, status: RunStatus) -> tuple[PollState, tuple[Effect, ...]]:
    """Consume one observed status. Terminal statuses win over the attempt budget."""
    if state.done:
        raise ValueError("poll loop already finished")
    state = replace(state, attempt=state.attempt + 1)

    if status in _TERMINAL_EFFECTS:
        return replace(state, done=True), (_TERMINAL_EFFECTS[status],)

    effects = (Effect.DISPATCH_TOOLS,) if status is RunStatus.REQUIRES_ACTION else ()
    if state.attempt >= state.max_attempts:
        return replace(state, done=True), effects + (Effect.REPLY_TIMEOUT,)
    return state, effects + (Effect.WAIT,)


@dataclass(frozen=True)
class InboundMessage:
    sender_id: str
    chat_id: int | str
    sender_name: str = ""
    text: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    voice_file_id: str | None = None

    def to_payload(self) -> str:
        return json.dumps(
            {
                "text": self.text or ("File sent" if self.attachments or self.voice_file_id else ""),
                "telegram_id": self.sender_id,
                "telegram_name": self.sender_name,
                "voice_file_id": self.voice_file_id,
                "attachments": [a.model_dump() for a in self.attachments],
            },
            ensure_ascii=False,
        )


@dataclass(frozen=True)
class RunOutcome:
    kind: OutcomeKind
    text: str
    run_id: str | None = None
    tool_batches: int = 0


class RunDriver:
    def __init__(self, client, dispatcher, sessions: SessionStore,
                 assistant_id: str | None = OPENAI_ASSISTANT_ID,
                 poll_interval_s: float = RUN_POLL_INTERVAL_SECONDS,
                 max_attempts: int = RUN_MAX_POLL_ATTEMPTS):
        self.client = client
        self.dispatcher = dispatcher
        self.sessions = sessions
        self.assistant_id = assistant_id
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts

    async def handle(self, message: InboundMessage) -> RunOutcome:
        outcome = await self._handle(message)
        if outcome.kind is not OutcomeKind.COMPLETED:
            self.sessions.evict(message.sender_id)
        return outcome

    async def _handle(self, message: InboundMessage) -> RunOutcome:
        try:
            thread_id = await self._thread_for(message.sender_id)
            await run_in_threadpool(self.client.add_message, thread_id, message.to_payload())
        except RunTransportError as e:
            logger.error(f"Could not post message from {message.sender_id}: {e.message}")
            return RunOutcome(OutcomeKind.TRANSIENT_ERROR, TRANSIENT_ERROR_MESSAGE)

        try:
            run = await run_in_threadpool(self.client.create_run, thread_id, self.assistant_id)
        except RunTransportError as e:
            logger.error(f"Could not create run on thread {thread_id}: {e.message}")
            return RunOutcome(OutcomeKind.TRANSIENT_ERROR, ACTIVATION_ERROR_MESSAGE)
        logger.info(f"Run {run.id} created on thread {thread_id}")

        return await self._poll(thread_id, run.id)

    async def _thread_for(self, sender_id: str) -> str:
        session = self.sessions.get(sender_id)
        if session is not None:
            return session.thread_id
        thread_id = await run_in_threadpool(self.client.create_thread)
        logger.info(f"Thread {thread_id} created for {sender_id}")
        self.sessions.put(sender_id, ConversationSession(thread_id=thread_id))
        return thread_id

    async def _poll(self, thread_id: str, run_id: str) -> RunOutcome:
        state = PollState(max_attempts=self.max_attempts)
        tool_batches = 0

        while True:
            try:
                run = await run_in_threadpool(self.client.retrieve_run, thread_id, run_id)
                status = RunStatus(run.status)
            except (RunTransportError, ValueError) as e:
                logger.error(f"Could not check run {run_id}: {e}")
                return RunOutcome(OutcomeKind.TRANSIENT_ERROR, TRANSIENT_ERROR_MESSAGE, run_id, tool_batches)

            state, effects = transition(state, status)
            logger.info(f"Run {run_id} status {status.value} (attempt {state.attempt}/{state.max_attempts})")

            for effect in effects:
                if effect is Effect.DISPATCH_TOOLS:
                    tool_batches += 1
                    try:
                        await self._submit_tools(thread_id, run)
                    except RunTransportError as e:
                        logger.error(f"Could not submit tool outputs for run {run_id}: {e.message}")
                        return RunOutcome(OutcomeKind.TRANSIENT_ERROR, TRANSIENT_ERROR_MESSAGE, run_id, tool_batches)
                elif effect is Effect.WAIT:
                    await asyncio.sleep(self.poll_interval_s)
                elif effect is Effect.REPLY_COMPLETED:
                    return await self._completed(thread_id, run_id, tool_batches)
                elif effect is Effect.REPLY_FAILED:
                    logger.error(f"Run {run_id} ended as {status.value}: {run.last_error}")
                    text = FAILED_MESSAGE.format(detail=run.last_error or "processing failed")
                    return RunOutcome(OutcomeKind.FAILED, text, run_id, tool_batches)
                elif effect is Effect.REPLY_EXPIRED:
                    logger.error(f"Run {run_id} expired")
                    return RunOutcome(OutcomeKind.TIMED_OUT, EXPIRED_MESSAGE, run_id, tool_batches)
                elif effect is Effect.REPLY_TIMEOUT:
                    logger.error(f"Run {run_id} still {status.value} after {state.attempt} attempts, giving up")
                    return RunOutcome(OutcomeKind.TIMED_OUT, TIMEOUT_MESSAGE, run_id, tool_batches)

    async def _submit_tools(self, thread_id: str, run) -> None:
        logger.info(f"Run {run.id} requires {len(run.pending_tool_calls)} tool call(s)")
        results = await run_in_threadpool(self.dispatcher.dispatch, run.pending_tool_calls)
        await run_in_threadpool(self.client.submit_tool_outputs, thread_id, run.id, results)

    async def _completed(self, thread_id: str, run_id: str, tool_batches: int) -> RunOutcome:
        try:
            text = await run_in_threadpool(self.client.latest_assistant_text, thread_id)
        except RunTransportError as e:
            logger.error(f"Could not read reply of run {run_id}: {e.message}")
            return RunOutcome(OutcomeKind.TRANSIENT_ERROR, TRANSIENT_ERROR_MESSAGE, run_id, tool_batches)
        if not text:
            return RunOutcome(OutcomeKind.COMPLETED, EMPTY_REPLY_MESSAGE, run_id, tool_batches)
        logger.info(f"Run {run_id} answered ({len(text)} chars)")
        return RunOutcome(OutcomeKind.COMPLETED, text, run_id, tool_batches)
