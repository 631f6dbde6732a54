import asyncio
import json

import pytest

from support_bot.errors import RunTransportError
from support_bot.schemas.ticket import Attachment
from support_bot.services.assistant_client import RunSnapshot
from support_bot.services.run_driver import (
    ACTIVATION_ERROR_MESSAGE,
    EXPIRED_MESSAGE,
    TIMEOUT_MESSAGE,
    TRANSIENT_ERROR_MESSAGE,
    Effect,
    InboundMessage,
    OutcomeKind,
    PollState,
    RunDriver,
    RunStatus,
    transition,
)
from support_bot.services.sessions import InMemorySessionStore
from support_bot.services.tools import ToolCallRequest


class _FakeAssistant:
    """Replays a scripted list of run statuses."""

    def __init__(self, statuses, tool_calls=None, reply="All done!", fail_on=None, last_error=None):
        self.statuses = list(statuses)
        self.tool_calls = tool_calls or []
        self.reply = reply
        self.fail_on = fail_on or set()
        self.last_error = last_error
        self.threads = 0
        self.messages = []
        self.submissions = []
        self.polls = 0

    def _maybe_fail(self, step):
        if step in self.fail_on:
            raise RunTransportError(f"{step} failed")

    def create_thread(self):
        self._maybe_fail("create_thread")
        self.threads += 1
        return f"thread_{self.threads}"

    def add_message(self, thread_id, content):
        self._maybe_fail("add_message")
        self.messages.append((thread_id, json.loads(content)))

    def create_run(self, thread_id, assistant_id):
        self._maybe_fail("create_run")
        return RunSnapshot(id="run_1", status="queued")

    def retrieve_run(self, thread_id, run_id):
        self._maybe_fail("retrieve_run")
        status = self.statuses[min(self.polls, len(self.statuses) - 1)]
        self.polls += 1
        pending = self.tool_calls if status == "requires_action" else []
        return RunSnapshot(id=run_id, status=status, pending_tool_calls=pending, last_error=self.last_error)

    def submit_tool_outputs(self, thread_id, run_id, results):
        self._maybe_fail("submit_tool_outputs")
        self.submissions.append([r.as_submission() for r in results])
        return RunSnapshot(id=run_id, status="queued")

    def latest_assistant_text(self, thread_id):
        self._maybe_fail("latest_assistant_text")
        return self.reply


class _CountingDispatcher:
    def __init__(self, inner=None):
        self.inner = inner
        self.batches = []

    def dispatch(self, requests):
        self.batches.append(list(requests))
        return self.inner.dispatch(requests)


def _driver(client, dispatcher, max_attempts=20, ttl=1800):
    return RunDriver(
        client=client,
        dispatcher=dispatcher,
        sessions=InMemorySessionStore(ttl_seconds=ttl),
        assistant_id="asst_1",
        poll_interval_s=0,
        max_attempts=max_attempts,
    )


def _message(text="Hello", sender_id="U1"):
    return InboundMessage(sender_id=sender_id, chat_id=42, sender_name="Ana Souza", text=text)


def test_transition_keeps_polling_while_run_is_busy() -> None:
    state, effects = transition(PollState(max_attempts=3), RunStatus.IN_PROGRESS)

    assert effects == (Effect.WAIT,)
    assert state.attempt == 1
    assert not state.done


def test_transition_dispatches_on_requires_action() -> None:
    state, effects = transition(PollState(max_attempts=3), RunStatus.REQUIRES_ACTION)
    assert effects == (Effect.DISPATCH_TOOLS, Effect.WAIT)
    assert not state.done


@pytest.mark.parametrize("status, effect", [
    (RunStatus.COMPLETED, Effect.REPLY_COMPLETED),
    (RunStatus.FAILED, Effect.REPLY_FAILED),
    (RunStatus.CANCELLED, Effect.REPLY_FAILED),
    (RunStatus.EXPIRED, Effect.REPLY_EXPIRED),
])
def test_transition_terminal_states(status, effect) -> None:
    state, effects = transition(PollState(max_attempts=1), status)
    assert effects == (effect,)
    assert state.done


def test_transition_budget_exhausted() -> None:
    state, effects = transition(PollState(max_attempts=2, attempt=1), RunStatus.REQUIRES_ACTION)

    assert effects == (Effect.DISPATCH_TOOLS, Effect.REPLY_TIMEOUT)
    assert state.done
    with pytest.raises(ValueError):
        transition(state, RunStatus.IN_PROGRESS)


def test_completed_run_returns_latest_assistant_message(dispatcher) -> None:
    client = _FakeAssistant(["queued", "in_progress", "completed"], reply="Your ticket is CAR123456789")
    message = InboundMessage(
        sender_id="U1", chat_id=42, sender_name="Ana", text=None,
        attachments=[Attachment(name="a.pdf", url="https://files.example/a.pdf")],
    )

    outcome = asyncio.run(_driver(client, dispatcher).handle(message))

    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.text == "Your ticket is CAR123456789"
    assert client.polls == 3
    _, payload = client.messages[0]
    assert payload["telegram_id"] == "U1"
    assert payload["text"] == "File sent"
    assert payload["attachments"] == [{"name": "a.pdf", "url": "https://files.example/a.pdf"}]


def test_requires_action_with_unknown_tool_submits_both_outputs(dispatcher) -> None:
    tool_calls = [
        ToolCallRequest("call_1", "getDepartments", "{}"),
        ToolCallRequest("call_2", "launchRocket", "{}"),
    ]
    client = _FakeAssistant(["requires_action", "in_progress", "completed"], tool_calls=tool_calls)

    outcome = asyncio.run(_driver(client, dispatcher).handle(_message()))

    assert outcome.kind is OutcomeKind.COMPLETED
    assert client.polls == 3
    [submitted] = client.submissions
    assert [s["tool_call_id"] for s in submitted] == ["call_1", "call_2"]
    assert "departments" in json.loads(submitted[0]["output"])
    assert json.loads(submitted[1]["output"])["error"] == "launchRocket not found"


def test_expired_after_tool_call_dispatches_exactly_once(dispatcher) -> None:
    counting = _CountingDispatcher(dispatcher)
    client = _FakeAssistant(
        ["in_progress", "requires_action", "in_progress", "expired"],
        tool_calls=[ToolCallRequest("call_1", "getDepartments", "{}")],
    )

    outcome = asyncio.run(_driver(client, counting).handle(_message()))

    assert len(counting.batches) == 1
    assert len(client.submissions) == 1
    assert outcome.kind is OutcomeKind.TIMED_OUT
    assert outcome.text == EXPIRED_MESSAGE
    assert outcome.tool_batches == 1


def test_failed_run_reports_its_error(dispatcher) -> None:
    client = _FakeAssistant(["in_progress", "failed"], last_error="Rate limit reached")

    outcome = asyncio.run(_driver(client, dispatcher).handle(_message()))

    assert outcome.kind is OutcomeKind.FAILED
    assert "Rate limit reached" in outcome.text


def test_attempt_budget_ends_with_timeout(dispatcher) -> None:
    client = _FakeAssistant(["in_progress"])

    outcome = asyncio.run(_driver(client, dispatcher, max_attempts=5).handle(_message()))

    assert client.polls == 5
    assert outcome.kind is OutcomeKind.TIMED_OUT
    assert outcome.text == TIMEOUT_MESSAGE


def test_run_creation_failure_stops_before_polling(dispatcher) -> None:
    client = _FakeAssistant(["completed"], fail_on={"create_run"})

    outcome = asyncio.run(_driver(client, dispatcher).handle(_message()))

    assert outcome.kind is OutcomeKind.TRANSIENT_ERROR
    assert outcome.text == ACTIVATION_ERROR_MESSAGE
    assert client.polls == 0


def test_poll_transport_error_is_not_retried(dispatcher) -> None:
    client = _FakeAssistant(["in_progress"], fail_on={"retrieve_run"})

    outcome = asyncio.run(_driver(client, dispatcher).handle(_message()))

    assert outcome.kind is OutcomeKind.TRANSIENT_ERROR
    assert outcome.text == TRANSIENT_ERROR_MESSAGE


def test_unknown_run_status_is_a_transient_error(dispatcher) -> None:
    client = _FakeAssistant(["paused_forever"])

    outcome = asyncio.run(_driver(client, dispatcher).handle(_message()))

    assert outcome.kind is OutcomeKind.TRANSIENT_ERROR


def test_thread_is_reused_per_sender_until_a_failure(dispatcher) -> None:
    client = _FakeAssistant(["completed"])
    driver = _driver(client, dispatcher)

    asyncio.run(driver.handle(_message("first")))
    asyncio.run(driver.handle(_message("second")))
    asyncio.run(driver.handle(_message("other user", sender_id="U2")))

    assert [thread for thread, _ in client.messages] == ["thread_1", "thread_1", "thread_2"]

    client.fail_on = {"retrieve_run"}
    asyncio.run(driver.handle(_message("third")))
    client.fail_on = set()
    asyncio.run(driver.handle(_message("fourth")))

    assert client.messages[-1][0] == "thread_3"


def test_zero_ttl_creates_a_thread_per_message(dispatcher) -> None:
    client = _FakeAssistant(["completed"])
    driver = _driver(client, dispatcher, ttl=0)

    asyncio.run(driver.handle(_message("first")))
    asyncio.run(driver.handle(_message("second")))

    assert client.threads == 2


class _MalformedRunAssistant(_FakeAssistant):
    def retrieve_run(self, thread_id, run_id):
        self.polls += 1
        return RunSnapshot.from_api({"id": run_id, "status": "requires_action", "required_action": "oops"})


def test_malformed_run_payload_is_a_transient_error(dispatcher) -> None:
    client = _MalformedRunAssistant(["requires_action"])

    outcome = asyncio.run(_driver(client, dispatcher).handle(_message()))

    assert outcome.kind is OutcomeKind.TRANSIENT_ERROR
    assert outcome.text == TRANSIENT_ERROR_MESSAGE
    assert client.submissions == []
