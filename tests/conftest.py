"""
Shared fixtures for the agent runtime tests

FakeRegistry opens FakeSession objects whose replies come from a responder
callable, so prompt-loop behaviour can be scripted per provider/model.
"""
from __future__ import annotations

import inspect

import pytest

from riyaan.agents.callbacks import AgentCallbacks, GuardrailResult
from riyaan.agents.events import SessionEvent
from riyaan.agents.plugins import PluginRegistry
from riyaan.agents.providers.registry import ProviderRegistry


class FakeSession:
    def __init__(self, handle, tools, responder):
        self.handle = handle
        self.tools = tools
        self.responder = responder
        self.messages: list[dict] = []
        self.submitted: list[str] = []
        self.disposed = False
        self._listeners = []

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def subscribe(self, listener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def emit(self, event_type: str, **payload) -> None:
        for listener in list(self._listeners):
            listener(SessionEvent(type=event_type, payload=payload))

    async def submit(self, text: str) -> str:
        self.submitted.append(text)
        self.messages.append({"role": "user", "content": text})
        self.emit("message_start")
        try:
            reply = self.responder(self, text)
            if inspect.isawaitable(reply):
                reply = await reply
            self.emit("text_delta", delta=reply)
            self.messages.append({"role": "assistant", "content": reply})
            return reply
        finally:
            self.emit("message_end")

    async def dispose(self) -> None:
        self.disposed = True


class FakeRegistry(ProviderRegistry):
    def __init__(self, responder=None, providers=("google", "openai", "deepseek")):
        super().__init__()
        for provider in providers:
            self.register(provider, lambda handle, options: None)
        self.responder = responder or (lambda session, text: f"echo: {text}")
        self.sessions: list[FakeSession] = []

    async def open_session(self, handle, tools, options):
        session = FakeSession(handle, tools, self.responder)
        self.sessions.append(session)
        return session


class RecordingCallbacks:
    """AgentCallbacks sinks that record every call"""

    def __init__(self, input_result=None, output_result=None):
        self.input_result = input_result or GuardrailResult()
        self.output_result = output_result or GuardrailResult()
        self.events: list[tuple[str, str]] = []
        self.runs = []
        self.messages = []
        self.resolved = []
        self.guardrail_calls: list[tuple[str, str]] = []

    async def check_guardrails(self, content, direction, session_id):
        self.guardrail_calls.append((content, direction))
        return self.input_result if direction == "input" else self.output_result

    async def emit_events(self, session_id, events):
        for event in events:
            self.events.append((event.event_type, event.data))

    async def persist_agent_run(self, session_id, run):
        self.runs.append(run)

    async def persist_messages(self, messages):
        self.messages.extend(messages)

    async def resolve_conversation(self, session_id, channel, started_at, messages):
        self.resolved.append(channel)

    def event_types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]

    def as_callbacks(self) -> AgentCallbacks:
        return AgentCallbacks(
            check_guardrails=self.check_guardrails,
            emit_events=self.emit_events,
            persist_agent_run=self.persist_agent_run,
            persist_messages=self.persist_messages,
            resolve_conversation=self.resolve_conversation,
        )


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def recording_callbacks():
    return RecordingCallbacks()


@pytest.fixture
def plugin_registry():
    return PluginRegistry()


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry_factory():
    return FakeRegistry


@pytest.fixture
def callbacks_factory():
    return RecordingCallbacks
