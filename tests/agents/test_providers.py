"""Tests for provider clients, the registry and StreamingSession"""

import json

import httpx
import pytest

from riyaan.agents.errors import ModelResolutionError, ProviderError
from riyaan.agents.providers import (
    GoogleGenAIProvider,
    LLMMessage,
    LLMProvider,
    LLMResponse,
    ModelHandle,
    OpenAIProvider,
    SessionOptions,
    StreamingSession,
    create_default_registry,
    get_default_model,
)
from riyaan.agents.tools.base import SessionTool


class ScriptedProvider(LLMProvider):
    """Yields one scripted list of responses per stream() call"""

    def __init__(self, turns):
        super().__init__("scripted")
        self.turns = list(turns)
        self.calls = []
        self.closed = False

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def stream(self, messages, tools=None, max_tokens=4096, **kwargs):
        self.calls.append({"messages": list(messages), "tools": tools})
        for response in self.turns.pop(0):
            yield response

    async def aclose(self) -> None:
        self.closed = True


def _session(turns, tools=None) -> tuple[StreamingSession, ScriptedProvider]:
    provider = ScriptedProvider(turns)
    handle = ModelHandle(provider="scripted", model="m")
    return StreamingSession(provider, handle, tools or []), provider


class TestRegistry:
    """Test ProviderRegistry and the catalog"""

    def test_default_model(self):
        assert get_default_model() == ("google", "gemini-3-flash-preview")

    def test_resolve_known_model(self):
        handle = create_default_registry().resolve_model("deepseek", "deepseek-chat")
        assert handle.context_window == 64_000
        assert handle.base_url == "https://api.deepseek.com/v1"

    def test_resolve_uncatalogued_model(self):
        handle = create_default_registry().resolve_model("openai", "gpt-next")
        assert handle.model == "gpt-next"
        assert handle.context_window == 128_000

    def test_unknown_provider(self):
        with pytest.raises(ModelResolutionError) as exc_info:
            create_default_registry().resolve_model("nope", "m")
        assert "anthropic, deepseek, google, openai" in str(exc_info.value)

    def test_empty_model(self):
        with pytest.raises(ModelResolutionError):
            create_default_registry().resolve_model("google", " ")

    @pytest.mark.asyncio
    async def test_open_session(self):
        registry = create_default_registry()
        handle = registry.resolve_model("openai", "gpt-4o")
        session = await registry.open_session(handle, [], SessionOptions())
        assert isinstance(session, StreamingSession)
        assert isinstance(session.provider, OpenAIProvider)
        await session.dispose()


class TestStreamingSession:
    """Test the tool loop and event emission"""

    @pytest.mark.asyncio
    async def test_text_reply(self):
        session, _ = _session([[
            LLMResponse(type="text_delta", content="Hel"),
            LLMResponse(type="text_delta", content="lo"),
            LLMResponse(type="done", finish_reason="stop"),
        ]])
        events = []
        session.subscribe(lambda event: events.append((event.type, event.payload)))

        assert await session.submit("hi") == "Hello"
        assert [t for t, _ in events] == ["message_start", "text_delta", "text_delta", "message_end"]
        assert events[1][1] == {"delta": "Hel"}
        assert session.messages[-1] == {"role": "assistant", "content": "Hello"}

    @pytest.mark.asyncio
    async def test_tool_loop(self):
        async def lookup(params):
            return {"answer": params["q"] * 2}

        tool = SessionTool(name="lookup", description="", handler=lookup)
        session, provider = _session(
            [
                [LLMResponse(type="tool_call", tool_calls=[{"id": "c1", "name": "lookup", "arguments": {"q": "ab"}}])],
                [LLMResponse(type="text_delta", content="done")],
            ],
            tools=[tool],
        )
        events = []
        session.subscribe(lambda event: events.append(event))

        assert await session.submit("go") == "done"

        tool_end = next(e for e in events if e.type == "tool_end")
        assert tool_end.payload["tool_name"] == "lookup"
        assert json.loads(tool_end.payload["result"]) == {"answer": "abab"}
        assert session.messages[2]["role"] == "tool"
        assert session.messages[2]["tool_call_id"] == "c1"
        assert provider.calls[0]["tools"][0]["function"]["name"] == "lookup"

    @pytest.mark.asyncio
    async def test_unknown_tool_reports_error(self):
        session, _ = _session([
            [LLMResponse(type="tool_call", tool_calls=[{"id": "c1", "name": "blocked_tool", "arguments": {}}])],
            [LLMResponse(type="text_delta", content="ok")],
        ])
        events = []
        session.subscribe(events.append)

        await session.submit("go")

        tool_end = next(e for e in events if e.type == "tool_end")
        assert tool_end.payload["is_error"] is True

    @pytest.mark.asyncio
    async def test_stream_error_raises(self):
        session, _ = _session([[LLMResponse(type="error", content="429 rate limit")]])
        events = []
        session.subscribe(lambda event: events.append(event.type))

        with pytest.raises(ProviderError, match="rate limit"):
            await session.submit("hi")
        assert events[-1] == "message_end"

    @pytest.mark.asyncio
    async def test_failed_turn_not_resent_on_retry(self):
        session, provider = _session([
            [LLMResponse(type="error", content="context window exceeded")],
            [LLMResponse(type="text_delta", content="ok")],
        ])

        with pytest.raises(ProviderError):
            await session.submit("big")
        assert session.messages == []

        assert await session.submit("big") == "ok"
        sent = [(m.role, m.content) for m in provider.calls[1]["messages"]]
        assert sent == [("user", "big")]
        assert [m["role"] for m in session.messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_answered_tool_turn_kept_on_error(self):
        session, _ = _session([
            [LLMResponse(type="tool_call", tool_calls=[{"id": "c1", "name": "missing", "arguments": {}}])],
            [LLMResponse(type="error", content="network error")],
        ])

        with pytest.raises(ProviderError):
            await session.submit("go")

        assert [m["role"] for m in session.messages] == ["user", "assistant", "tool"]

    @pytest.mark.asyncio
    async def test_dispose_idempotent(self):
        session, provider = _session([])
        unsubscribe = session.subscribe(lambda event: None)
        unsubscribe()

        await session.dispose()
        await session.dispose()

        assert provider.closed
        with pytest.raises(ProviderError):
            await session.submit("hi")


class TestOpenAIProvider:
    """Test OpenAI message conversion"""

    def test_convert_messages_preserves_tool_schema_and_ids(self):
        provider = OpenAIProvider("gpt-4o")
        converted = provider._convert_messages([
            LLMMessage(role="assistant", content="", tool_calls=[{"id": "call_1", "name": "bash", "arguments": {"command": "pwd"}}]),
            LLMMessage(role="tool", content="/home", tool_call_id="call_1", name="bash"),
        ])

        assert converted[0]["content"] is None
        assert converted[0]["tool_calls"][0]["function"]["name"] == "bash"
        assert json.loads(converted[0]["tool_calls"][0]["function"]["arguments"]) == {"command": "pwd"}
        assert converted[1] == {"role": "tool", "tool_call_id": "call_1", "content": "/home", "name": "bash"}

    def test_drops_tool_without_call_id(self):
        converted = OpenAIProvider("gpt-4o")._convert_messages([LLMMessage(role="tool", content="x")])
        assert converted == []

    def test_api_key_read_lazily(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "ds-key")
        provider = OpenAIProvider("deepseek-chat", api_key_env="DEEPSEEK_API_KEY", name="deepseek")
        assert provider.get_client().api_key == "ds-key"
        assert provider.provider_name == "deepseek"


class TestGoogleProvider:
    """Test Gemini streaming over a mocked transport"""

    @pytest.mark.asyncio
    async def test_stream_text_and_function_call(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["params"] = dict(request.url.params)
            captured["body"] = json.loads(request.content)
            chunks = [
                {"candidates": [{"content": {"parts": [{"text": "Hi "}]}}]},
                {"candidates": [{"content": {"parts": [
                    {"functionCall": {"name": "read_file", "args": {"path": "a"}}, "thoughtSignature": "sig"}
                ]}, "finishReason": "STOP"}]},
            ]
            body = "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)
            return httpx.Response(200, text=body)

        provider = GoogleGenAIProvider("gemini-3-flash-preview", transport=httpx.MockTransport(handler))
        messages = [LLMMessage(role="system", content="be brief"), LLMMessage(role="user", content="hello")]
        responses = [r async for r in provider.stream(messages, tools=[{"type": "function", "function": {"name": "read_file"}}])]
        await provider.aclose()

        assert [r.type for r in responses] == ["text_delta", "tool_call", "done"]
        assert responses[1].tool_calls[0]["arguments"] == {"path": "a"}
        assert responses[1].tool_calls[0]["thought_signature"] == "sig"
        assert captured["params"] == {"alt": "sse", "key": "g-key"}
        assert captured["body"]["systemInstruction"] == {"parts": [{"text": "be brief"}]}
        assert captured["body"]["tools"][0]["functionDeclarations"][0]["name"] == "read_file"

    @pytest.mark.asyncio
    async def test_http_error_becomes_error_response(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="API key not valid"))
        provider = GoogleGenAIProvider(transport=transport)

        responses = [r async for r in provider.stream([LLMMessage(role="user", content="hi")])]

        assert responses[0].type == "error"
        assert "API key not valid" in responses[0].content

    @pytest.mark.asyncio
    async def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        responses = [r async for r in GoogleGenAIProvider().stream([LLMMessage(role="user", content="hi")])]
        assert responses[0].type == "error"
