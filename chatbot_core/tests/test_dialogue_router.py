import asyncio
import json

import httpx
import pytest

from chatbot_core.context.window import ContextWindow
from chatbot_core.domain.exceptions import (
    AuthError,
    BadRequestError,
    ConfigurationError,
    RateLimitError,
    RequestCancelledError,
    ServerUnavailableError,
)
from chatbot_core.domain.models import CompletionResult, KnowledgeNode, StreamCallbacks, StreamChunk
from chatbot_core.knowledge import default_knowledge_base
from chatbot_core.providers.openrouter_client import OpenRouterClient
from chatbot_core.router import DialogueRouter, RoutingMode
from chatbot_core.router.messages import (
    AI_NOT_CONFIGURED_REPLY,
    CANCELLED_REPLY,
    FALLBACK_REPLY,
    OPTION_NOT_FOUND_REPLY,
    PLEASE_WAIT_REPLY,
)


class FakeClient:
    name = "fake"
    model = "fake/model"

    def __init__(self, chunks=("Hello", " world"), error=None, gate=None):
        self.chunks = list(chunks)
        self.error = error
        self.gate = gate
        self.calls = []
        self.cancelled = False

    async def send_message(self, messages, on_chunk=None, on_complete=None, on_error=None):
        self.calls.append([dict(m) for m in messages])
        if self.gate is not None:
            await self.gate.wait()
        if self.cancelled:
            raise RequestCancelledError(code="CANCELLED", message="Request cancelled by user")
        if self.error is not None:
            raise self.error
        accumulated = ""
        for chunk in self.chunks:
            accumulated += chunk
            if on_chunk:
                on_chunk(StreamChunk(delta_content=chunk, accumulated_content=accumulated))
        result = CompletionResult(content=accumulated, model=self.model)
        if on_complete:
            on_complete(result)
        return result

    def cancel(self):
        self.cancelled = True
        if self.gate is not None:
            self.gate.set()
        return True

    def get_model_info(self):
        return {"model": self.model, "max_tokens": 100, "temperature": 0.5}


def make_router(mode="keyword-only", client=None, **kwargs):
    context = ContextWindow(system_prompt="sys", max_messages=10, max_tokens=2000) if client else None
    return DialogueRouter(default_knowledge_base(), client=client, context=context, mode=mode, **kwargs)


def test_init_returns_welcome():
    router = make_router()
    response = router.init()
    assert response.reply.startswith("Welcome!")
    assert response.options == [
        {"label": "Get Help", "target_id": "help"},
        {"label": "End Chat", "target_id": "goodbye"},
    ]
    assert router.current_node.id == "welcome"
    assert len(router.history) == 1
    assert router.history[0].type == "bot"
    assert router.history[0].node_id == "welcome"


@pytest.mark.asyncio
async def test_keyword_only_match():
    router = make_router()
    router.init()
    response = await router.handle_input("help please")
    assert response.source == "keyword"
    assert response.reply == "Sure, I can help! What do you need assistance with?"
    assert response.confidence == 0.5
    assert [o["target_id"] for o in response.options] == ["product", "billing", "tech_support"]
    assert router.current_node.id == "help"
    assert [e.type for e in router.history] == ["bot", "user", "bot"]
    assert router.history[-1].node_id == "help"


@pytest.mark.asyncio
async def test_keyword_only_fallback():
    router = make_router()
    response = await router.handle_input("xyzzy")
    assert response.reply == FALLBACK_REPLY
    assert response.source == "fallback"
    assert response.options is None
    assert router.history[-1].source == "fallback"


@pytest.mark.asyncio
async def test_keyword_only_never_calls_client():
    client = FakeClient()
    router = make_router("keyword-only", client=client)
    response = await router.handle_input("xyzzy")
    assert response.reply == FALLBACK_REPLY
    assert client.calls == []


@pytest.mark.asyncio
async def test_hybrid_confident_match_uses_keyword_reply():
    client = FakeClient()
    router = make_router("hybrid", client=client, hybrid_threshold=0.3)
    response = await router.handle_input("hello")
    assert response.source == "keyword"
    assert client.calls == []
    assert router.context.get_context(False) == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": response.reply},
    ]


@pytest.mark.asyncio
async def test_hybrid_low_confidence_calls_ai():
    client = FakeClient()
    router = make_router("hybrid", client=client, hybrid_threshold=0.7)
    started = []
    chunks = []
    completed = []
    callbacks = StreamCallbacks(
        on_start=lambda: started.append(True),
        on_chunk=chunks.append,
        on_complete=completed.append,
    )
    response = await router.handle_input("hello", callbacks)

    assert response.reply == "Hello world"
    assert response.source == "api"
    assert response.model == "fake/model"
    assert client.calls == [[{"role": "system", "content": "sys"}, {"role": "user", "content": "hello"}]]
    assert started == [True]
    assert [c.accumulated_content for c in chunks] == ["Hello", "Hello world"]
    assert [r.content for r in completed] == ["Hello world"]
    assert router.history[-1].source == "api"
    assert router.history[-1].model == "fake/model"
    assert router.context.get_context(False)[-1] == {"role": "assistant", "content": "Hello world"}
    assert not router.ai_response_in_progress


@pytest.mark.asyncio
async def test_second_request_while_in_flight_gets_please_wait():
    gate = asyncio.Event()
    client = FakeClient(gate=gate)
    router = make_router("hybrid", client=client)

    first = asyncio.create_task(router.handle_input("xyzzy"))
    await asyncio.sleep(0)
    assert router.ai_response_in_progress

    second = await router.handle_input("another question")
    assert second.reply == PLEASE_WAIT_REPLY
    assert len(client.calls) == 1

    gate.set()
    response = await first
    assert response.reply == "Hello world"
    assert not router.ai_response_in_progress
    assert PLEASE_WAIT_REPLY not in [e.content for e in router.history]


@pytest.mark.asyncio
async def test_ai_only_without_client():
    router = make_router("ai-only")
    response = await router.handle_input("hello")
    assert response.reply == AI_NOT_CONFIGURED_REPLY
    assert response.source == "error"
    assert router.history[-1].source == "error"


@pytest.mark.asyncio
async def test_ai_only_ignores_keyword_match():
    client = FakeClient(chunks=["from model"])
    router = make_router("ai-only", client=client)
    response = await router.handle_input("hello")
    assert response.reply == "from model"
    assert len(client.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,expected",
    [
        (AuthError(code="INVALID_API_KEY", message="bad key", http_status=401),
         "⚠️ API authentication failed. Please check your API key configuration."),
        (RateLimitError(code="RATE_LIMIT", message="slow down", http_status=429),
         "⚠️ Too many requests. Please wait a moment and try again."),
        (ServerUnavailableError(code="SERVICE_UNAVAILABLE", message="down", http_status=503),
         "⚠️ The AI service is temporarily unavailable. Please try again later."),
        (RequestCancelledError(code="CANCELLED", message="Request cancelled by user"), "Response cancelled."),
        (BadRequestError(code="BAD_REQUEST", message="Bad request: no model"),
         "⚠️ An error occurred: Bad request: no model"),
        (RuntimeError("boom"), "⚠️ An error occurred: boom"),
    ],
)
async def test_ai_errors_become_user_facing_replies(error, expected):
    client = FakeClient(error=error)
    router = make_router("ai-only", client=client)
    errors = []
    response = await router.handle_input("hi", StreamCallbacks(on_error=errors.append))
    assert response.reply == expected
    assert response.source == "error"
    assert errors == [error]
    assert router.history[-1].content == expected
    assert router.history[-1].source == "error"
    assert [m["role"] for m in router.context.get_context(False)] == ["user"]
    assert not router.ai_response_in_progress


@pytest.mark.asyncio
async def test_cancel_ai_response():
    gate = asyncio.Event()
    client = FakeClient(gate=gate)
    router = make_router("ai-only", client=client)

    task = asyncio.create_task(router.handle_input("tell me a story"))
    await asyncio.sleep(0)
    assert router.cancel_ai_response() is True
    assert not router.ai_response_in_progress
    assert router.history[-1].content == CANCELLED_REPLY

    response = await task
    assert response.reply == CANCELLED_REPLY
    assert [e.content for e in router.history].count(CANCELLED_REPLY) == 1
    assert router.cancel_ai_response() is False


@pytest.mark.asyncio
async def test_input_right_after_cancel_keeps_history_order():
    gate = asyncio.Event()
    client = FakeClient(gate=gate)
    router = make_router("hybrid", client=client)

    task = asyncio.create_task(router.handle_input("xyzzy"))
    await asyncio.sleep(0)
    router.cancel_ai_response()
    response = await router.handle_input("hello")
    assert response.source == "keyword"
    await task

    assert [(e.type, e.content[:8]) for e in router.history] == [
        ("user", "xyzzy"),
        ("bot", CANCELLED_REPLY[:8]),
        ("user", "hello"),
        ("bot", "Welcome!"),
    ]


class IgnoresCancelClient(FakeClient):
    def cancel(self):
        self.gate.set()
        return True


@pytest.mark.asyncio
async def test_reply_finished_after_cancel_is_discarded():
    gate = asyncio.Event()
    router = make_router("ai-only", client=IgnoresCancelClient(gate=gate))

    task = asyncio.create_task(router.handle_input("hi"))
    await asyncio.sleep(0)
    router.cancel_ai_response()
    response = await task

    assert response.reply == CANCELLED_REPLY
    assert "Hello world" not in [e.content for e in router.history]
    assert [m["role"] for m in router.context.get_context(False)] == ["user"]


@pytest.mark.asyncio
async def test_on_start_not_fired_when_no_chunk_arrives():
    client = FakeClient(error=ServerUnavailableError(code="SERVICE_UNAVAILABLE", message="down", http_status=503))
    router = make_router("ai-only", client=client)
    started = []
    errors = []
    await router.handle_input("hi", StreamCallbacks(on_start=lambda: started.append(True), on_error=errors.append))
    assert started == []
    assert len(errors) == 1

    router = make_router("ai-only", client=FakeClient(chunks=[]))
    response = await router.handle_input("hi", StreamCallbacks(on_start=lambda: started.append(True)))
    assert response.reply == ""
    assert started == []


class RecordingClient(FakeClient):
    def __init__(self, events, **kwargs):
        super().__init__(**kwargs)
        self.events = events

    async def send_message(self, messages, on_chunk=None, on_complete=None, on_error=None):
        self.events.append("sent")
        return await super().send_message(messages, on_chunk, on_complete, on_error)


@pytest.mark.asyncio
async def test_on_start_fires_right_before_first_chunk():
    events = []
    router = make_router("ai-only", client=RecordingClient(events, chunks=["a", "b"]))
    callbacks = StreamCallbacks(
        on_start=lambda: events.append("start"),
        on_chunk=lambda c: events.append(f"chunk:{c.delta_content}"),
        on_complete=lambda r: events.append("complete"),
    )
    await router.handle_input("hi", callbacks)
    assert events == ["sent", "start", "chunk:a", "chunk:b", "complete"]


def test_option_selection():
    router = make_router()
    router.init()
    response = router.handle_option_selection("billing")
    assert response.reply.startswith("For billing inquiries")
    assert router.current_node.id == "billing"
    assert router.history[-1].node_id == "billing"

    missing = router.handle_option_selection("nope")
    assert missing.reply == OPTION_NOT_FOUND_REPLY
    assert missing.options is None
    assert missing.source == "fallback"
    assert router.history[-1].source == "fallback"
    assert router.current_node.id == "billing"


@pytest.mark.asyncio
async def test_knowledge_injection_resets_between_turns():
    client = FakeClient()
    router = make_router("hybrid", client=client, hybrid_threshold=1.0, inject_knowledge=True)

    await router.handle_input("pricing and billing")
    system = client.calls[0][0]
    assert system["role"] == "system"
    assert system["content"].startswith("sys\n\nRelevant knowledge base information:\nTopic: billing")
    assert "Topic: pricing" in system["content"]

    await router.handle_input("xyzzy")
    assert client.calls[1][0] == {"role": "system", "content": "sys"}


@pytest.mark.asyncio
async def test_export_and_load_history():
    client = FakeClient()
    router = make_router("hybrid", client=client, bot_metadata=None)
    router.init()
    await router.handle_input("hello")
    await router.handle_input("xyzzy")
    exported = router.export_history()

    data = json.loads(exported)
    assert data["version"] == "2.0"
    assert data["apiEnabled"] is True
    assert data["apiConfig"]["model"] == "fake/model"
    assert data["currentNodeId"] == "welcome"
    assert [m["type"] for m in data["messages"]] == ["bot", "user", "bot", "user", "bot"]

    restored = make_router("hybrid", client=FakeClient())
    result = restored.load_history(exported)
    assert result.success
    assert result.message_count == 5
    assert [e.content for e in restored.history] == [e.content for e in router.history]
    assert restored.current_node.id == "welcome"
    roles = [m["role"] for m in restored.context.get_context(False)]
    assert roles == ["assistant", "user", "assistant", "user", "assistant"]


def test_load_history_rejects_invalid_data():
    router = make_router()
    router.init()
    before = list(router.history)
    for bad in (
        "not json",
        {"messages": []},
        {"version": "2.0"},
        {"version": "2.0", "messages": [{"type": "robot", "content": "x"}]},
        {"version": "2.0", "messages": ["text"]},
    ):
        result = router.load_history(bad)
        assert result.success is False
        assert result.error
    assert router.history == before


@pytest.mark.asyncio
async def test_clear_history_resets_conversation():
    client = FakeClient()
    router = make_router("ai-only", client=client)
    router.init()
    await router.handle_input("hi")
    response = router.clear_history()
    assert response.reply.startswith("Welcome!")
    assert len(router.history) == 1
    assert router.context.messages == []


@pytest.mark.asyncio
async def test_status_and_state():
    router = make_router("hybrid", client=FakeClient())
    router.init()
    await router.handle_input("hello")
    state = router.get_current_state()
    assert state["current_node_id"] == "welcome"
    assert state["message_count"] == 3
    assert state["last_message_timestamp"] == router.history[-1].timestamp

    status = router.get_api_status()
    assert status["enabled"] is True
    assert status["mode"] == "hybrid"
    assert status["model"]["model"] == "fake/model"
    assert status["context_stats"]["message_count"] == 2
    assert status["response_in_progress"] is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"knowledge_base": []},
        {"knowledge_base": [KnowledgeNode(id="a", keywords=("x",), reply="1"),
                            KnowledgeNode(id="a", keywords=("y",), reply="2")]},
        {"client": FakeClient()},
        {"context": ContextWindow(system_prompt="s")},
        {"mode": "turbo"},
        {"hybrid_threshold": 1.5},
    ],
)
def test_constructor_rejects_invalid_configuration(kwargs):
    knowledge_base = kwargs.pop("knowledge_base", default_knowledge_base())
    with pytest.raises(ConfigurationError):
        DialogueRouter(knowledge_base, **kwargs)


def test_welcome_falls_back_to_first_node():
    router = DialogueRouter([KnowledgeNode(id="start", keywords=("go",), reply="Start here")])
    assert router.init().reply == "Start here"
    assert router.mode is RoutingMode.KEYWORD_ONLY


class _ClientSettings:
    openrouter_api_key = "sk-or-test-key"
    openrouter_base_url = "https://openrouter.ai/api/v1"
    model = "test/model"
    max_tokens = 100
    temperature = 0.5
    site_name = "Test Bot"
    site_url = ""
    http_timeout = 5.0
    retry_attempts = 0
    retry_delay = 0.0


@pytest.mark.asyncio
async def test_end_to_end_with_streaming_client():
    body = (
        b'data: {"choices":[{"delta":{"content":"Stream"}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"ed reply"},"finish_reason":"stop"}]}\n\n'
        b"data: [DONE]\n\n"
    )
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(200, content=body)

    client = OpenRouterClient(_ClientSettings(), transport=httpx.MockTransport(handler))
    router = make_router("ai-only", client=client)
    router.init()
    chunks = []
    response = await router.handle_input("what is the meaning of life", StreamCallbacks(on_chunk=chunks.append))

    assert response.reply == "Streamed reply"
    assert response.model == "test/model"
    assert "".join(c.delta_content for c in chunks) == "Streamed reply"
    assert requests[0]["messages"][-1] == {"role": "user", "content": "what is the meaning of life"}
    assert requests[0]["stream"] is True
    assert router.history[-1].source == "api"


def test_load_history_skips_error_replies_in_context():
    router = make_router("ai-only", client=FakeClient())
    history = {
        "version": "2.0",
        "messages": [
            {"id": "1", "type": "user", "content": "hi", "timestamp": "t1"},
            {"id": "2", "type": "bot", "content": "⚠️ Too many requests. Please wait a moment and try again.",
             "timestamp": "t2", "source": "error"},
            {"id": "3", "type": "user", "content": "hi again", "timestamp": "t3"},
            {"id": "4", "type": "bot", "content": "Hello!", "timestamp": "t4", "source": "api"},
        ],
    }
    result = router.load_history(history)
    assert result.success
    assert result.message_count == 4
    assert router.context.get_context(False) == [
        {"role": "user", "content": "hi"},
        {"role": "user", "content": "hi again"},
        {"role": "assistant", "content": "Hello!"},
    ]
