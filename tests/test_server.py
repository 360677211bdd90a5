"""Tests for the HTTP surface: /chat SSE streaming, /tools and /health."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from chatloop import __version__
from chatloop.config import ChatloopConfig
from chatloop.errors import UnsupportedProviderError
from chatloop.llm.router import LLMRouter, ResolvedProvider
from chatloop.session.store import ConversationStore
from chatloop.server.app import create_app
from chatloop.tools.registry import build_registry
from tests.mock_backends import analytics_client, sample_knowledge_base
from tests.mock_providers import MockProvider, parse_frames, text_turn, tool_turn


class Harness:
    """Wires the app to scripted providers and canned backends."""

    def __init__(self, config: ChatloopConfig) -> None:
        self.config = config
        self.turns = [text_turn("4")]
        self.fail_on_call: int | None = None
        self.providers: list[MockProvider] = []
        self.routed: list[tuple] = []
        self.store = ConversationStore(":memory:")

    def resolve(self, provider, model) -> ResolvedProvider:
        self.routed.append((provider, model))
        if provider == "bogus":
            raise UnsupportedProviderError(provider)
        mock = MockProvider(self.turns, fail_on_call=self.fail_on_call)
        self.providers.append(mock)
        return ResolvedProvider(mock, model or "mock-model")

    def registry(self, allowed):
        return build_registry(
            self.config,
            allowed,
            analytics=analytics_client([{"total_accounts": 42}]),
            knowledge=sample_knowledge_base(),
        )

    def app(self):
        return create_app(
            self.config,
            store=self.store,
            provider_factory=self.resolve,
            registry_factory=self.registry,
        )

    def messages(self, client: TestClient, conversation_id: str) -> list[dict]:
        return client.portal.call(self.store.get_messages, conversation_id)


@pytest.fixture
def config() -> ChatloopConfig:
    return ChatloopConfig()


@pytest.fixture
def harness(config) -> Harness:
    return Harness(config)


@pytest.fixture
def client(harness):
    with TestClient(harness.app()) as c:
        yield c


# ---------------------------------------------------------------------------
# POST /chat
# ---------------------------------------------------------------------------


class TestChatStream:
    def test_simple_answer(self, client, harness):
        resp = client.post("/chat", json={"prompt": "What is 2+2?"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"

        frames = parse_frames(resp.text)
        assert frames[0]["type"] == "conversation_id"
        assert frames[1] == {"type": "text", "content": "4"}
        assert frames[-1] == {"type": "done", "reason": "model-no-tools", "iterations": 1}

        saved = harness.messages(client, frames[0]["conversationId"])
        assert [(m["role"], m["content"]) for m in saved] == [("user", "What is 2+2?"), ("assistant", "4")]

    def test_tool_round_trip(self, client, harness):
        harness.turns = [
            tool_turn("evaluate_expression", {"expression": "2+2*3"}),
            text_turn("The answer is 8"),
        ]
        frames = parse_frames(client.post("/chat", json={"prompt": "What is 2+2*3?"}).text)
        types = [f["type"] for f in frames]

        assert types[:3] == ["conversation_id", "tool_result", "iteration"]
        assert frames[1]["toolName"] == "evaluate_expression"
        assert frames[1]["result"] == {"success": True, "data": {"result": 8}}
        assert frames[2] == {"type": "iteration", "iteration": 2, "maxIterations": 10}
        assert "".join(f["content"] for f in frames if f["type"] == "text") == "The answer is 8"
        assert frames[-1]["reason"] == "model-no-tools"

    def test_camel_case_options(self, client, harness):
        harness.turns = [tool_turn("evaluate_expression", {"expression": "1+1"})]
        frames = parse_frames(client.post("/chat", json={
            "prompt": "loop",
            "maxIterations": 2,
            "conversationId": "conv-fixed",
            "userId": "alice",
        }).text)
        assert frames[0] == {"type": "conversation_id", "conversationId": "conv-fixed"}
        assert frames[-1] == {"type": "done", "reason": "max-iterations", "iterations": 2}
        conv = client.portal.call(harness.store.get_conversation, "conv-fixed")
        assert conv["user_id"] == "alice"

    def test_enable_loop_false(self, client, harness):
        harness.turns = [tool_turn("evaluate_expression", {"expression": "1+1"})]
        frames = parse_frames(client.post("/chat", json={"prompt": "once", "enableLoop": False}).text)
        assert frames[-1] == {"type": "done", "reason": "loop-disabled", "iterations": 1}
        assert harness.providers[0].call_count == 1

    def test_messages_take_precedence(self, client, harness):
        client.post("/chat", json={
            "prompt": "ignored",
            "messages": [
                {"role": "user", "content": "first"},
                {"role": "assistant", "content": "reply"},
                {"role": "user", "content": "second"},
            ],
        })
        history = harness.providers[0].histories[0]
        assert [m.content for m in history] == ["first", "reply", "second"]

    def test_provider_and_model_forwarded(self, client, harness):
        client.post("/chat", json={"prompt": "hi", "provider": "anthropic", "model": "haiku"})
        assert harness.routed == [("anthropic", "haiku")]
        assert harness.providers[0].last_model == "haiku"

    def test_tool_subset(self, client, harness):
        client.post("/chat", json={"prompt": "hi", "tools": ["evaluate_expression", "complete_task"]})
        names = [t.name for t in harness.providers[0].last_tools]
        assert names == ["complete_task", "evaluate_expression"]
        assert "evaluate_expression" in "\n".join(harness.providers[0].system_prompts[0])

    def test_stream_error_frames(self, harness):
        harness.fail_on_call = 1
        with TestClient(harness.app()) as c:
            frames = parse_frames(c.post("/chat", json={"prompt": "hi"}).text)
        assert [f["type"] for f in frames] == ["conversation_id", "error", "done"]
        assert frames[1]["code"] == "provider_error"
        assert frames[2]["reason"] == "stream-error"


class TestChatErrors:
    def test_missing_input(self, client):
        resp = client.post("/chat", json={})
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "Either prompt or messages is required",
            "code": "missing_input",
            "details": {},
        }

    def test_blank_messages(self, client):
        resp = client.post("/chat", json={"messages": [{"role": "user", "content": "  "}]})
        assert resp.status_code == 400
        assert resp.json()["code"] == "missing_input"

    def test_unsupported_provider(self, client):
        resp = client.post("/chat", json={"prompt": "hi", "provider": "bogus"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "unsupported_provider"
        assert resp.json()["details"] == {"provider": "bogus"}

    def test_invalid_body(self, client):
        resp = client.post("/chat", json={"prompt": "hi", "maxIterations": 0})
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"


class TestRouterErrors:
    @pytest.fixture
    def router_client(self, config):
        app = create_app(
            config,
            store=ConversationStore(":memory:"),
            provider_factory=LLMRouter(config.providers, environ={}),
        )
        with TestClient(app) as c:
            yield c

    def test_api_key_missing(self, router_client):
        resp = router_client.post("/chat", json={"prompt": "hi"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "GROQ_API_KEY not configured"
        assert resp.json()["code"] == "api_key_missing"

    def test_anthropic_key_missing(self, router_client):
        resp = router_client.post("/chat", json={"prompt": "hi", "provider": "claude"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "ANTHROPIC_API_KEY not configured"

    def test_unknown_provider(self, router_client):
        resp = router_client.post("/chat", json={"prompt": "hi", "provider": "mistral"})
        assert resp.status_code == 400
        assert resp.json()["details"] == {"provider": "mistral"}


# ---------------------------------------------------------------------------
# /tools and /health
# ---------------------------------------------------------------------------


class TestTools:
    def test_list(self, client):
        body = client.get("/tools").json()
        assert body["count"] == 10
        names = [t["name"] for t in body["tools"]]
        assert "batch_tool" in names
        expr = next(t for t in body["tools"] if t["name"] == "evaluate_expression")
        assert expr["parameters"]["required"] == ["expression"]

    def test_invoke(self, client):
        resp = client.post("/tools", json={"tool": "evaluate_expression", "arguments": {"expression": "2+2*3"}})
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["result"] == {"success": True, "data": {"result": 8}}
        assert isinstance(body["executionTime"], int)
        assert "error" not in body

    def test_invoke_sql(self, client):
        body = client.post("/tools", json={"tool": "execute_sql", "arguments": {}}).json()
        assert body["result"]["data"] == [{"total_accounts": 42}]
        assert body["result"]["rowCount"] == 1

    def test_tool_failure_is_200(self, client):
        body = client.post("/tools", json={"tool": "evaluate_expression", "arguments": {"expression": "1/0"}}).json()
        assert body["success"] is False
        assert body["code"] == "validation_error"
        assert body["error"]

    def test_unknown_tool(self, client):
        resp = client.post("/tools", json={"tool": "ghost"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "unknown_tool"
        assert "evaluate_expression" in resp.json()["details"]["availableTools"]

    def test_missing_tool_name(self, client):
        resp = client.post("/tools", json={"arguments": {}})
        assert resp.status_code == 400
        assert resp.json()["code"] == "missing_input"

    def test_invalid_arguments(self, client):
        resp = client.post("/tools", json={"tool": "evaluate_expression", "arguments": {}})
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "validation_error"
        assert body["details"]["tool"] == "evaluate_expression"
        assert body["details"]["expectedSchema"]["required"] == ["expression"]


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body == {
            "status": "ok",
            "version": __version__,
            "providers": ["anthropic", "openai", "groq"],
            "tools": 10,
        }
