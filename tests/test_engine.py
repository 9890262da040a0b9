"""Tests for the Switchboard engine.

Uses httpx.MockTransport so no network is touched.  Covers: model rewrite
and auth headers on dispatch, decision recording before dispatch, the
reasoning-content flow end to end (request, response, stream), provider
error passthrough, streaming through a whole-body-only chain, startup
validation, and client lifecycle.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from switchboard.config import Config, ProviderConfig, RouterConfig
from switchboard.engine import Switchboard
from switchboard.errors import ConfigError, NoRouteConfigured
from switchboard.state import RoutingStateStore
from switchboard.transformers import (
    Capability,
    ReasoningContentTransformer,
    Transformer,
    TransformerRegistry,
)
from switchboard.types import RequestSignals, Scenario, UnifiedChatRequest

OPENAI_URL = "https://api.openai.test/v1/chat/completions"
DEEPSEEK_URL = "https://api.deepseek.test/chat/completions"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(tmp_path: Path) -> Config:
    return Config(
        router=RouterConfig(
            routes={
                Scenario.DEFAULT: "openai,gpt-4",
                Scenario.THINK: "deepseek,deepseek-reasoner",
                Scenario.LONG_CONTEXT: "openai,gpt-4-128k",
            }
        ),
        providers={
            "openai": ProviderConfig(
                name="openai",
                api_base_url=OPENAI_URL,
                api_key="sk-openai",
                models=["gpt-4", "gpt-4-128k"],
            ),
            "deepseek": ProviderConfig(
                name="deepseek",
                api_base_url=DEEPSEEK_URL,
                models=["deepseek-reasoner"],
                transformers=["deepseek-thinking"],
            ),
        },
        state_path=tmp_path / "routing-state.json",
    )


class _Upstream:
    """Mock provider that records what it was sent."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def last_body(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _completion(message: dict[str, Any]) -> Callable[[httpx.Request], httpx.Response]:
    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "cmpl-1", "choices": [{"message": message}]})

    return respond


def _sse(*events: str) -> Callable[[httpx.Request], httpx.Response]:
    body = "".join(f"data: {event}\n\n" for event in events)

    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=body.encode(),
        )

    return respond


def _chat(model: str = "claude-sonnet-4", **extra: Any) -> UnifiedChatRequest:
    return UnifiedChatRequest(
        model=model,
        messages=[
            {"role": "user", "content": "q1"},
            {"role": "assistant", "content": "a1"},
            {"role": "user", "content": "q2"},
        ],
        extra=extra,
    )


THINK = RequestSignals(think=True)


async def _collect(chunks: Any) -> str:
    return b"".join([chunk async for chunk in chunks]).decode()


class _WholeBodyOnly(Transformer):
    name = "whole-body"
    capabilities = frozenset({Capability.RESPONSE})


# ---------------------------------------------------------------------------
# send()
# ---------------------------------------------------------------------------


class TestSend:
    """Non-streamed requests."""

    @pytest.mark.asyncio
    async def test_routes_and_rewrites_model(self, tmp_path: Path) -> None:
        upstream = _Upstream(_completion({"role": "assistant", "content": "hi"}))
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            response = await board.send(_chat(temperature=0.2))

        assert response.status_code == 200
        assert response.json()["choices"][0]["message"]["content"] == "hi"
        sent = upstream.requests[0]
        assert str(sent.url) == OPENAI_URL
        assert sent.headers["authorization"] == "Bearer sk-openai"
        assert upstream.last_body["model"] == "gpt-4"
        assert upstream.last_body["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_no_transformers_keeps_body(self, tmp_path: Path) -> None:
        upstream = _Upstream(_completion({"role": "assistant", "content": "hi"}))
        request = _chat(model="gpt-4", max_tokens=512)
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            await board.send(request)
        assert upstream.last_body == request.to_dict()

    @pytest.mark.asyncio
    async def test_request_not_mutated(self, tmp_path: Path) -> None:
        upstream = _Upstream(_completion({"role": "assistant", "content": "ok"}))
        request = _chat()
        before = request.to_dict()
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            await board.send(request, THINK)
        assert request.to_dict() == before

    @pytest.mark.asyncio
    async def test_keyless_provider_sends_no_auth(self, tmp_path: Path) -> None:
        upstream = _Upstream(_completion({"role": "assistant", "content": "ok"}))
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            await board.send(_chat(), THINK)
        assert "authorization" not in upstream.requests[0].headers

    @pytest.mark.asyncio
    async def test_decision_recorded(self, tmp_path: Path) -> None:
        upstream = _Upstream(_completion({"role": "assistant", "content": "ok"}))
        config = _config(tmp_path)
        async with Switchboard(config, client=upstream.client()) as board:
            await board.send(_chat(), RequestSignals(input_tokens=72000))
            await board.store.flush()
            last = board.store.read().last_request

        assert last is not None
        assert last.scenario is Scenario.LONG_CONTEXT
        assert last.model == "gpt-4-128k"
        data = json.loads(config.state_path.read_text(encoding="utf-8"))
        assert data["session"]["modelBreakdown"] == {"openai/gpt-4-128k": 1}

    @pytest.mark.asyncio
    async def test_upstream_error_status_forwarded(self, tmp_path: Path) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "slow down"}})

        upstream = _Upstream(respond)
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            response = await board.send(_chat(), THINK)
        assert response.status_code == 429
        assert response.json() == {"error": {"message": "slow down"}}

    @pytest.mark.asyncio
    async def test_non_json_response_passes_through(self, tmp_path: Path) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        upstream = _Upstream(respond)
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            response = await board.send(_chat(), THINK)
        assert response.status_code == 502
        assert response.text == "bad gateway"


# ---------------------------------------------------------------------------
# Reasoning content end to end
# ---------------------------------------------------------------------------


class TestReasoningFlow:
    """deepseek-thinking on a think-routed conversation."""

    @pytest.mark.asyncio
    async def test_request_and_response_normalized(self, tmp_path: Path) -> None:
        upstream = _Upstream(_completion({"role": "assistant", "content": "answer"}))
        request = _chat(thinking={"type": "enabled"})
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            response = await board.send(request)

        sent = upstream.last_body
        assert str(upstream.requests[0].url) == DEEPSEEK_URL
        assert sent["model"] == "deepseek-reasoner"
        assert sent["messages"][1] == {"role": "assistant", "content": "a1", "reasoning_content": ""}
        assert "reasoning_content" not in sent["messages"][0]

        message = response.json()["choices"][0]["message"]
        assert message == {"role": "assistant", "content": "answer", "reasoning_content": ""}
        assert response.headers["content-type"] == "application/json"
        assert int(response.headers["content-length"]) == len(response.content)

    @pytest.mark.asyncio
    async def test_stream_chunks_normalized(self, tmp_path: Path) -> None:
        upstream = _Upstream(
            _sse(
                json.dumps({"choices": [{"delta": {"role": "assistant", "content": ""}}]}),
                json.dumps({"choices": [{"delta": {"content": "tok"}}]}),
                "[DONE]",
            )
        )
        request = _chat()
        request.stream = True
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            output = await _collect(board.send_stream(request, THINK))

        assert upstream.last_body["stream"] is True
        data_lines = [line for line in output.splitlines() if line.startswith("data:")]
        assert json.loads(data_lines[0][len("data:") :]) == {
            "choices": [{"delta": {"role": "assistant", "content": "", "reasoning_content": ""}}]
        }
        assert json.loads(data_lines[1][len("data:") :]) == {
            "choices": [{"delta": {"content": "tok"}}]
        }
        assert data_lines[2] == "data: [DONE]"


# ---------------------------------------------------------------------------
# send_stream()
# ---------------------------------------------------------------------------


class TestSendStream:
    """Streamed requests."""

    @pytest.mark.asyncio
    async def test_plain_stream_passes_through(self, tmp_path: Path) -> None:
        chunk = json.dumps({"choices": [{"delta": {"content": "x"}}]})
        upstream = _Upstream(_sse(chunk, "[DONE]"))
        request = _chat()
        request.stream = True
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            output = await _collect(board.send_stream(request))
        assert f"data: {chunk}\n" in output
        assert "data: [DONE]\n" in output

    @pytest.mark.asyncio
    async def test_error_status_yields_raw_body(self, tmp_path: Path) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "bad key"})

        upstream = _Upstream(respond)
        request = _chat()
        request.stream = True
        async with Switchboard(_config(tmp_path), client=upstream.client()) as board:
            output = await _collect(board.send_stream(request, THINK))
        assert json.loads(output) == {"error": "bad key"}

    @pytest.mark.asyncio
    async def test_whole_body_chain_rejected_before_dispatch(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.providers["openai"].transformers = ["whole-body"]
        registry = TransformerRegistry([ReasoningContentTransformer, _WholeBodyOnly])
        upstream = _Upstream(_sse("[DONE]"))
        request = _chat()
        request.stream = True

        async with Switchboard(config, registry=registry, client=upstream.client()) as board:
            with pytest.raises(ConfigError, match="whole-body"):
                await _collect(board.send_stream(request))
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_whole_body_chain_fine_without_streaming(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.providers["openai"].transformers = ["whole-body"]
        registry = TransformerRegistry([ReasoningContentTransformer, _WholeBodyOnly])
        upstream = _Upstream(_completion({"role": "assistant", "content": "ok"}))

        async with Switchboard(config, registry=registry, client=upstream.client()) as board:
            response = await board.send(_chat())
        assert response.status_code == 200


# ---------------------------------------------------------------------------
# Configuration and lifecycle
# ---------------------------------------------------------------------------


class TestConfigurationErrors:
    """Misconfiguration surfaces as ConfigError or NoRouteConfigured."""

    def test_unknown_transformer_fails_at_construction(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.providers["deepseek"].transformers = ["deepseek-thinkin"]
        with pytest.raises(ConfigError, match="deepseek-thinkin"):
            Switchboard(config)

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.router.routes[Scenario.BACKGROUND] = "ollama,qwen2.5-coder"
        upstream = _Upstream(_completion({}))
        async with Switchboard(config, client=upstream.client()) as board:
            with pytest.raises(ConfigError, match="ollama"):
                await board.send(_chat(model="claude-3-5-haiku"))
            await board.store.flush()
            # Recorded even though dispatch never happened.
            assert board.store.read().session.request_count == 1
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_provider_without_url(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.providers["openai"].api_base_url = ""
        upstream = _Upstream(_completion({}))
        async with Switchboard(config, client=upstream.client()) as board:
            with pytest.raises(ConfigError, match="api_base_url"):
                await board.send(_chat())

    @pytest.mark.asyncio
    async def test_no_route(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.router = RouterConfig()
        upstream = _Upstream(_completion({}))
        async with Switchboard(config, client=upstream.client()) as board:
            with pytest.raises(NoRouteConfigured):
                await board.send(_chat())


class TestLifecycle:
    """Client ownership and context manager requirements."""

    @pytest.mark.asyncio
    async def test_send_requires_context(self, tmp_path: Path) -> None:
        board = Switchboard(_config(tmp_path))
        with pytest.raises(RuntimeError, match="async with"):
            await board.send(_chat())

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, tmp_path: Path) -> None:
        client = _Upstream(_completion({})).client()
        async with Switchboard(_config(tmp_path), client=client):
            pass
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self, tmp_path: Path) -> None:
        board = Switchboard(_config(tmp_path))
        async with board:
            client = board._client
            assert client is not None
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_custom_store_used(self, tmp_path: Path) -> None:
        store = RoutingStateStore(tmp_path / "elsewhere.json")
        upstream = _Upstream(_completion({"role": "assistant", "content": "ok"}))
        async with Switchboard(_config(tmp_path), store=store, client=upstream.client()) as board:
            await board.send(_chat())
        assert (tmp_path / "elsewhere.json").exists()
        assert not (tmp_path / "routing-state.json").exists()

    def test_pipelines_cached(self, tmp_path: Path) -> None:
        board = Switchboard(_config(tmp_path))
        first = board.pipeline_for("deepseek", "deepseek-reasoner")
        assert board.pipeline_for("deepseek", "deepseek-reasoner") is first
        assert first.names == ["deepseek-thinking"]
