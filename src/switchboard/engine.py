"""Switchboard engine: routing, transformation, and dispatch in one place.

Ties the pieces together in request order:

    unified request → ScenarioRouter → RouteDecision
        → RoutingStateStore.record()   (fire-and-forget)
        → TransformerPipeline inbound  → provider body
        → HTTP dispatch (httpx)
        → TransformerPipeline outbound → unified response

The decision is recorded before dispatch, so a request that is later
canceled or fails upstream still shows up in the routing history.

Typical usage::

    async with Switchboard(load_config()) as board:
        response = await board.send(UnifiedChatRequest.from_dict(body))
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from switchboard.config import Config, ProviderConfig
from switchboard.errors import ConfigError
from switchboard.router import ScenarioRouter
from switchboard.state import RoutingStateStore
from switchboard.transformers.pipeline import TransformerPipeline
from switchboard.transformers.registry import TransformerRegistry
from switchboard.types import RequestSignals, RouteDecision, UnifiedChatRequest

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0  # seconds; reasoning models run long


@dataclass(frozen=True)
class PreparedRequest:
    """A routed, transformed request ready for dispatch.

    Attributes:
        decision: Routing decision for the request.
        provider: Provider definition the request is bound for.
        pipeline: Transformer pipeline for the provider/model.
        body: Provider-ready JSON body.
    """

    decision: RouteDecision
    provider: ProviderConfig
    pipeline: TransformerPipeline
    body: dict[str, Any]


class Switchboard:
    """Routes unified chat requests to providers and normalizes responses.

    Transformer chains are validated on construction, so an unknown
    transformer name fails here rather than on the first request that
    needs it.

    Args:
        config: Loaded configuration.
        store: Routing state store. Defaults to one at ``config.state_path``.
        registry: Transformer registry. Defaults to the built-ins.
        client: HTTP client for dispatch. Created on entry if omitted.
        timeout: Request timeout in seconds for the created client.

    Raises:
        ConfigError: If any configured transformer chain is invalid.
    """

    def __init__(
        self,
        config: Config,
        *,
        store: RoutingStateStore | None = None,
        registry: TransformerRegistry | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.config = config
        self.registry = registry or TransformerRegistry()
        self.registry.validate(config)
        self.router = ScenarioRouter(config.router)
        self.store = store or RoutingStateStore(config.state_path)
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._pipelines: dict[tuple[str, str], TransformerPipeline] = {}

    async def __aenter__(self) -> Switchboard:
        """Load routing state and open the HTTP connection pool."""
        await self.store.start()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self

    async def __aexit__(self, *exc: Any) -> None:
        """Drain pending state writes and close the connection pool."""
        await self.store.stop()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def pipeline_for(self, provider: str, model: str) -> TransformerPipeline:
        """Get the (cached) transformer pipeline for a provider/model."""
        key = (provider, model)
        pipeline = self._pipelines.get(key)
        if pipeline is None:
            pipeline = TransformerPipeline.for_target(self.config, self.registry, provider, model)
            self._pipelines[key] = pipeline
        return pipeline

    def prepare(
        self,
        request: UnifiedChatRequest,
        signals: RequestSignals | None = None,
    ) -> PreparedRequest:
        """Route a request, record the decision, and build the provider body.

        Args:
            request: Unified request from the client. Not mutated.
            signals: Classifier output. Estimated from the request if omitted.

        Returns:
            PreparedRequest carrying the decision and provider-ready body.

        Raises:
            NoRouteConfigured: If no route is usable.
            ConfigError: If the routed provider is not configured, or the
                request streams through a chain that cannot stream.
            TransformationFailed: If a transformer fails on the request.
        """
        decision = self.router.route(request, signals)
        self.store.record(decision)

        provider = self.config.get_provider(decision.provider)
        if provider is None:
            raise ConfigError(
                f"Scenario {decision.scenario} routes to provider "
                f"'{decision.provider}', which is not configured"
            )

        pipeline = self.pipeline_for(decision.provider, decision.model).with_decision(decision)
        if request.stream:
            pipeline.require_streaming()

        routed = request.copy()
        routed.model = decision.model
        body = pipeline.transform_request(routed).to_dict()
        return PreparedRequest(decision=decision, provider=provider, pipeline=pipeline, body=body)

    async def send(
        self,
        request: UnifiedChatRequest,
        signals: RequestSignals | None = None,
    ) -> httpx.Response:
        """Route, transform, dispatch, and normalize a non-streamed request.

        Args:
            request: Unified request from the client.
            signals: Classifier output. Estimated from the request if omitted.

        Returns:
            The provider response normalized by the outbound pipeline.
            Status and headers are the provider's.

        Raises:
            RuntimeError: If used outside the async context manager.
            httpx.HTTPError: On transport failures. Not retried.
        """
        client = self._require_client()
        prepared = self.prepare(request, signals)
        response = await client.post(
            _endpoint(prepared.provider),
            json=prepared.body,
            headers=_auth_headers(prepared.provider),
        )
        return await prepared.pipeline.transform_response(response)

    async def send_stream(
        self,
        request: UnifiedChatRequest,
        signals: RequestSignals | None = None,
    ) -> AsyncIterator[bytes]:
        """Route, transform, and dispatch a streamed request.

        Yields normalized server-sent event bytes as they arrive.  Error
        statuses from the provider are forwarded as their raw body.

        Args:
            request: Unified request from the client.
            signals: Classifier output. Estimated from the request if omitted.

        Yields:
            Encoded SSE lines.
        """
        client = self._require_client()
        prepared = self.prepare(request, signals)
        async with client.stream(
            "POST",
            _endpoint(prepared.provider),
            json=prepared.body,
            headers=_auth_headers(prepared.provider),
        ) as response:
            if response.is_error:
                body = await response.aread()
                logger.warning(
                    "Provider %s returned HTTP %d for streamed request",
                    prepared.provider.name,
                    response.status_code,
                )
                yield body
                return
            async for chunk in prepared.pipeline.transform_stream(response.aiter_lines()):
                yield chunk

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client


def _endpoint(provider: ProviderConfig) -> str:
    if not provider.api_base_url:
        raise ConfigError(f"Provider '{provider.name}' has no api_base_url")
    return provider.api_base_url


def _auth_headers(provider: ProviderConfig) -> dict[str, str]:
    if not provider.api_key:
        return {}
    return {"Authorization": f"Bearer {provider.api_key}"}
