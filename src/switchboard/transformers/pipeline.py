"""Transformer pipeline.

Applies an ordered chain of transformers to one provider/model's traffic:

- inbound, a left-to-right fold of ``transform_request_in()`` from the
  unified request to the provider-ready body;
- outbound, either a fold of ``transform_response_out()`` over a complete
  JSON body, or a per-chunk fold of ``transform_chunk()`` over a
  server-sent event stream.

A streamed response is never buffered to satisfy a whole-body
transformer; such a chain is rejected as a configuration error.  Once
stream bytes have been handed to the caller, a failing transformer is
reported as a trailing ``event: error`` record instead of an exception.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import httpx

from switchboard.config import Config
from switchboard.errors import ConfigError, TransformationFailed
from switchboard.transformers.base import Capability, Transformer, TransformerContext
from switchboard.transformers.registry import TransformerRegistry
from switchboard.types import RouteDecision, UnifiedChatRequest

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"

# Headers describing the old body; httpx recomputes them for the new one.
_BODY_HEADERS = ("content-length", "content-encoding", "transfer-encoding")


class TransformerPipeline:
    """An ordered transformer chain bound to one provider/model.

    Args:
        transformers: Transformer instances in application order.
        context: Provider/model (and decision) the chain runs for.

    Example::

        pipeline = TransformerPipeline.for_target(config, registry, "deepseek", "deepseek-reasoner")
        body = pipeline.transform_request(request).to_dict()
        response = await pipeline.transform_response(raw_response)
    """

    def __init__(self, transformers: list[Transformer], context: TransformerContext) -> None:
        self._transformers = list(transformers)
        self.context = context

    @classmethod
    def for_target(
        cls,
        config: Config,
        registry: TransformerRegistry,
        provider: str,
        model: str,
        decision: RouteDecision | None = None,
    ) -> TransformerPipeline:
        """Build the pipeline declared in config for a provider/model.

        Args:
            config: Loaded configuration.
            registry: Registry used to resolve transformer names.
            provider: Provider name.
            model: Model identifier.
            decision: Routing decision behind the dispatch, if any.

        Returns:
            TransformerPipeline with the provider chain followed by the
            model chain. Empty if the provider is not configured.

        Raises:
            ConfigError: If a transformer name is unknown.
        """
        provider_config = config.get_provider(provider)
        names = provider_config.transformer_chain(model) if provider_config else []
        transformers = registry.resolve(names, config.transformer_options)
        return cls(transformers, TransformerContext(provider, model, decision))

    @property
    def names(self) -> list[str]:
        return [t.name for t in self._transformers]

    def with_decision(self, decision: RouteDecision) -> TransformerPipeline:
        """Same chain, with the context carrying *decision*."""
        context = TransformerContext(self.context.provider, self.context.model, decision)
        return TransformerPipeline(self._transformers, context)

    def require_streaming(self) -> None:
        """Reject chains that can only normalize whole response bodies.

        Raises:
            ConfigError: If any transformer handles responses but not streams.
        """
        for transformer in self._transformers:
            if not transformer.supports_streaming():
                raise ConfigError(
                    f"Transformer '{transformer.name}' cannot process streamed responses "
                    f"for {self.context.provider},{self.context.model}"
                )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def transform_request(self, request: UnifiedChatRequest) -> UnifiedChatRequest:
        """Fold the chain's request hooks over a copy of *request*.

        Args:
            request: Unified request. Never mutated.

        Returns:
            The provider-ready request.

        Raises:
            TransformationFailed: Naming the first transformer that raised.
        """
        current = request.copy()
        for transformer in self._transformers:
            if not transformer.handles(Capability.REQUEST):
                continue
            try:
                current = transformer.transform_request_in(current, self.context)
            except Exception as exc:
                logger.exception("Transformer %s failed on request", transformer.name)
                raise self._failure(transformer, "request", exc) from exc
        return current

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def transform_response(self, response: httpx.Response) -> httpx.Response:
        """Normalize a complete (non-streamed) provider response.

        JSON bodies are decoded, folded through the chain, and re-encoded
        into a new response with the original status and headers.  Other
        content types are returned as-is.

        Args:
            response: Provider response.

        Returns:
            The normalized response.

        Raises:
            TransformationFailed: Naming the transformer that raised.
        """
        await response.aread()
        if not _is_json(response):
            return response
        handlers = [t for t in self._transformers if t.handles(Capability.RESPONSE)]
        if not handlers:
            return response

        try:
            body: Any = response.json()
        except ValueError:
            logger.warning(
                "Response from %s,%s declared JSON but did not decode; passing through",
                self.context.provider,
                self.context.model,
            )
            return response
        if not isinstance(body, dict):
            return response

        for transformer in handlers:
            try:
                body = transformer.transform_response_out(body, self.context)
            except Exception as exc:
                logger.exception("Transformer %s failed on response", transformer.name)
                raise self._failure(transformer, "response", exc) from exc

        headers = [(k, v) for k, v in response.headers.multi_items() if k not in _BODY_HEADERS]
        return httpx.Response(
            status_code=response.status_code,
            headers=headers,
            content=json.dumps(body, ensure_ascii=False).encode("utf-8"),
            request=_request_of(response),
        )

    async def transform_stream(self, lines: AsyncIterable[str]) -> AsyncIterator[bytes]:
        """Normalize a server-sent event stream chunk by chunk.

        Each ``data:`` line holding a JSON object is decoded, folded through
        the chain's chunk hooks, and re-emitted.  ``[DONE]`` markers, event
        names, comments, and blank separators pass through untouched.

        Args:
            lines: SSE lines without terminators, e.g. from
                ``httpx.Response.aiter_lines()``.

        Yields:
            Encoded SSE lines, each ending in ``\\n``.

        Raises:
            ConfigError: Before any line is read, if the chain cannot stream.
        """
        self.require_streaming()
        handlers = [t for t in self._transformers if t.handles(Capability.STREAM)]

        async for line in lines:
            if not handlers or not line.startswith(SSE_DATA_PREFIX):
                yield f"{line}\n".encode()
                continue

            payload = line[len(SSE_DATA_PREFIX) :].strip()
            if payload == SSE_DONE:
                yield f"{line}\n".encode()
                continue
            try:
                chunk = json.loads(payload)
            except ValueError:
                yield f"{line}\n".encode()
                continue
            if not isinstance(chunk, dict):
                yield f"{line}\n".encode()
                continue

            for transformer in handlers:
                try:
                    chunk = transformer.transform_chunk(chunk, self.context)
                except Exception as exc:
                    logger.exception("Transformer %s failed mid-stream", transformer.name)
                    yield self._error_event(self._failure(transformer, "stream", exc))
                    return

            yield f"data: {json.dumps(chunk, ensure_ascii=False)}\n".encode()

    def _failure(
        self,
        transformer: Transformer,
        stage: str,
        exc: Exception,
    ) -> TransformationFailed:
        return TransformationFailed(
            transformer.name,
            stage,
            provider=self.context.provider,
            model=self.context.model,
            detail=str(exc),
        )

    @staticmethod
    def _error_event(error: TransformationFailed) -> bytes:
        """Encode a trailing SSE error record for a failed stream."""
        data = {
            "error": {
                "type": "transformation_failed",
                "transformer": error.transformer,
                "message": str(error),
            }
        }
        return f"\nevent: error\ndata: {json.dumps(data, ensure_ascii=False)}\n\n".encode()


def _is_json(response: httpx.Response) -> bool:
    return "application/json" in response.headers.get("content-type", "")


def _request_of(response: httpx.Response) -> httpx.Request | None:
    try:
        return response.request
    except RuntimeError:
        return None
