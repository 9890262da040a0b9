"""Base class for provider transformers.

A transformer normalizes traffic between the unified chat schema and one
provider's wire quirks.  Each transformer declares which hooks it
implements through ``capabilities``; the pipeline uses the declaration,
never the shape of a response, to decide what runs where.

- ``REQUEST``: ``transform_request_in()`` rewrites the outbound request.
- ``RESPONSE``: ``transform_response_out()`` normalizes a whole JSON body.
- ``STREAM``: ``transform_chunk()`` normalizes one streamed SSE chunk.

A transformer declaring ``RESPONSE`` without ``STREAM`` only understands
whole bodies and cannot sit in the chain of a streamed request.

Transformers are stateless or hold request-scoped state only, and must
leave fields they do not own untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar

from switchboard.types import RouteDecision, UnifiedChatRequest


class Capability(StrEnum):
    """Hooks a transformer can implement."""

    REQUEST = "request"
    RESPONSE = "response"
    STREAM = "stream"


@dataclass(frozen=True)
class TransformerContext:
    """What a transformer knows about the request it is processing.

    Attributes:
        provider: Provider the request is dispatched to.
        model: Model the request is dispatched to.
        decision: Routing decision behind the dispatch, when known.
    """

    provider: str
    model: str
    decision: RouteDecision | None = None


class Transformer:
    """Base class for all transformers.

    Subclasses set ``name`` (the identifier used in config) and
    ``capabilities``, and override the hooks they declare.  Undeclared
    hooks are pass-throughs.

    Constructor keyword arguments come from the transformer's
    ``[transformer_options.<name>]`` config table.
    """

    name: ClassVar[str] = ""
    capabilities: ClassVar[frozenset[Capability]] = frozenset()

    def transform_request_in(
        self,
        request: UnifiedChatRequest,
        context: TransformerContext,
    ) -> UnifiedChatRequest:
        """Rewrite a unified request into the provider's wire format.

        Args:
            request: Request to transform. The pipeline folds over a
                copy of the caller's request, so in-place edits are fine.
            context: Provider/model the request is bound for.

        Returns:
            The transformed request.
        """
        return request

    def transform_response_out(
        self,
        body: dict[str, Any],
        context: TransformerContext,
    ) -> dict[str, Any]:
        """Normalize a complete, decoded JSON response body."""
        return body

    def transform_chunk(
        self,
        chunk: dict[str, Any],
        context: TransformerContext,
    ) -> dict[str, Any]:
        """Normalize one decoded ``data:`` payload of a streamed response."""
        return chunk

    @classmethod
    def handles(cls, capability: Capability) -> bool:
        return capability in cls.capabilities

    @classmethod
    def supports_streaming(cls) -> bool:
        """Whether this transformer can run on a streamed response.

        Request-only transformers never see the response, so they are
        streaming-safe.  Whole-body normalizers must also declare ``STREAM``.
        """
        return Capability.RESPONSE not in cls.capabilities or Capability.STREAM in cls.capabilities
