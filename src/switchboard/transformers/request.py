"""Request-only transformers.

These rewrite the outbound body and never see the response, so they are
safe in the chain of both streamed and non-streamed requests.
"""

from __future__ import annotations

from typing import Any

from switchboard.transformers.base import Capability, Transformer, TransformerContext
from switchboard.types import UnifiedChatRequest


class MaxTokenTransformer(Transformer):
    """Caps ``max_tokens`` at a provider limit.

    Requests that don't set ``max_tokens`` are left alone.

    Args:
        max_tokens: Largest completion budget the provider accepts.
    """

    name = "maxtoken"
    capabilities = frozenset({Capability.REQUEST})

    def __init__(self, max_tokens: int = 8192) -> None:
        if max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {max_tokens}")
        self.max_tokens = max_tokens

    def transform_request_in(
        self,
        request: UnifiedChatRequest,
        context: TransformerContext,
    ) -> UnifiedChatRequest:
        requested = request.extra.get("max_tokens")
        if isinstance(requested, int) and requested > self.max_tokens:
            request.extra["max_tokens"] = self.max_tokens
        return request


class CleanCacheTransformer(Transformer):
    """Strips Anthropic-style ``cache_control`` markers.

    Providers that don't implement prompt caching reject the field, so it
    is removed from messages and their content parts.
    """

    name = "cleancache"
    capabilities = frozenset({Capability.REQUEST})

    def transform_request_in(
        self,
        request: UnifiedChatRequest,
        context: TransformerContext,
    ) -> UnifiedChatRequest:
        for message in request.messages:
            message.pop("cache_control", None)
            content = message.get("content")
            if isinstance(content, list):
                for part in content:
                    _strip(part)
        return request


def _strip(part: Any) -> None:
    if isinstance(part, dict):
        part.pop("cache_control", None)
