"""Reasoning content transformer.

Some reasoning models (DeepSeek's ``deepseek-reasoner`` among them)
require every assistant message in a multi-turn conversation to carry a
``reasoning_content`` field, even if empty, and return it on responses
so clients can replay it.  This transformer fills the field with an
empty string wherever it is missing, so history reconstruction never has
to tell "missing" from "empty".

Only requests for the configured model are touched; every other model
passes through unchanged.

Config::

    [providers.deepseek]
    transformers = ["deepseek-thinking"]

    [transformer_options.deepseek-thinking]
    model = "deepseek-reasoner"
"""

from __future__ import annotations

from typing import Any

from switchboard.transformers.base import Capability, Transformer, TransformerContext
from switchboard.types import UnifiedChatRequest

REASONING_FIELD = "reasoning_content"
DEFAULT_REASONING_MODEL = "deepseek-reasoner"


class ReasoningContentTransformer(Transformer):
    """Defaults ``reasoning_content`` to ``""`` on assistant messages.

    Args:
        model: Model identifier this transformer applies to.
    """

    name = "deepseek-thinking"
    capabilities = frozenset({Capability.REQUEST, Capability.RESPONSE, Capability.STREAM})

    def __init__(self, model: str = DEFAULT_REASONING_MODEL) -> None:
        self.model = model

    def transform_request_in(
        self,
        request: UnifiedChatRequest,
        context: TransformerContext,
    ) -> UnifiedChatRequest:
        if request.model != self.model:
            return request
        for message in request.messages:
            if message.get("role") == "assistant" and message.get(REASONING_FIELD) is None:
                message[REASONING_FIELD] = ""
        return request

    def transform_response_out(
        self,
        body: dict[str, Any],
        context: TransformerContext,
    ) -> dict[str, Any]:
        if context.model != self.model:
            return body
        for choice in body.get("choices") or []:
            message = choice.get("message") if isinstance(choice, dict) else None
            if isinstance(message, dict) and message.get(REASONING_FIELD) is None:
                message[REASONING_FIELD] = ""
        return body

    def transform_chunk(
        self,
        chunk: dict[str, Any],
        context: TransformerContext,
    ) -> dict[str, Any]:
        # Only the opening delta carries the role; later deltas stay sparse.
        if context.model != self.model:
            return chunk
        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") if isinstance(choice, dict) else None
            if (
                isinstance(delta, dict)
                and delta.get("role") == "assistant"
                and delta.get(REASONING_FIELD) is None
            ):
                delta[REASONING_FIELD] = ""
        return chunk
