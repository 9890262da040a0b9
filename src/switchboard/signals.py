"""Default request classifier.

Produces the ``RequestSignals`` the scenario router consumes: an input
token estimate and the background / think / web-search flags.  Callers
with a real tokenizer pass their own count; the estimate here is the
usual four-characters-per-token approximation.
"""

from __future__ import annotations

import json
import math
from typing import Any

from switchboard.types import RequestSignals, UnifiedChatRequest

CHARS_PER_TOKEN = 4

# Small models that clients use for background chores (titles, summaries).
BACKGROUND_MODEL_MARKERS = ("haiku",)

WEB_SEARCH_TOOL_PREFIX = "web_search"


def estimate_tokens(request: UnifiedChatRequest) -> int:
    """Estimate the input token count of a request.

    Counts message text (string content and ``text`` parts), tool-call
    arguments, tool definitions, and a ``system`` field if present.

    Args:
        request: Request to measure.

    Returns:
        Estimated token count, rounded up.
    """
    chars = 0
    for message in request.messages:
        chars += _content_chars(message.get("content"))
        for call in message.get("tool_calls") or []:
            chars += len(json.dumps(call.get("function", {}), ensure_ascii=False))
    chars += _content_chars(request.extra.get("system"))
    if request.tools:
        chars += len(json.dumps(request.tools, ensure_ascii=False))
    return math.ceil(chars / CHARS_PER_TOKEN)


def _content_chars(content: Any) -> int:
    if isinstance(content, str):
        return len(content)
    if isinstance(content, list):
        total = 0
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                total += len(part["text"])
        return total
    return 0


def is_background(request: UnifiedChatRequest) -> bool:
    model = request.model.lower()
    return any(marker in model for marker in BACKGROUND_MODEL_MARKERS)


def wants_thinking(request: UnifiedChatRequest) -> bool:
    return bool(request.extra.get("thinking"))


def needs_web_search(request: UnifiedChatRequest) -> bool:
    for tool in request.tools or []:
        tool_type = tool.get("type")
        if isinstance(tool_type, str) and tool_type.startswith(WEB_SEARCH_TOOL_PREFIX):
            return True
    return False


def estimate_signals(
    request: UnifiedChatRequest,
    *,
    input_tokens: int | None = None,
) -> RequestSignals:
    """Classify a request for scenario routing.

    Args:
        request: Request to classify.
        input_tokens: Token count from an external tokenizer. Estimated
            from the request text when omitted.

    Returns:
        RequestSignals for the router.
    """
    return RequestSignals(
        input_tokens=estimate_tokens(request) if input_tokens is None else input_tokens,
        background=is_background(request),
        think=wants_thinking(request),
        web_search=needs_web_search(request),
    )
