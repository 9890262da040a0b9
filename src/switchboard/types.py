"""Core routing types shared by the router, pipeline, and state store.

Defines the scenario enum, resolved route targets, the provider-agnostic
chat request, classifier signals, and the immutable routing decision.

Separated from ``models.py`` so the persisted state document can import
``RouteDecision`` without pulling in the router.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class Scenario(StrEnum):
    """Mutually exclusive request categories used to pick a route.

    Values match the keys of the ``[router]`` config table and the
    ``scenario`` field of persisted history entries.
    """

    DEFAULT = "default"
    BACKGROUND = "background"
    THINK = "think"
    LONG_CONTEXT = "longContext"
    WEB_SEARCH = "webSearch"


@dataclass(frozen=True)
class RouteTarget:
    """A parsed provider/model pair.

    Attributes:
        provider: Provider name as configured under ``[providers]``.
        model: Provider-specific model identifier. May contain commas.
    """

    provider: str
    model: str

    @property
    def route(self) -> str:
        """The ``"provider,model"`` route string for this target."""
        return f"{self.provider},{self.model}"

    @property
    def key(self) -> str:
        """The ``"provider/model"`` key used in session model breakdowns."""
        return f"{self.provider}/{self.model}"


_REQUEST_FIELDS = ("model", "messages", "tools", "stream")


def parse_scenario(value: Any) -> Scenario | str:
    """Map a persisted scenario name to its enum member.

    Names this version does not know (written by a newer writer) are kept
    as plain strings so the entry survives a load and rewrite.
    """
    try:
        return Scenario(value)
    except ValueError:
        return str(value)


@dataclass
class UnifiedChatRequest:
    """Provider-agnostic chat completion request.

    The canonical in-memory form between scenario selection and provider
    dispatch.  Fields other than the ones modelled here are carried
    verbatim in ``extra`` and the order of the original keys is remembered,
    so that ``to_dict()`` of an untouched request reproduces the body
    exactly, including explicit ``"stream": false`` or ``"tools": null``.

    Attributes:
        model: Model identifier the client asked for.
        messages: Chat messages in OpenAI-compatible format.
        tools: Tool definitions, or None when the request has none.
        stream: Whether the client asked for a streamed response.
        extra: All other body fields (temperature, thinking, ...).
        field_order: Top-level keys of the source body, in order.
    """

    model: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    tools: list[dict[str, Any]] | None = None
    stream: bool = False
    extra: dict[str, Any] = field(default_factory=dict)
    field_order: tuple[str, ...] = field(default=(), repr=False, compare=False)

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> UnifiedChatRequest:
        """Build a request from a decoded JSON body.

        Args:
            body: Decoded chat completion request body.

        Returns:
            UnifiedChatRequest with unknown fields preserved in ``extra``.
        """
        return cls(
            model=str(body.get("model", "")),
            messages=list(body.get("messages") or []),
            tools=body.get("tools"),
            stream=bool(body.get("stream", False)),
            extra={k: v for k, v in body.items() if k not in _REQUEST_FIELDS},
            field_order=tuple(body),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible request body.

        ``tools`` and ``stream`` are written when set or when the source
        body had them.  Keys from the source body keep their original
        order; new keys follow.
        """
        fields: dict[str, Any] = {"model": self.model, "messages": self.messages}
        if self.tools is not None or "tools" in self.field_order:
            fields["tools"] = self.tools
        if self.stream or "stream" in self.field_order:
            fields["stream"] = self.stream
        fields.update(self.extra)

        body = {key: fields.pop(key) for key in self.field_order if key in fields}
        body.update(fields)
        return body

    def copy(self) -> UnifiedChatRequest:
        """Return a deep copy so transformers never mutate the caller's request."""
        return copy.deepcopy(self)


@dataclass(frozen=True)
class RequestSignals:
    """Classifier output consumed by the scenario router.

    Attributes:
        input_tokens: Estimated input token count.
        background: Request was classified as a background task.
        think: Request asks for extended reasoning.
        web_search: Request needs a web search tool.
    """

    input_tokens: int = 0
    background: bool = False
    think: bool = False
    web_search: bool = False


@dataclass(frozen=True)
class RouteDecision:
    """Record of how one request was routed.

    Created once per inbound request by the ``ScenarioRouter`` and never
    mutated.  Serialized into the routing state history.

    Attributes:
        provider: Provider selected for the request.
        model: Model selected for the request.
        scenario: Scenario that matched. Entries loaded from a newer
            state file may carry an unknown scenario name as a plain string.
        reason: Human-readable explanation, for observability only.
        input_tokens: Estimated input token count the decision was based on.
        timestamp: When the decision was made (UTC).
    """

    provider: str
    model: str
    scenario: Scenario | str
    reason: str
    input_tokens: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def target(self) -> RouteTarget:
        return RouteTarget(self.provider, self.model)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted history entry format.

        Returns:
            Dictionary with an ISO 8601 ``timestamp`` and camelCase keys
            matching the routing state document.
        """
        return {
            "timestamp": self.timestamp.isoformat(),
            "model": self.model,
            "provider": self.provider,
            "scenario": str(self.scenario),
            "inputTokens": self.input_tokens,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RouteDecision:
        """Deserialize a persisted history entry.

        Args:
            data: Dictionary in the ``to_dict()`` format.

        Returns:
            RouteDecision instance.

        Raises:
            KeyError: If ``provider``, ``model`` or ``timestamp`` is missing.
            ValueError: If ``timestamp`` is malformed.
        """
        return cls(
            provider=str(data["provider"]),
            model=str(data["model"]),
            scenario=parse_scenario(data.get("scenario", Scenario.DEFAULT.value)),
            reason=str(data.get("reason", "")),
            input_tokens=int(data.get("inputTokens", 0)),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
