"""Data models for the persisted routing state document.

The document holds the latest routing decision, session counters, and a
bounded history of recent decisions.  It is stored as a single JSON
object; keys not modelled here are kept in ``extra`` and written back
unchanged so newer writers' fields survive a rewrite.

Typical usage::

    from switchboard.models import RoutingState

    state = RoutingState.empty()
    state.apply(decision)
    json.dumps(state.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from switchboard.types import RouteDecision

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 100

_STATE_KEYS = ("lastUpdated", "lastRequest", "session", "history")


@dataclass
class SessionStats:
    """Aggregate counters for one session.

    Attributes:
        start_time: When the session (state document) was initialized.
        request_count: Number of decisions recorded this session.
        model_breakdown: ``"provider/model"`` → decisions routed there.
    """

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    request_count: int = 0
    model_breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "startTime": self.start_time.isoformat(),
            "requestCount": self.request_count,
            "modelBreakdown": dict(self.model_breakdown),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionStats:
        """Deserialize session counters.

        Raises:
            KeyError: If ``startTime`` is missing.
            ValueError: If a field has the wrong shape.
        """
        breakdown = data.get("modelBreakdown") or {}
        if not isinstance(breakdown, dict):
            raise ValueError("session.modelBreakdown must be an object")
        return cls(
            start_time=datetime.fromisoformat(data["startTime"]),
            request_count=int(data.get("requestCount", 0)),
            model_breakdown={str(k): int(v) for k, v in breakdown.items()},
        )


@dataclass
class RoutingState:
    """The persisted routing state document.

    Attributes:
        last_updated: When the document was last changed.
        last_request: Most recent decision, None before the first request.
        session: Session counters.
        history: Recent decisions, oldest first, at most
            ``MAX_HISTORY_ENTRIES`` long.
        extra: Unrecognized top-level keys from the file on disk.
    """

    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_request: RouteDecision | None = None
    session: SessionStats = field(default_factory=SessionStats)
    history: list[RouteDecision] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def empty(cls) -> RoutingState:
        """A freshly initialized state: new session, zero counters, no history."""
        now = datetime.now(UTC)
        return cls(last_updated=now, session=SessionStats(start_time=now))

    def apply(self, decision: RouteDecision) -> None:
        """Fold one routing decision into the state.

        Appends to history (evicting the oldest entries beyond
        ``MAX_HISTORY_ENTRIES``), sets the last request, and bumps the
        session counters.

        Args:
            decision: Decision to record.
        """
        self.history.append(decision)
        if len(self.history) > MAX_HISTORY_ENTRIES:
            del self.history[: len(self.history) - MAX_HISTORY_ENTRIES]

        self.last_request = decision
        self.session.request_count += 1
        key = decision.target.key
        self.session.model_breakdown[key] = self.session.model_breakdown.get(key, 0) + 1
        self.last_updated = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON document format.

        Returns:
            Dictionary with camelCase keys and ISO 8601 timestamps, plus
            any preserved unknown keys.
        """
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "lastUpdated": self.last_updated.isoformat(),
                "lastRequest": self.last_request.to_dict() if self.last_request else None,
                "session": self.session.to_dict(),
                "history": [entry.to_dict() for entry in self.history],
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoutingState:
        """Deserialize a routing state document.

        Older documents without ``history`` are accepted with an empty
        history.  Histories longer than ``MAX_HISTORY_ENTRIES`` keep only
        the most recent entries.  A malformed history entry is dropped on
        its own; the rest of the document still loads.

        Args:
            data: Decoded JSON document.

        Returns:
            RoutingState instance.

        Raises:
            KeyError, TypeError, ValueError: If the document does not match
                the schema.
        """
        if not isinstance(data, dict):
            raise TypeError("routing state must be a JSON object")

        last_request_raw = data.get("lastRequest")
        history_raw = data.get("history") or []
        if not isinstance(history_raw, list):
            raise TypeError("history must be a list")

        history = [d for d in map(_load_entry, history_raw) if d is not None]
        return cls(
            last_updated=datetime.fromisoformat(data["lastUpdated"]),
            last_request=_load_entry(last_request_raw) if last_request_raw else None,
            session=SessionStats.from_dict(data["session"]),
            history=history[-MAX_HISTORY_ENTRIES:],
            extra={k: v for k, v in data.items() if k not in _STATE_KEYS},
        )


def _load_entry(data: Any) -> RouteDecision | None:
    try:
        return RouteDecision.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Skipping malformed routing history entry %r: %s", data, exc)
        return None
