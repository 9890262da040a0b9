"""Routing state store: single-writer persistence of routing activity.

The store owns the in-memory ``RoutingState`` and is the only thing that
writes the state file.  Every mutation (``record()``, ``initialize()``,
``reload()``) is queued and applied one at a time by a single worker
task, so concurrent request handlers can record decisions without
losing each other's updates.  History order is the order in which
``record()`` was called.

Reads are served from memory; the file is only read at startup or on an
explicit ``reload()``.  Persistence failures are logged and swallowed:
a broken disk never fails or delays a request.

File format: a single JSON object (see ``switchboard.models``).

Typical usage::

    async with RoutingStateStore(config.state_path) as store:
        store.record(decision)          # fire-and-forget
        recent = store.history(limit=10)
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from switchboard.errors import StateStoreIOFailure
from switchboard.models import RoutingState
from switchboard.types import RouteDecision

logger = logging.getLogger(__name__)


def load_state(path: Path) -> RoutingState:
    """Read a routing state document from disk.

    Never raises: a missing, unreadable, or schema-invalid file yields a
    freshly initialized empty state.

    Args:
        path: State file location.

    Returns:
        The persisted state, or an empty one.
    """
    if not path.exists():
        return RoutingState.empty()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return RoutingState.from_dict(data)
    except OSError as exc:
        logger.warning("%s", StateStoreIOFailure(str(path), str(exc)))
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("Ignoring invalid routing state in %s: %s", path, exc)
    return RoutingState.empty()


def write_state(path: Path, data: dict[str, Any]) -> None:
    """Atomically write a routing state document.

    Writes to a sibling temp file and renames it over the target so a
    crash mid-write never leaves a truncated document behind.

    Args:
        path: State file location.
        data: Serialized state (``RoutingState.to_dict()``).

    Raises:
        StateStoreIOFailure: If the directory or file cannot be written.
    """
    tmp_path = path.with_name(f"{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise StateStoreIOFailure(str(path), str(exc)) from exc


@dataclass
class _Command:
    """One queued mutation for the writer task."""

    kind: str
    decision: RouteDecision | None = None
    done: asyncio.Future[None] | None = None


class RoutingStateStore:
    """Durable, crash-tolerant record of routing decisions.

    Designed to be used as an async context manager, which loads the
    state and starts the writer task on entry and drains pending writes
    on exit.  Calling ``record()`` inside a running event loop starts the
    writer lazily if needed.

    Args:
        path: Location of the persisted state document.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._state: RoutingState | None = None
        self._queue: asyncio.Queue[_Command] | None = None
        self._worker: asyncio.Task[None] | None = None

    async def __aenter__(self) -> RoutingStateStore:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Load the state from disk and start the writer task."""
        if self._state is None:
            self._state = await asyncio.to_thread(load_state, self.path)
        self._ensure_worker()

    async def stop(self) -> None:
        """Apply all queued mutations, then stop the writer task."""
        if self._worker is None or self._queue is None:
            return
        await self._queue.join()
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None
        self._queue = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self) -> RoutingState:
        """Get a snapshot of the current routing state.

        Never raises.  Loads from disk on first use if the store was not
        started.

        Returns:
            A copy of the in-memory state; mutating it has no effect.
        """
        return copy.deepcopy(self._current())

    def history(self, limit: int | None = None) -> list[RouteDecision]:
        """Get recent routing decisions, oldest first.

        Args:
            limit: Maximum number of entries, counted from the most
                recent. None or a non-positive value returns all.

        Returns:
            List of decisions in insertion order.
        """
        entries = self._current().history
        if limit and limit > 0:
            return list(entries[-limit:])
        return list(entries)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(self, decision: RouteDecision) -> None:
        """Queue a routing decision for recording.

        Fire-and-forget: returns immediately, and any persistence failure
        is logged by the writer task.  Outside a running event loop the
        decision is applied and written inline, still without raising.

        Args:
            decision: Decision to append to the state.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._record_inline(decision)
            return
        queue = self._ensure_worker()
        queue.put_nowait(_Command("record", decision))

    async def initialize(self) -> None:
        """Replace the persisted state with a fresh empty document.

        Starts a new session: new start time, zero counters, empty
        history.  Returns once the reset has been applied.
        """
        await self._submit("initialize")

    async def reload(self) -> None:
        """Re-read the state file, replacing the in-memory state."""
        await self._submit("reload")

    async def flush(self) -> None:
        """Wait until every queued mutation has been applied."""
        if self._queue is not None:
            await self._queue.join()

    # ------------------------------------------------------------------
    # Writer task
    # ------------------------------------------------------------------

    def _current(self) -> RoutingState:
        if self._state is None:
            self._state = load_state(self.path)
        return self._state

    def _ensure_worker(self) -> asyncio.Queue[_Command]:
        if self._queue is None or self._worker is None or self._worker.done():
            self._queue = asyncio.Queue()
            self._worker = asyncio.get_running_loop().create_task(
                self._run(self._queue), name="routing-state-writer"
            )
        return self._queue

    async def _submit(self, kind: str) -> None:
        queue = self._ensure_worker()
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        queue.put_nowait(_Command(kind, done=done))
        await done

    async def _run(self, queue: asyncio.Queue[_Command]) -> None:
        while True:
            command = await queue.get()
            try:
                await self._apply(command)
            except Exception:
                logger.exception("Routing state %s failed", command.kind)
            finally:
                if command.done is not None and not command.done.done():
                    command.done.set_result(None)
                queue.task_done()

    async def _apply(self, command: _Command) -> None:
        if command.kind == "reload" or (self._state is None and command.kind == "record"):
            self._state = await asyncio.to_thread(load_state, self.path)
            if command.kind == "reload":
                return

        if command.kind == "initialize":
            self._state = RoutingState.empty()
        elif command.decision is not None:
            self._current().apply(command.decision)

        snapshot = self._current().to_dict()
        try:
            await asyncio.to_thread(write_state, self.path, snapshot)
        except StateStoreIOFailure as exc:
            logger.warning("%s", exc)

    def _record_inline(self, decision: RouteDecision) -> None:
        state = self._current()
        state.apply(decision)
        try:
            write_state(self.path, state.to_dict())
        except StateStoreIOFailure as exc:
            logger.warning("%s", exc)
