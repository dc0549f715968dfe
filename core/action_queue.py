"""Action queue — single-lane scheduler for timed tool effects.

Exactly one action runs at a time; the rest wait in FIFO order. An action's
``on_complete`` runs once its (scaled) duration has elapsed, ``on_cancel``
runs instead when it is cancelled first. Never both.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

log = logging.getLogger(__name__)

QUEUED = "queued"
RUNNING = "running"
COMPLETED = "completed"
CANCELLED = "cancelled"

_id_counter = itertools.count(1)


def _next_action_id() -> str:
    return f"action-{next(_id_counter)}"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass(slots=True, eq=False)
class QueuedAction:
    duration: float
    on_complete: Callable[[], Any]
    on_cancel: Callable[[], Any] | None = None
    on_progress: Callable[[float], Any] | None = None
    label: str = ""
    id: str = field(default_factory=_next_action_id)
    state: str = QUEUED
    progress: float = 0.0
    started_at: float | None = None
    effective_duration: float = 0.0


ProgressListener = Callable[["QueuedAction | None"], Any]


class ActionQueue:
    """FIFO queue of QueuedActions with a single running slot."""

    def __init__(
        self,
        time_scale: float = 1.0,
        tick_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.time_scale = time_scale
        self.tick_interval = tick_interval
        self._clock = clock
        self._current: QueuedAction | None = None
        self._queue: deque[QueuedAction] = deque()
        self._task: asyncio.Task | None = None
        self._listeners: list[ProgressListener] = []
        self._idle = asyncio.Event()
        self._idle.set()

    # ── Inspection ───────────────────────────────────────────────

    @property
    def current(self) -> QueuedAction | None:
        return self._current

    @property
    def pending(self) -> list[QueuedAction]:
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue) + (1 if self._current else 0)

    def is_busy(self) -> bool:
        return self._current is not None

    def remaining(self) -> float:
        """Seconds left on the current action."""
        a = self._current
        if a is None or a.started_at is None:
            return 0.0
        return max(0.0, a.effective_duration - (self._clock() - a.started_at))

    # ── Listeners ────────────────────────────────────────────────

    def on_progress(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._current)
            except Exception:
                log.exception("Progress listener failed")

    # ── Scheduling ───────────────────────────────────────────────

    def enqueue(self, action: QueuedAction) -> str:
        if self._current is None and not self._queue:
            self._start(action)
        else:
            self._queue.append(action)
            log.debug("Queued %s (%s), %d waiting", action.id, action.label, len(self._queue))
        return action.id

    def _start(self, action: QueuedAction) -> None:
        action.state = RUNNING
        action.started_at = self._clock()
        action.effective_duration = max(0.0, action.duration * self.time_scale)
        self._current = action
        self._idle.clear()
        self._task = asyncio.create_task(self._run(action))
        log.debug("Started %s (%s) for %.2fs", action.id, action.label, action.effective_duration)
        self._notify()

    def _advance(self) -> None:
        self._current = None
        self._task = None
        if self._queue:
            self._start(self._queue.popleft())
        else:
            self._idle.set()
            self._notify()

    async def _run(self, action: QueuedAction) -> None:
        try:
            while True:
                elapsed = self._clock() - (action.started_at or 0.0)
                duration = action.effective_duration
                action.progress = 1.0 if duration <= 0 else min(1.0, max(0.0, elapsed / duration))
                if action.on_progress is not None:
                    try:
                        action.on_progress(action.progress)
                    except Exception:
                        log.exception("on_progress failed for %s", action.id)
                self._notify()
                if action.progress >= 1.0:
                    break
                await asyncio.sleep(min(self.tick_interval, duration - elapsed))
        except asyncio.CancelledError:
            return

        action.state = COMPLETED
        try:
            await _maybe_await(action.on_complete())
        except Exception:
            log.exception("on_complete failed for %s", action.id)
        finally:
            if self._current is action:
                self._advance()

    # ── Cancellation ─────────────────────────────────────────────

    async def cancel(self, action_id: str) -> bool:
        """Cancel a running or queued action. False when unknown or finished."""
        current = self._current
        if current is not None and current.id == action_id:
            if current.state != RUNNING:
                return False
            current.state = CANCELLED
            if self._task is not None:
                self._task.cancel()
            await self._call_cancel(current)
            self._advance()
            return True

        for queued in self._queue:
            if queued.id == action_id:
                self._queue.remove(queued)
                queued.state = CANCELLED
                await self._call_cancel(queued)
                self._notify()
                return True
        return False

    async def clear(self) -> None:
        """Cancel everything, current first, then queued in order."""
        waiting = list(self._queue)
        self._queue.clear()
        current = self._current
        if current is not None and current.state == RUNNING:
            current.state = CANCELLED
            if self._task is not None:
                self._task.cancel()
            await self._call_cancel(current)
            self._current = None
            self._task = None
        for queued in waiting:
            queued.state = CANCELLED
            await self._call_cancel(queued)
        if self._current is None:
            self._idle.set()
        self._notify()

    async def _call_cancel(self, action: QueuedAction) -> None:
        if action.on_cancel is None:
            return
        try:
            await _maybe_await(action.on_cancel())
        except Exception:
            log.exception("on_cancel failed for %s", action.id)

    async def wait_idle(self) -> None:
        await self._idle.wait()
