"""Event bus — typed publish/subscribe between commands, tools and missions.

The bus is a plain fan-out primitive: ``emit`` calls every subscriber of the
event type in subscription order, joins any coroutines they return and then
returns. There is no queue and no backpressure; an emitted event reaches all
live subscribers before ``emit`` completes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

log = logging.getLogger(__name__)

# ── Event types ──────────────────────────────────────────────────

COMMAND_EXECUTED = "command:executed"
COMMAND_FAILED = "command:failed"
TOOL_USED = "tool:used"
FILE_READ = "file:read"
SERVER_CONNECTED = "server:connected"
SERVER_DISCONNECTED = "server:disconnected"
EMAIL_READ = "email:read"
MISSION_STARTED = "mission:started"
MISSION_COMPLETED = "mission:completed"
TASK_COMPLETED = "task:completed"
CATEGORY_COMPLETED = "category:completed"
ITEM_PURCHASED = "item:purchased"
HINT_USED = "hint:used"
CURRENCY_CHANGED = "currency:changed"

EVENT_TYPES = frozenset({
    COMMAND_EXECUTED, COMMAND_FAILED, TOOL_USED, FILE_READ,
    SERVER_CONNECTED, SERVER_DISCONNECTED, EMAIL_READ,
    MISSION_STARTED, MISSION_COMPLETED, TASK_COMPLETED, CATEGORY_COMPLETED,
    ITEM_PURCHASED, HINT_USED, CURRENCY_CHANGED,
})

Handler = Callable[["GameEvent"], Any]
SettleHook = Callable[[], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class GameEvent:
    type: str
    timestamp: float
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.payload, MappingProxyType):
            object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]


class EventBus:
    """Synchronous fan-out dispatcher for GameEvents."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._settle_hooks: list[SettleHook] = []
        self._clock = clock
        self._last_ts = 0.0
        self._depth = 0

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register handler; returns an idempotent unsubscribe callable."""
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)
        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            try:
                handlers.remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def once(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register handler for a single delivery."""
        fired = False

        def _wrapper(event: GameEvent) -> Any:
            nonlocal fired
            if fired:
                return None
            fired = True
            unsubscribe()
            return handler(event)

        unsubscribe = self.subscribe(event_type, _wrapper)
        return unsubscribe

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, ()))

    def add_settle_hook(self, hook: SettleHook) -> Callable[[], None]:
        """Run hook each time an outermost emit has joined all handlers."""
        self._settle_hooks.append(hook)

        def remove() -> None:
            if hook in self._settle_hooks:
                self._settle_hooks.remove(hook)

        return remove

    def make_event(self, event_type: str, **payload: Any) -> GameEvent:
        ts = max(self._clock(), self._last_ts)
        self._last_ts = ts
        return GameEvent(event_type, ts, payload)

    async def publish(self, event_type: str, **payload: Any) -> GameEvent:
        event = self.make_event(event_type, **payload)
        await self.emit(event)
        return event

    async def emit(self, event: GameEvent) -> None:
        """Deliver event to every subscriber, then join pending coroutines."""
        self._depth += 1
        try:
            pending: list[Awaitable[Any]] = []
            for handler in list(self._handlers.get(event.type, ())):
                try:
                    result = handler(event)
                except Exception:
                    log.exception("Event handler failed for %s", event.type)
                    continue
                if inspect.isawaitable(result):
                    pending.append(result)

            if pending:
                results = await asyncio.gather(*pending, return_exceptions=True)
                for res in results:
                    if isinstance(res, BaseException):
                        log.error("Async event handler failed for %s: %r",
                                  event.type, res, exc_info=res)
        finally:
            self._depth -= 1

        if self._depth == 0:
            await self._run_settle_hooks()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Hold settle hooks until the block and every emit inside it finish."""
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1

        if self._depth == 0:
            await self._run_settle_hooks()

    async def _run_settle_hooks(self) -> None:
        for hook in list(self._settle_hooks):
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("Settle hook failed")
