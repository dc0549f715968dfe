"""Task match specifications and the task matcher.

A task's completion condition is one of the frozen spec dataclasses below.
Each spec names the event type it listens to; the matcher only ever compares
structured payload fields, so ``disconnect`` can never satisfy a connect
condition (they are different event types) and ``secret.txt`` never
satisfies a condition on ``credentials.enc``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Union

from core.events import (
    COMMAND_EXECUTED, EMAIL_READ, FILE_READ, ITEM_PURCHASED,
    SERVER_CONNECTED, SERVER_DISCONNECTED, TOOL_USED, EventBus, GameEvent,
)

if TYPE_CHECKING:
    from core.commands import CommandRegistry
    from core.missions import Mission, MissionStateMachine
    from core.world import WorldRegistry

log = logging.getLogger(__name__)


class SessionKind(enum.Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"


# ── Match specifications ─────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class CommandMatch:
    name: str
    args_equal: tuple[str, ...] | None = None
    args_contains: str | None = None
    server_id: str | None = None

    event_type = COMMAND_EXECUTED


@dataclass(frozen=True, slots=True)
class FileReadMatch:
    filename: str | None = None
    path: str | None = None
    server_id: str | None = None

    event_type = FILE_READ


@dataclass(frozen=True, slots=True)
class ToolMatch:
    tool_id: str
    target_contains: str | None = None
    server_id: str | None = None

    event_type = TOOL_USED


@dataclass(frozen=True, slots=True)
class SessionMatch:
    kind: SessionKind
    server_id: str | None = None

    @property
    def event_type(self) -> str:
        return SERVER_CONNECTED if self.kind is SessionKind.CONNECT else SERVER_DISCONNECTED


@dataclass(frozen=True, slots=True)
class EmailMatch:
    email_id: str | None = None
    mission_id: str | None = None

    event_type = EMAIL_READ


@dataclass(frozen=True, slots=True)
class PurchaseMatch:
    item_id: str

    event_type = ITEM_PURCHASED


MatchSpec = Union[CommandMatch, FileReadMatch, ToolMatch, SessionMatch, EmailMatch, PurchaseMatch]

MATCHED_EVENTS = (
    COMMAND_EXECUTED, FILE_READ, TOOL_USED, SERVER_CONNECTED,
    SERVER_DISCONNECTED, EMAIL_READ, ITEM_PURCHASED,
)


def _opt_tuple(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(str(v) for v in value)


def parse_match(spec: dict[str, Any]) -> MatchSpec:
    """Build a match spec from its YAML mapping (``type`` selects the variant)."""
    kind = spec.get("type")
    if kind == "command":
        return CommandMatch(
            name=str(spec["name"]).lower(),
            args_equal=_opt_tuple(spec.get("args_equal")),
            args_contains=spec.get("args_contains"),
            server_id=spec.get("server"),
        )
    if kind == "file_read":
        if not spec.get("filename") and not spec.get("path"):
            raise ValueError("file_read match needs filename or path")
        return FileReadMatch(spec.get("filename"), spec.get("path"), spec.get("server"))
    if kind == "tool":
        return ToolMatch(spec["tool"], spec.get("target_contains"), spec.get("server"))
    if kind in ("connect", "disconnect"):
        return SessionMatch(SessionKind(kind), spec.get("server"))
    if kind == "email":
        return EmailMatch(spec.get("email_id"), spec.get("mission_id"))
    if kind == "purchase":
        return PurchaseMatch(spec["item"])
    raise ValueError(f"unknown match type: {kind!r}")


# ── Matcher ──────────────────────────────────────────────────────

class TaskMatcher:
    """Completes tasks of the active mission from bus events."""

    def __init__(
        self,
        bus: EventBus,
        missions: MissionStateMachine,
        commands: CommandRegistry,
        world: WorldRegistry,
    ) -> None:
        self.bus = bus
        self.missions = missions
        self.commands = commands
        self.world = world
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self) -> None:
        if self._unsubscribers:
            return
        for event_type in MATCHED_EVENTS:
            self._unsubscribers.append(self.bus.subscribe(event_type, self.on_event))

    def detach(self) -> None:
        for unsub in self._unsubscribers:
            unsub()
        self._unsubscribers.clear()

    async def on_event(self, event: GameEvent) -> list[str]:
        """Complete every task of the active mission matched by event."""
        mission = self.missions.current_mission
        if mission is None:
            return []

        completed = []
        for task in self.missions.incomplete_tasks(mission.id):
            spec = task.match
            if spec is None or spec.event_type != event.type:
                continue
            if self.matches(spec, event, mission):
                if await self.missions.complete_task(mission.id, task.id):
                    completed.append(task.id)
        if completed:
            log.debug("%s completed %s/%s", event.type, mission.id, completed)
        return completed

    # ── Predicates ───────────────────────────────────────────────

    def matches(self, spec: MatchSpec, event: GameEvent, mission: Mission | None = None) -> bool:
        if spec.event_type != event.type:
            return False
        if isinstance(spec, CommandMatch):
            return self._match_command(spec, event)
        if isinstance(spec, FileReadMatch):
            return self._match_file(spec, event)
        if isinstance(spec, ToolMatch):
            return self._match_tool(spec, event)
        if isinstance(spec, SessionMatch):
            return self._same_host(spec.server_id, event.get("server_id"))
        if isinstance(spec, EmailMatch):
            return self._match_email(spec, event, mission)
        if isinstance(spec, PurchaseMatch):
            return event.get("item_id") == spec.item_id
        return False

    def _canonical(self, name: str) -> str:
        return self.commands.resolve(name) or name.lower()

    def _match_command(self, spec: CommandMatch, event: GameEvent) -> bool:
        if not event.get("success"):
            return False
        typed = event.get("canonical") or event.get("command", "")
        if self._canonical(typed) != self._canonical(spec.name):
            return False
        args = tuple(event.get("args", ()))
        if spec.args_equal is not None and args != spec.args_equal:
            return False
        if spec.args_contains is not None:
            if spec.args_contains.lower() not in " ".join(args).lower():
                return False
        if spec.server_id is not None:
            ctx = event.get("context") or {}
            return self._same_host(spec.server_id, ctx.get("active_server_id"))
        return True

    def _match_file(self, spec: FileReadMatch, event: GameEvent) -> bool:
        if spec.filename is not None and event.get("filename") != spec.filename:
            return False
        if spec.path is not None and event.get("file_path") != spec.path:
            return False
        return self._same_host(spec.server_id, event.get("server_id"))

    def _match_tool(self, spec: ToolMatch, event: GameEvent) -> bool:
        if event.get("tool_id") != spec.tool_id:
            return False
        if spec.target_contains is not None:
            target = event.get("target") or ""
            if spec.target_contains not in target:
                return False
        return self._same_host(spec.server_id, event.get("server_id"))

    def _match_email(self, spec: EmailMatch, event: GameEvent, mission: Mission | None) -> bool:
        if spec.email_id is not None:
            return event.get("email_id") == spec.email_id
        wanted = spec.mission_id or (mission.id if mission else None)
        return wanted is not None and event.get("mission_id") == wanted

    def _same_host(self, expected: str | None, actual: str | None) -> bool:
        """Exact host identity; IPs and domains resolve through the world registry."""
        if expected is None:
            return True
        if not actual:
            return False
        if expected == actual:
            return True
        a = self.world.resolve_host(expected)
        b = self.world.resolve_host(actual)
        return a is not None and b is not None and a.id == b.id
