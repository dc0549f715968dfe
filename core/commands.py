"""Command registry and dispatcher."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Protocol, runtime_checkable

from core.events import COMMAND_EXECUTED, COMMAND_FAILED, EventBus
from core.parser import ParsedCommand

log = logging.getLogger(__name__)

ERR_NOT_FOUND = "Command not found"
ERR_LOCKED = "Command locked"
ERR_VALIDATION = "Validation failed"
ERR_EXECUTION = "Execution error"


@dataclass(slots=True)
class CommandResult:
    output: str | list[str] = ""
    success: bool = True
    error: str | None = None
    educational: str | None = None

    @property
    def lines(self) -> list[str]:
        if isinstance(self.output, list):
            return self.output
        if not self.output:
            return []
        return self.output.split("\n")


def ok(output: str | list[str] = "", educational: str | None = None) -> CommandResult:
    return CommandResult(output, True, None, educational)


def fail(output: str | list[str], error: str | None = None) -> CommandResult:
    return CommandResult(output, False, error)


@runtime_checkable
class CommandContext(Protocol):
    """What the dispatcher needs from the caller."""

    unlocked_commands: set[str]

    def context_snapshot(self) -> dict[str, Any]:
        """Session facts captured at call time (host, VPN, cwd)."""
        ...


Validator = Callable[[list[str]], "str | None"]
Executor = Callable[[Any, list[str]], Any]


@dataclass(slots=True)
class Command:
    name: str
    execute: Executor
    aliases: tuple[str, ...] = ()
    requires_unlock: bool = False
    validate: Validator | None = None
    help: str = ""
    usage: str = ""
    hidden: bool = False
    meta: dict[str, Any] = field(default_factory=dict)


class CommandRegistry:
    """Name/alias → Command lookup, case-insensitive."""

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}
        self._aliases: dict[str, str] = {}

    def register(self, command: Command) -> None:
        name = command.name.lower()
        if name in self._commands:
            self.unregister(name)
        self._commands[name] = command
        for alias in command.aliases:
            alias = alias.lower()
            owner = self._aliases.get(alias)
            if owner and owner != name:
                log.warning("Alias %r moved from %s to %s", alias, owner, name)
            self._aliases[alias] = name

    def unregister(self, name: str) -> None:
        name = name.lower()
        self._commands.pop(name, None)
        for alias, owner in list(self._aliases.items()):
            if owner == name:
                del self._aliases[alias]

    def resolve(self, name: str) -> str | None:
        """Return the canonical command name for a name or alias."""
        key = name.lower()
        if key in self._commands:
            return key
        return self._aliases.get(key)

    def get(self, name: str) -> Command | None:
        canonical = self.resolve(name)
        if canonical is None:
            return None
        return self._commands.get(canonical)

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None

    def __iter__(self) -> Iterator[Command]:
        return iter(sorted(self._commands.values(), key=lambda c: c.name))

    def __len__(self) -> int:
        return len(self._commands)

    def visible(self) -> list[Command]:
        return [c for c in self if not c.hidden]


class CommandDispatcher:
    """Executes parsed commands and publishes the outcome on the bus."""

    def __init__(self, registry: CommandRegistry, bus: EventBus,
                 before_execute: Callable[[], Any] | None = None) -> None:
        self.registry = registry
        self.bus = bus
        self.before_execute = before_execute

    async def execute(self, parsed: ParsedCommand, ctx: CommandContext) -> CommandResult:
        """Run one command; missions settle once, after all of its events."""
        async with self.bus.transaction():
            return await self._execute(parsed, ctx)

    async def _execute(self, parsed: ParsedCommand, ctx: CommandContext) -> CommandResult:
        name, args = parsed.command, list(parsed.args)
        if not name:
            return ok()

        cmd = self.registry.get(name)
        if cmd is None:
            return await self._reject(
                name, args,
                f"Command not found: {name}. Type 'help' to see available commands.",
                ERR_NOT_FOUND,
            )

        if cmd.requires_unlock and cmd.name not in ctx.unlocked_commands:
            return await self._reject(
                name, args,
                f"Command '{cmd.name}' is locked. Complete missions or buy software to unlock it.",
                ERR_LOCKED,
            )

        if cmd.validate is not None:
            message = cmd.validate(args)
            if message:
                return await self._reject(name, args, message, ERR_VALIDATION)

        snapshot = dict(ctx.context_snapshot())
        if self.before_execute is not None:
            self.before_execute()
        try:
            result = cmd.execute(ctx, args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            log.exception("Command %s failed", cmd.name)
            await self._publish_executed(name, cmd.name, args, False, snapshot)
            await self.bus.publish(COMMAND_FAILED, command=name, args=tuple(args), error=ERR_EXECUTION)
            return fail(f"Error executing command: {e}", ERR_EXECUTION)

        if not isinstance(result, CommandResult):
            result = ok("" if result is None else str(result))

        await self._publish_executed(name, cmd.name, args, result.success, snapshot)
        if not result.success:
            await self.bus.publish(COMMAND_FAILED, command=name, args=tuple(args), error=result.error)
        return result

    async def _publish_executed(self, name: str, canonical: str, args: list[str],
                                success: bool, snapshot: dict[str, Any]) -> None:
        await self.bus.publish(
            COMMAND_EXECUTED,
            command=name, canonical=canonical, args=tuple(args),
            success=success, context=snapshot,
        )

    async def _reject(self, name: str, args: list[str], output: str, error: str) -> CommandResult:
        log.debug("Rejected %s: %s", name, error)
        await self.bus.publish(COMMAND_FAILED, command=name, args=tuple(args), error=error)
        return fail(output, error)
