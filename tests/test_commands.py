"""Tests for the parser, command registry and dispatcher."""

import pytest

from core.commands import (
    ERR_EXECUTION, ERR_LOCKED, ERR_NOT_FOUND, ERR_VALIDATION,
    Command, CommandDispatcher, CommandRegistry, CommandResult, fail, ok,
)
from core.events import COMMAND_EXECUTED, COMMAND_FAILED, SERVER_DISCONNECTED, EventBus
from core.matching import TaskMatcher, parse_match
from core.missions import Mission, MissionRegistry, MissionStateMachine, Task
from core.parser import ParsedCommand, parse_command, tokenize
from core.wallet import Wallet
from core.world import Host, WorldRegistry


class Ctx:
    def __init__(self, unlocked=()):
        self.unlocked_commands = set(unlocked)
        self.cwd = "/home/agent"

    def context_snapshot(self):
        return {"hostname": "neoncloud", "current_directory": self.cwd,
                "active_server_id": "localhost", "vpn_connected": False}


def _recorder(bus):
    events = []
    bus.subscribe(COMMAND_EXECUTED, events.append)
    bus.subscribe(COMMAND_FAILED, events.append)
    return events


# ── Parser ───────────────────────────────────────────────────────

class TestParser:
    def test_simple(self):
        p = parse_command("ls -a Documents")
        assert p.command == "ls"
        assert p.args == ["-a", "Documents"]
        assert p.raw == "ls -a Documents"

    def test_lowercases_command_only(self):
        p = parse_command("CD Documents")
        assert p.command == "cd"
        assert p.args == ["Documents"]

    def test_quotes(self):
        assert tokenize('echo "hello world" \'x y\'') == ["echo", "hello world", "x y"]

    def test_extra_whitespace(self):
        assert parse_command("   ping    8.8.8.8  ").args == ["8.8.8.8"]

    def test_empty(self):
        p = parse_command("   ")
        assert p == ParsedCommand("", [], "")
        assert p.arg_str == ""

    def test_arg_str(self):
        assert parse_command("echo a  b").arg_str == "a b"


# ── Registry ─────────────────────────────────────────────────────

async def _noop(ctx, args):
    return ok("noop")


class TestRegistry:
    def test_resolve_alias_case_insensitive(self):
        reg = CommandRegistry()
        reg.register(Command("mail", _noop, aliases=("email", "Inbox")))
        assert reg.resolve("MAIL") == "mail"
        assert reg.resolve("inbox") == "mail"
        assert reg.get("email").name == "mail"
        assert "email" in reg
        assert reg.resolve("nope") is None

    def test_reregister_replaces(self):
        reg = CommandRegistry()
        reg.register(Command("cat", _noop, aliases=("nano",)))
        reg.register(Command("cat", _noop, aliases=("type",)))
        assert len(reg) == 1
        assert reg.resolve("nano") is None
        assert reg.resolve("type") == "cat"

    def test_alias_moves(self):
        reg = CommandRegistry()
        reg.register(Command("a", _noop, aliases=("x",)))
        reg.register(Command("b", _noop, aliases=("x",)))
        assert reg.resolve("x") == "b"

    def test_unregister(self):
        reg = CommandRegistry()
        reg.register(Command("a", _noop, aliases=("x",)))
        reg.unregister("a")
        assert "a" not in reg
        assert "x" not in reg

    def test_iteration_sorted_and_visible(self):
        reg = CommandRegistry()
        reg.register(Command("zeta", _noop))
        reg.register(Command("alpha", _noop))
        reg.register(Command("secret", _noop, hidden=True))
        assert [c.name for c in reg] == ["alpha", "secret", "zeta"]
        assert [c.name for c in reg.visible()] == ["alpha", "zeta"]


class TestResult:
    def test_lines(self):
        assert ok("a\nb").lines == ["a", "b"]
        assert ok(["x", "y"]).lines == ["x", "y"]
        assert ok().lines == []

    def test_fail(self):
        r = fail("bad", "Oops")
        assert r.success is False
        assert r.error == "Oops"


# ── Dispatcher ───────────────────────────────────────────────────

class TestDispatcher:
    @pytest.mark.asyncio
    async def test_not_found_emits_failed_only(self):
        bus = EventBus()
        events = _recorder(bus)
        d = CommandDispatcher(CommandRegistry(), bus)
        result = await d.execute(parse_command("hack the planet"), Ctx())
        assert result.success is False
        assert result.error == ERR_NOT_FOUND
        assert [e.type for e in events] == [COMMAND_FAILED]
        assert events[0]["args"] == ("the", "planet")

    @pytest.mark.asyncio
    async def test_locked(self):
        bus = EventBus()
        events = _recorder(bus)
        reg = CommandRegistry()
        reg.register(Command("scan", _noop, requires_unlock=True))
        d = CommandDispatcher(reg, bus)
        result = await d.execute(parse_command("scan 10.0.0.0/8"), Ctx())
        assert result.error == ERR_LOCKED
        assert [e.type for e in events] == [COMMAND_FAILED]

        result = await d.execute(parse_command("scan 10.0.0.0/8"), Ctx(unlocked=["scan"]))
        assert result.success is True

    @pytest.mark.asyncio
    async def test_validation(self):
        bus = EventBus()
        events = _recorder(bus)
        reg = CommandRegistry()
        reg.register(Command("cat", _noop, validate=lambda a: None if a else "Usage: cat <file>"))
        d = CommandDispatcher(reg, bus)
        result = await d.execute(parse_command("cat"), Ctx())
        assert result.error == ERR_VALIDATION
        assert result.output == "Usage: cat <file>"
        assert [e.type for e in events] == [COMMAND_FAILED]

    @pytest.mark.asyncio
    async def test_success_emits_executed_with_context(self):
        bus = EventBus()
        events = _recorder(bus)
        reg = CommandRegistry()
        ctx = Ctx()

        async def cd(c, args):
            c.cwd = "/home/agent/" + args[0]
            return ok()

        reg.register(Command("cd", cd, aliases=("chdir",)))
        d = CommandDispatcher(reg, bus)
        result = await d.execute(parse_command("chdir Documents"), ctx)
        assert result.success
        assert len(events) == 1
        ev = events[0]
        assert ev.type == COMMAND_EXECUTED
        assert ev["command"] == "chdir"
        assert ev["canonical"] == "cd"
        assert ev["args"] == ("Documents",)
        assert ev["success"] is True
        # snapshot captured before the handler ran
        assert ev["context"]["current_directory"] == "/home/agent"

    @pytest.mark.asyncio
    async def test_unsuccessful_result_emits_both(self):
        bus = EventBus()
        events = _recorder(bus)
        reg = CommandRegistry()
        reg.register(Command("cd", lambda c, a: fail("cd: nope: No such file or directory")))
        d = CommandDispatcher(reg, bus)
        result = await d.execute(parse_command("cd nope"), Ctx())
        assert result.success is False
        assert [e.type for e in events] == [COMMAND_EXECUTED, COMMAND_FAILED]
        assert events[0]["success"] is False

    @pytest.mark.asyncio
    async def test_exception_becomes_execution_error(self):
        bus = EventBus()
        events = _recorder(bus)
        reg = CommandRegistry()

        async def boom(c, a):
            raise RuntimeError("disk on fire")

        reg.register(Command("boom", boom))
        d = CommandDispatcher(reg, bus)
        result = await d.execute(parse_command("boom"), Ctx())
        assert result.success is False
        assert result.error == ERR_EXECUTION
        assert result.output == "Error executing command: disk on fire"
        assert [e.type for e in events] == [COMMAND_EXECUTED, COMMAND_FAILED]

    @pytest.mark.asyncio
    async def test_sync_handler_and_plain_return(self):
        bus = EventBus()
        reg = CommandRegistry()
        reg.register(Command("hi", lambda c, a: "hello"))
        d = CommandDispatcher(reg, bus)
        result = await d.execute(parse_command("hi"), Ctx())
        assert isinstance(result, CommandResult)
        assert result.output == "hello"

    @pytest.mark.asyncio
    async def test_empty_input_is_noop(self):
        bus = EventBus()
        events = _recorder(bus)
        d = CommandDispatcher(CommandRegistry(), bus)
        result = await d.execute(parse_command(""), Ctx())
        assert result.success
        assert events == []


# ── Missions settle per command ──────────────────────────────────

def _two_missions(bus):
    reg = MissionRegistry()
    reg.add(Mission("a-01", "A", "training",
                    (Task("t1", "drop the link", parse_match({"type": "disconnect", "server": "s1"})),)))
    reg.add(Mission("b-02", "B", "training",
                    (Task("t1", "disconnect again", parse_match({"type": "command", "name": "disconnect"})),
                     Task("t2", "list files", parse_match({"type": "command", "name": "ls"}))),
                    prerequisites=("a-01",)))
    missions = MissionStateMachine(reg, bus, Wallet(), {"rewards": {"task": 0}})
    commands = CommandRegistry()

    async def do_disconnect(ctx, args):
        await bus.publish(SERVER_DISCONNECTED, server_id="s1")
        return ok("Disconnected")

    commands.register(Command("disconnect", do_disconnect))
    commands.register(Command("ls", lambda c, a: ok()))
    world = WorldRegistry()
    world.add_host(Host("s1", "s1", "10.0.0.1"))
    TaskMatcher(bus, missions, commands, world).attach()
    return missions, commands


class TestMissionSettle:
    @pytest.mark.asyncio
    async def test_command_completes_tasks_of_one_mission_only(self):
        bus = EventBus()
        missions, commands = _two_missions(bus)
        d = CommandDispatcher(commands, bus, before_execute=missions.start_timer)
        await missions.start_mission("a-01")

        await d.execute(parse_command("disconnect"), Ctx())
        assert missions.is_completed("a-01")
        assert missions.current_mission_id == "b-02"
        assert missions.progress("b-02") == (0, 2)

        await d.execute(parse_command("disconnect"), Ctx())
        assert missions.progress("b-02") == (1, 2)

    @pytest.mark.asyncio
    async def test_timer_starts_before_handler_runs(self):
        bus = EventBus()
        missions, commands = _two_missions(bus)
        d = CommandDispatcher(commands, bus, before_execute=missions.start_timer)
        await missions.start_mission("a-01")
        assert missions.mission_start_time is None

        seen = []
        commands.register(Command("peek", lambda c, a: seen.append(missions.mission_start_time)))
        await d.execute(parse_command("peek"), Ctx())
        assert seen[0] is not None

    @pytest.mark.asyncio
    async def test_next_mission_timer_waits_for_its_first_command(self):
        bus = EventBus()
        missions, commands = _two_missions(bus)
        d = CommandDispatcher(commands, bus, before_execute=missions.start_timer)
        await missions.start_mission("a-01")

        await d.execute(parse_command("disconnect"), Ctx())
        assert missions.current_mission_id == "b-02"
        assert missions.mission_start_time is None

        await d.execute(parse_command("ls"), Ctx())
        assert missions.mission_start_time is not None

    @pytest.mark.asyncio
    async def test_rejected_command_does_not_start_timer(self):
        bus = EventBus()
        missions, commands = _two_missions(bus)
        d = CommandDispatcher(commands, bus, before_execute=missions.start_timer)
        await missions.start_mission("a-01")
        await d.execute(parse_command("nmap"), Ctx())
        assert missions.mission_start_time is None
