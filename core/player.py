"""Player — one agent's services and terminal state.

Every player owns its own event bus, action queue, wallet, mission state
machine and task matcher. Registries (commands, missions, world) are shared
and read-only; they are handed in by the engine.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from core.action_queue import ActionQueue
from core.commands import CommandDispatcher, CommandRegistry, CommandResult
from core.events import MISSION_COMPLETED, EventBus, GameEvent
from core.matching import TaskMatcher
from core.missions import MissionRegistry, MissionStateMachine
from core.parser import parse_command
from core.vfs import VirtualFS
from core.wallet import Wallet

if TYPE_CHECKING:
    from core.world import Host, WorldRegistry

log = logging.getLogger(__name__)

LOCAL_HOST = "localhost"
DEFAULT_HOME = "/home/neoncloud-user"

SendFn = Callable[[str], Awaitable[None]]


class Player:
    """Agent state plus dependency-injected game services."""

    def __init__(
        self,
        name: str,
        *,
        commands: CommandRegistry,
        missions: MissionRegistry,
        world: WorldRegistry,
        config: dict[str, Any] | None = None,
        fs_specs: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config: dict[str, Any] = config or {}
        player_cfg = self.config.get("player", {}) or {}
        engine_cfg = self.config.get("engine", {}) or {}

        self.name = name
        self.commands = commands
        self.world = world
        self.fs_specs: dict[str, Any] = fs_specs or {}
        self.local_host: str = player_cfg.get("local_host", LOCAL_HOST)
        self.hostname: str = player_cfg.get("hostname", "neoncloud")

        # Services
        self.bus = EventBus(clock)
        self.wallet = Wallet(int(player_cfg.get("starting_balance", 0)), clock)
        self.queue = ActionQueue(
            time_scale=engine_cfg.get("time_scale", 1.0),
            tick_interval=engine_cfg.get("tick_interval", 0.1),
        )
        self.missions = MissionStateMachine(missions, self.bus, self.wallet, self.config, clock)
        self.matcher = TaskMatcher(self.bus, self.missions, commands, world)
        self.matcher.attach()
        self.dispatcher = CommandDispatcher(commands, self.bus,
                                            before_execute=self.missions.start_timer)

        # Terminal / session state
        self.current_server: str | None = None
        self.username: str = player_cfg.get("username", "neoncloud-user")
        self.vpn_connected = False
        self.vpn_type: str | None = None
        self.filesystems: dict[str, VirtualFS] = {}
        self.cwds: dict[str, str] = {}

        # Progress outside missions
        self.unlocked_commands: set[str] = set(player_cfg.get("unlocked_commands", ()))
        self.inventory: list[str] = []
        self.known_credentials: dict[str, str] = {}   # host id → username
        self.discovered_hosts: set[str] = set()
        self.mailbox: Any = None
        self.game: Any = None        # game plugin, set by plugin.setup_player
        self.snapshots: Any = None   # snapshot store (Database or MemorySnapshotStore)
        self.send: SendFn | None = None

        self.bus.subscribe(MISSION_COMPLETED, self._on_mission_completed)

    # ── Commands ─────────────────────────────────────────────────

    async def execute(self, text: str) -> CommandResult:
        return await self.dispatcher.execute(parse_command(text), self)

    def context_snapshot(self) -> dict[str, Any]:
        return {
            "hostname": self.current_server or self.hostname,
            "vpn_connected": self.vpn_connected,
            "current_directory": self.cwd,
            "active_server_id": self.active_host_id,
        }

    def unlock(self, *names: str) -> list[str]:
        new = [n for n in names if n not in self.unlocked_commands]
        self.unlocked_commands.update(new)
        return new

    async def notify(self, text: str) -> None:
        """Push asynchronous output (timers, rewards) to the terminal."""
        if self.send is not None:
            await self.send(text)

    async def _on_mission_completed(self, event: GameEvent) -> None:
        unlocks = self.unlock(*event.get("unlock_commands", ()))
        if unlocks:
            await self.notify("{green}New commands unlocked: " + ", ".join(unlocks) + "{reset}")

    # ── Location ─────────────────────────────────────────────────

    @property
    def active_host_id(self) -> str:
        return self.current_server or self.local_host

    @property
    def active_host(self) -> Host | None:
        return self.world.get_host(self.active_host_id)

    def filesystem(self, host_id: str | None = None) -> VirtualFS:
        host_id = host_id or self.active_host_id
        fs = self.filesystems.get(host_id)
        if fs is None:
            spec = self.fs_specs.get(host_id)
            if spec is None and host_id != self.local_host:
                host = self.world.get_host(host_id)
                name = host.name if host else host_id
                spec = {"home": "/home/admin", "files": {"/etc/hostname": name + "\n"}}
            fs = VirtualFS.from_spec(spec, default_home=DEFAULT_HOME)
            self.filesystems[host_id] = fs
        return fs

    @property
    def fs(self) -> VirtualFS:
        return self.filesystem()

    @property
    def cwd(self) -> str:
        return self.cwds.get(self.active_host_id) or self.fs.home

    @cwd.setter
    def cwd(self, path: str) -> None:
        self.cwds[self.active_host_id] = path

    def home_path(self, host_id: str | None = None) -> str:
        return self.filesystem(host_id).home

    # ── Inventory & tools ────────────────────────────────────────

    def has_item(self, item_id: str) -> bool:
        return item_id in self.inventory

    def tool_duration(self, tool_id: str, premium: bool = False) -> float:
        tools = self.config.get("tools", {}) or {}
        entry = tools.get(tool_id)
        if entry is None:
            return float(tools.get("default", 5))
        if isinstance(entry, (int, float)):
            return float(entry)
        if premium and "premium" in entry:
            return float(entry["premium"])
        return float(entry.get("basic", tools.get("default", 5)))

    # ── Snapshot ─────────────────────────────────────────────────

    def export_snapshot(self) -> dict[str, Any]:
        """Serializable state. The action queue is never persisted."""
        data: dict[str, Any] = {
            "missions": self.missions.export_state(),
            "wallet": self.wallet.export_state(),
            "inventory": list(self.inventory),
            "unlocked_commands": sorted(self.unlocked_commands),
            "known_credentials": dict(self.known_credentials),
            "discovered_hosts": sorted(self.discovered_hosts),
        }
        if self.mailbox is not None:
            data["mailbox"] = self.mailbox.export_state()
        return data

    def import_snapshot(self, data: dict[str, Any]) -> None:
        self.missions.import_state(data.get("missions") or {})
        self.wallet.import_state(data.get("wallet") or {})
        self.inventory = list(data.get("inventory", []))
        defaults = (self.config.get("player", {}) or {}).get("unlocked_commands", ())
        self.unlocked_commands = set(defaults) | set(data.get("unlocked_commands", []))
        self.known_credentials = dict(data.get("known_credentials") or {})
        self.discovered_hosts = set(data.get("discovered_hosts", []))
        if self.mailbox is not None and "mailbox" in data:
            self.mailbox.import_state(data["mailbox"])
        self.current_server = None
        self.vpn_connected = False
        self.vpn_type = None
        self.cwds.clear()
        log.info("Snapshot imported for %s (mission=%s, completed=%d)",
                 self.name, self.missions.current_mission_id,
                 len(self.missions.completed_missions))

    async def close(self) -> None:
        await self.queue.clear()
        self.matcher.detach()
        self.missions.detach()
