"""NeonCloud Engine — boot sequence, content registries, autosave loop."""

from __future__ import annotations

import asyncio
import importlib
import logging
import os
import signal
import time
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from core.commands import Command, CommandRegistry, CommandResult
from core.db import Database, MemorySnapshotStore
from core.matching import parse_match
from core.missions import MissionRegistry
from core.net import TelnetConnection, TelnetServer
from core.player import Player
from core.session import Session
from core.world import WorldRegistry

log = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


# ── GamePlugin Protocol ──────────────────────────────────────────

@runtime_checkable
class GamePlugin(Protocol):
    name: str
    fs_specs: dict[str, Any]

    def load_content(self, engine: Engine, data_dir: Path) -> None: ...

    def register_commands(self, engine: Engine) -> None: ...

    def setup_player(self, player: Player) -> None: ...


# ── Engine ───────────────────────────────────────────────────────

class Engine:
    """Owns the shared registries, the network servers and the agents."""

    def __init__(self, config_path: str | Path) -> None:
        with open(config_path, encoding="utf-8") as f:
            self.config: dict[str, Any] = yaml.safe_load(f)

        self.game_name: str = self.config["game"]
        self.data_dir = BASE_DIR / "data" / self.game_name

        self.commands = CommandRegistry()
        self.missions = MissionRegistry()
        self.world = WorldRegistry()

        db_cfg = self.config.get("database", {}) or {}
        self.db: Database | None = Database(db_cfg) if db_cfg.get("enabled", False) else None
        self.snapshots: Any = self.db if self.db is not None else MemorySnapshotStore()

        self.sessions: dict[int, Session] = {}   # conn_id → Session
        self.players: dict[str, Session] = {}    # lowercase name → Session

        self._telnet: TelnetServer | None = None
        self._running = False
        self._started_at = time.monotonic()
        self._last_save = 0.0
        self._plugin: Any = None

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started_at

    # ── Content ──────────────────────────────────────────────────

    def load_content(self) -> None:
        """Load world, missions and the game plugin. Raises on malformed content."""
        self.world.load_yaml(self.data_dir / "world.yaml")
        self.missions.load_yaml(self.data_dir / "missions.yaml", parse_match)

        first = self.config.get("missions", {}).get("first_mission")
        if first and first not in self.missions:
            log.warning("first_mission %s is not a known mission", first)

        mod = importlib.import_module(f"games.{self.game_name}.game")
        self._plugin = mod.create_plugin()
        self._plugin.load_content(self, self.data_dir)
        self._plugin.register_commands(self)
        log.info("Content loaded: %d hosts, %d missions, %d commands",
                 len(self.world.hosts), len(self.missions), len(self.commands))

    def register_command(self, command: Command) -> None:
        self.commands.register(command)

    # ── Agents ───────────────────────────────────────────────────

    async def create_player(self, name: str) -> Player:
        """Build an agent with its own services; restore or start progress."""
        player = Player(
            name,
            commands=self.commands,
            missions=self.missions,
            world=self.world,
            config=self.config,
            fs_specs=self._plugin.fs_specs if self._plugin else None,
        )
        if self._plugin is not None:
            self._plugin.setup_player(player)
        player.snapshots = self.snapshots

        data = await self.snapshots.load_snapshot(name)
        if data:
            player.import_snapshot(data)
            if player.missions.current_mission_id is None:
                nxt = player.missions.next_mission()
                if nxt is not None:
                    await player.missions.start_mission(nxt.id)
        else:
            first = self.config.get("missions", {}).get("first_mission")
            if first is None:
                nxt = player.missions.next_mission()
                first = nxt.id if nxt else None
            if first is not None:
                await player.missions.start_mission(first)
        return player

    async def process_command(self, session: Session, text: str) -> CommandResult:
        """Run one line through the agent's dispatcher and print the result."""
        result = await session.player.execute(text)
        lines = result.lines
        if not lines and not result.success and result.error:
            lines = [result.error]
        for line in lines:
            if result.success:
                await session.send_line(line)
            else:
                await session.send_line(f"{{red}}{line}{{reset}}")
        if result.educational:
            await session.send_line(f"{{dim}}{result.educational}{{reset}}")
        return result

    # ── Boot sequence ────────────────────────────────────────────

    async def boot(self) -> None:
        log.info("=== NeonCloud Engine booting: %s ===", self.config.get("name", self.game_name))

        if self.db is not None:
            await self.db.connect()
            await self.db.ensure_schema()
        else:
            log.info("Database disabled, snapshots kept in memory")

        self.load_content()

        net_cfg = self.config.get("network", {})
        self._telnet = TelnetServer(
            host=net_cfg.get("telnet_host", "0.0.0.0"),
            port=net_cfg.get("telnet_port", 4000),
            on_connect=self._on_new_connection,
        )
        await self._telnet.start()

        api_cfg = self.config.get("api", {})
        if api_cfg.get("enabled", False):
            from core.api import start_api
            await start_api(self, api_cfg.get("host", "0.0.0.0"), api_cfg.get("port", 8080))

        self._running = True
        self._last_save = time.monotonic()
        log.info("=== Boot complete ===")

    async def shutdown(self) -> None:
        log.info("Shutting down...")
        self._running = False

        for session in list(self.sessions.values()):
            await session.send_line("\r\n{red}Server is shutting down. Progress saved.{reset}")
            try:
                await session.save()
            except Exception:
                log.exception("Saving %s on shutdown failed", session.name)
            session.close()

        if self._telnet:
            await self._telnet.stop()

        if self.config.get("api", {}).get("enabled", False):
            from core.api import stop_api
            await stop_api()

        if self.db is not None:
            await self.db.close()
        log.info("Shutdown complete")

    # ── Main loop ────────────────────────────────────────────────

    async def run_loop(self) -> None:
        """Housekeeping loop; timed actions run on each agent's queue."""
        save_interval = self.config.get("engine", {}).get("save_interval", 300)
        while self._running:
            await asyncio.sleep(1.0)
            now = time.monotonic()
            if now - self._last_save >= save_interval:
                await self._auto_save()
                self._last_save = now

    async def _auto_save(self) -> None:
        count = 0
        for session in list(self.sessions.values()):
            if session.player is None:
                continue
            try:
                await session.save()
                count += 1
            except Exception:
                log.exception("Autosave failed for %s", session.name)
        if count:
            log.info("Auto-saved %d agents", count)

    # ── Network callbacks ────────────────────────────────────────

    async def _on_new_connection(self, conn: TelnetConnection) -> None:
        session = Session(conn, self)
        await session.run()

    # ── Entry point ──────────────────────────────────────────────

    async def run(self) -> None:
        await self.boot()
        try:
            await self.run_loop()
        except asyncio.CancelledError:
            pass
        finally:
            await self.shutdown()


# ── Main ─────────────────────────────────────────────────────────

def main() -> None:
    game = os.environ.get("GAME", "neoncloud")
    config_path = BASE_DIR / "config" / f"{game}.yaml"

    engine = Engine(config_path)
    level = engine.config.get("logging", {}).get("level", "INFO")
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO),
                        format=LOG_FORMAT)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _signal_handler() -> None:
        engine._running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    try:
        loop.run_until_complete(engine.run())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
