"""Session management — login state machine + playing state."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import bcrypt

from core.ansi import colorize
from core.net import TelnetConnection

if TYPE_CHECKING:
    from core.player import Player

log = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{1,15}$")
MIN_PASSWORD = 4


@runtime_checkable
class SessionState(Protocol):
    """Protocol for login flow states."""

    async def on_input(self, session: Session, text: str) -> SessionState | None:
        """Process input, return next state or None to stay."""
        ...

    def prompt(self) -> str:
        """Return the prompt to show."""
        ...


class Session:
    """A connected agent's terminal."""

    def __init__(self, conn: TelnetConnection, engine: Any) -> None:
        self.conn = conn
        self.engine = engine
        self.db = engine.db
        self.config: dict = engine.config
        self.state: SessionState | None = None
        self.player: Player | None = None
        self.agent_data: dict[str, Any] = {}
        self._closed = False
        self._busy = False
        self._notices: list[str] = []

    @property
    def name(self) -> str | None:
        return self.player.name if self.player else self.agent_data.get("name")

    async def send(self, text: str) -> None:
        await self.conn.send(colorize(text))

    async def send_line(self, text: str = "") -> None:
        await self.conn.send_line(colorize(text))

    async def notify(self, text: str) -> None:
        """Asynchronous output; held back while a command is running."""
        if self._busy:
            self._notices.append(text)
            return
        await self.send_line("\r\n" + text)
        await self.send(self._get_prompt())

    async def flush_notices(self) -> None:
        notices, self._notices = self._notices, []
        for text in notices:
            await self.send_line(text)

    async def run(self) -> None:
        """Main session loop — drives the state machine."""
        self.state = GetNameState()
        await self.send_line(self._welcome_banner())
        await self.send(self.state.prompt())

        timeout = self.config.get("engine", {}).get("idle_timeout", 1800)
        while not self._closed and not self.conn.closed:
            try:
                text = await asyncio.wait_for(self.conn.get_input(), timeout=timeout)
            except asyncio.TimeoutError:
                await self.send_line("\r\nIdle timeout. Connection closed.")
                break

            text = text.strip()
            if self.state is None:
                break
            try:
                next_state = await self.state.on_input(self, text)
            except Exception:
                log.exception("Input handling failed for %s", self.name or f"#{self.conn.id}")
                await self.send_line("{red}Internal error. The incident has been logged.{reset}")
                next_state = None
            if next_state is not None:
                self.state = next_state
            if self._closed:
                break
            await self.send(self._get_prompt())

        await self._disconnect()

    async def enter_game(self, name: str) -> None:
        """Transition from login to playing state."""
        self.agent_data["name"] = name
        player = await self.engine.create_player(name)
        player.send = self.notify
        self.player = player

        self.engine.sessions[self.conn.id] = self
        self.engine.players[name.lower()] = self
        self.state = PlayingState()
        log.info("Agent %s entered the game", name)

        await self.send_line(f"\r\nWelcome, agent {{bold}}{name}{{reset}}.")
        mission = player.missions.current_mission
        if mission is not None:
            await self.send_line(f"Current mission: {{yellow}}{mission.title}{{reset}}")
        if player.mailbox is not None and player.mailbox.unread_count:
            await self.send_line(
                f"You have {player.mailbox.unread_count} unread message(s). Type 'mail'."
            )
        await self.send_line("Type 'help' for a list of commands.")

    async def save(self) -> None:
        if self.player is None:
            return
        await self.engine.snapshots.save_snapshot(self.player.name, self.player.export_snapshot())

    def close(self) -> None:
        self._closed = True

    async def _disconnect(self) -> None:
        if self.player is not None:
            try:
                await self.save()
            except Exception:
                log.exception("Saving %s on disconnect failed", self.player.name)
            await self.player.close()
            self.engine.sessions.pop(self.conn.id, None)
            self.engine.players.pop(self.player.name.lower(), None)
            log.info("Agent %s disconnected", self.player.name)
        self._closed = True

    def _get_prompt(self) -> str:
        if isinstance(self.state, PlayingState) and self.player:
            plugin = getattr(self.engine, "_plugin", None)
            if plugin and hasattr(plugin, "playing_prompt"):
                return plugin.playing_prompt(self)
            return f"\n{self.player.name}$ "
        if self.state:
            return self.state.prompt()
        return ""

    def _welcome_banner(self) -> str:
        plugin = getattr(self.engine, "_plugin", None)
        if plugin and hasattr(plugin, "welcome_banner"):
            return plugin.welcome_banner()
        return "\r\n{bold}NeonCloud Terminal{reset}\r\n"


# ── Login states ─────────────────────────────────────────────────


class GetNameState:
    def prompt(self) -> str:
        return "Agent name: "

    async def on_input(self, session: Session, text: str) -> SessionState | None:
        name = text.strip()
        if not NAME_RE.match(name):
            await session.send_line(
                "Names are 2-16 characters: letters, digits, '-' or '_', starting with a letter."
            )
            return None
        if name.lower() in session.engine.players:
            await session.send_line("That agent is already logged in.")
            return None

        session.agent_data = {"name": name}
        if session.db is None:
            await session.enter_game(name)
            return session.state

        row = await session.db.fetch_agent(name)
        if row and row["password_hash"]:
            session.agent_data = dict(row)
            await session.send_line(f"\r\nWelcome back, {row['name']}.")
            await session.conn.set_echo(False)
            return GetPasswordState()
        await session.send_line(f"\r\nNew agent {name}. Choose a password.")
        await session.conn.set_echo(False)
        return NewPasswordState()


class GetPasswordState:
    def prompt(self) -> str:
        return "Password: "

    async def on_input(self, session: Session, text: str) -> SessionState | None:
        await session.conn.set_echo(True)
        stored_hash = session.agent_data.get("password_hash", "")
        if bcrypt.checkpw(text.encode("utf-8"), stored_hash.encode("utf-8")):
            await session.db.touch_login(session.agent_data["name"])
            await session.enter_game(session.agent_data["name"])
            return session.state
        log.info("Failed login for %s", session.agent_data.get("name"))
        await session.send_line("\r\nAccess denied.")
        return GetNameState()


class NewPasswordState:
    def prompt(self) -> str:
        return "New password: "

    async def on_input(self, session: Session, text: str) -> SessionState | None:
        if len(text) < MIN_PASSWORD:
            await session.send_line(f"Passwords need at least {MIN_PASSWORD} characters.")
            return None
        session.agent_data["_password"] = text
        return ConfirmPasswordState()


class ConfirmPasswordState:
    def prompt(self) -> str:
        return "Confirm password: "

    async def on_input(self, session: Session, text: str) -> SessionState | None:
        if text != session.agent_data.get("_password"):
            await session.send_line("Passwords do not match.")
            session.agent_data.pop("_password", None)
            return NewPasswordState()
        await session.conn.set_echo(True)
        pw_hash = bcrypt.hashpw(text.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
        session.agent_data.pop("_password", None)
        row = await session.db.create_agent(
            name=session.agent_data["name"], password_hash=pw_hash,
        )
        session.agent_data = dict(row)
        await session.enter_game(session.agent_data["name"])
        return session.state


# ── Playing state ────────────────────────────────────────────────


class PlayingState:
    def prompt(self) -> str:
        return "\r\n$ "

    async def on_input(self, session: Session, text: str) -> SessionState | None:
        if not text:
            return None
        if text.lower() in ("quit", "logout"):
            await session.send_line("Session terminated. Stay safe, agent.")
            session.close()
            return None
        session._busy = True
        try:
            await session.engine.process_command(session, text)
        finally:
            session._busy = False
        await session.flush_notices()
        return None
