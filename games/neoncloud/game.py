"""NeonCloud Game Plugin — terminal hacking missions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from games.neoncloud.mail import Email, attach_mailbox, load_emails
from games.neoncloud.store import StoreItem, load_catalog

if TYPE_CHECKING:
    from core.engine import Engine
    from core.player import Player

log = logging.getLogger(__name__)


class NeonCloudPlugin:
    """NeonCloud game plugin."""

    name = "neoncloud"

    def __init__(self) -> None:
        self.emails: dict[str, Email] = {}
        self.catalog: dict[str, StoreItem] = {}
        self.fs_specs: dict[str, Any] = {}
        self.banner_text = ""

    def load_content(self, engine: Engine, data_dir: Path) -> None:
        self.emails = load_emails(data_dir / "emails.yaml")
        self.catalog = load_catalog(data_dir / "store.yaml")
        with open(data_dir / "files.yaml", encoding="utf-8") as f:
            self.fs_specs = yaml.safe_load(f) or {}
        banner_file = data_dir / "banner.txt"
        if banner_file.exists():
            self.banner_text = banner_file.read_text(encoding="utf-8")

    def register_commands(self, engine: Engine) -> None:
        from games.neoncloud.commands import files, info, mail, network, tools
        for mod in (info, files, mail, network, tools):
            mod.register(engine)

    def setup_player(self, player: Player) -> None:
        player.game = self
        attach_mailbox(player, self.emails)

    def welcome_banner(self) -> str:
        if self.banner_text:
            return "\r\n" + self.banner_text
        return (
            "\r\n{cyan}━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━{reset}\r\n"
            "   {bold}{bright_magenta}NeonCloud Terminal{reset}\r\n"
            "   Special Cyberoperations Group\r\n"
            "{cyan}━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━{reset}\r\n\r\n"
        )

    def playing_prompt(self, session: Any) -> str:
        p = session.player
        cwd = p.cwd
        home = p.fs.home
        if cwd == home:
            cwd = "~"
        elif cwd.startswith(home + "/"):
            cwd = "~" + cwd[len(home):]
        user = p.username if p.current_server is None else p.known_credentials.get(
            p.current_server, "admin")
        host = p.current_server or p.hostname
        vpn = "{magenta}[vpn]{reset} " if p.vpn_connected else ""
        busy = ""
        if p.queue.current is not None:
            busy = f"{{yellow}}[{p.queue.current.label} {int(p.queue.current.progress * 100)}%]{{reset}} "
        return f"\n{vpn}{busy}{{green}}{user}@{host}{{reset}}:{{blue}}{cwd}{{reset}}$ "


def create_plugin() -> NeonCloudPlugin:
    return NeonCloudPlugin()
