"""Tool commands — vpn, crack, shred and the job queue."""

from __future__ import annotations

import logging
import posixpath
from typing import Any

from core.action_queue import QueuedAction
from core.commands import Command, CommandResult, fail, ok
from core.events import SERVER_DISCONNECTED, TOOL_USED
from games.neoncloud.store import owns_premium

log = logging.getLogger(__name__)


def register(engine: Any) -> None:
    engine.register_command(Command(
        "vpn", do_vpn, requires_unlock=True,
        help="Manage the VPN tunnel", usage="vpn [connect|disconnect|status]",
    ))
    engine.register_command(Command(
        "crack", do_crack, aliases=("crack-password", "brute-force", "decrypt"),
        requires_unlock=True, validate=_need_file("crack"),
        help="Decrypt an encrypted file", usage="crack <file>",
    ))
    engine.register_command(Command(
        "shred", do_shred, requires_unlock=True, validate=_need_file("shred"),
        help="Securely delete a file", usage="shred <file>",
    ))
    engine.register_command(Command(
        "jobs", do_jobs, aliases=("queue",),
        help="Show running and queued actions", usage="jobs",
    ))
    engine.register_command(Command(
        "kill", do_kill, aliases=("cancel",),
        help="Cancel a running or queued action", usage="kill <action-id|all>",
    ))


def _need_file(name: str):
    def validate(args: list[str]) -> str | None:
        if not args:
            return f"Usage: {name} <file>"
        return None
    return validate


def _catalog(player: Any) -> dict:
    return player.game.catalog if player.game is not None else {}


# ── VPN ──────────────────────────────────────────────────────────

async def do_vpn(player: Any, args: list[str]) -> CommandResult:
    sub = args[0].lower() if args else "connect"

    if sub == "status":
        if player.vpn_connected:
            return ok(f"VPN: {{green}}connected{{reset}} ({player.vpn_type})")
        return ok("VPN: {red}disconnected{reset}")

    if sub == "disconnect":
        if not player.vpn_connected:
            return fail("VPN is not connected.")
        player.vpn_connected = False
        player.vpn_type = None
        lines = ["VPN tunnel closed."]
        host = player.active_host
        if player.current_server is not None and host is not None and host.requires_vpn:
            server_id = player.current_server
            player.current_server = None
            await player.bus.publish(SERVER_DISCONNECTED, server_id=server_id)
            lines.append(f"Connection to {server_id} dropped.")
        return ok(lines)

    if sub != "connect":
        return fail("Usage: vpn [connect|disconnect|status]")

    premium = owns_premium(player, _catalog(player), "vpn")
    vpn_type = "premium" if premium else "basic"
    server_id = player.active_host_id

    async def finish() -> None:
        player.vpn_connected = True
        player.vpn_type = vpn_type
        log.info("%s VPN up (%s)", player.name, vpn_type)
        await player.bus.publish(TOOL_USED, tool_id="vpn", target=vpn_type,
                                 server_id=server_id, premium=premium)
        await player.notify(f"{{green}}VPN connected ({vpn_type}).{{reset}}")

    duration = player.tool_duration("vpn", premium)
    player.queue.enqueue(QueuedAction(duration, finish, label="vpn"))
    return ok(f"Establishing {vpn_type} VPN tunnel...",
              educational="A VPN tunnels your traffic into a private network.")


# ── Password cracker ─────────────────────────────────────────────

def _decrypted_path(path: str) -> str:
    root, ext = posixpath.splitext(path)
    if ext == ".enc":
        return root + ".txt"
    return path + ".decrypted"


async def do_crack(player: Any, args: list[str]) -> CommandResult:
    fs = player.fs
    path = fs.normalize(args[0], player.cwd)
    f = fs.read(path)
    if f is None:
        return fail(f"crack: {args[0]}: No such file or directory")
    if not f.encrypted:
        return fail(f"crack: {args[0]}: file is not encrypted")

    premium = owns_premium(player, _catalog(player), "password-cracker")
    if f.cipher == "advanced" and not premium:
        return fail(
            f"crack: {f.name} uses an advanced cipher. "
            "You need the Advanced Password Cracker.",
        )

    server_id = player.active_host_id
    out_path = _decrypted_path(path)

    async def finish() -> None:
        fs.write(out_path, f.content)
        lines = [f"{{green}}Decrypted {f.name}{{reset}} -> {out_path}", f.content.rstrip()]
        if f.unlocks:
            host = player.world.get_host(f.unlocks)
            if host is not None and host.credentials is not None:
                player.known_credentials[host.id] = host.credentials.username
                lines.append(f"Credentials for {host.display_name} recorded.")
        await player.bus.publish(TOOL_USED, tool_id="password-cracker", target=path,
                                 server_id=server_id, premium=premium)
        await player.notify("\n".join(lines))

    duration = player.tool_duration("password-cracker", premium)
    player.queue.enqueue(QueuedAction(duration, finish, label=f"crack {f.name}"))
    return ok(f"Cracking {f.name} ({duration * player.queue.time_scale:.0f}s)...",
              educational="Brute force tries every key; stronger ciphers take longer.")


# ── Log shredder ─────────────────────────────────────────────────

async def do_shred(player: Any, args: list[str]) -> CommandResult:
    fs = player.fs
    path = fs.normalize(args[0], player.cwd)
    if fs.is_dir(path):
        return fail(f"shred: {args[0]}: Is a directory")
    if not fs.is_file(path):
        return fail(f"shred: {args[0]}: No such file or directory")

    premium = owns_premium(player, _catalog(player), "log-shredder")
    server_id = player.active_host_id

    async def finish() -> None:
        fs.remove(path)
        await player.bus.publish(TOOL_USED, tool_id="log-shredder", target=path,
                                 server_id=server_id, premium=premium)
        await player.notify(f"{{green}}{path} shredded on {server_id}.{{reset}}")

    duration = player.tool_duration("log-shredder", premium)
    player.queue.enqueue(QueuedAction(duration, finish, label=f"shred {posixpath.basename(path)}"))
    return ok(f"Shredding {path}...")


# ── Job queue ────────────────────────────────────────────────────

async def do_jobs(player: Any, args: list[str]) -> CommandResult:
    queue = player.queue
    if not queue.is_busy():
        return ok("No running actions.")
    current = queue.current
    lines = [f"  {current.id:<10} {current.label:<28} running "
             f"{int(current.progress * 100)}% ({queue.remaining():.1f}s left)"]
    for action in queue.pending:
        lines.append(f"  {action.id:<10} {action.label:<28} queued")
    return ok(lines)


async def do_kill(player: Any, args: list[str]) -> CommandResult:
    queue = player.queue
    if not args:
        return fail("Usage: kill <action-id|all>")
    if args[0].lower() == "all":
        count = len(queue)
        await queue.clear()
        return ok(f"Cancelled {count} action(s).")
    if await queue.cancel(args[0]):
        return ok(f"Cancelled {args[0]}.")
    return fail(f"kill: no such action: {args[0]}")
