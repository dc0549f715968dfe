"""Network commands — connect, disconnect, ping, traceroute, nslookup, scan."""

from __future__ import annotations

import logging
from typing import Any

from core.action_queue import QueuedAction
from core.commands import Command, CommandResult, fail, ok
from core.events import SERVER_CONNECTED, SERVER_DISCONNECTED, TOOL_USED
from games.neoncloud.store import owns_premium

log = logging.getLogger(__name__)

PING_COUNT = 4


def register(engine: Any) -> None:
    engine.register_command(Command(
        "connect", do_connect, aliases=("ssh", "remote"), requires_unlock=True,
        validate=_need_arg("connect [user@]<host> [password]"),
        help="Open a remote session", usage="connect [user@]<host> [password]",
    ))
    engine.register_command(Command(
        "disconnect", do_disconnect, aliases=("dc", "exit-server"),
        requires_unlock=True, help="Close the remote session", usage="disconnect",
    ))
    engine.register_command(Command(
        "ping", do_ping, requires_unlock=True, validate=_need_arg("ping <host>"),
        help="Test reachability of a host", usage="ping <host>",
    ))
    engine.register_command(Command(
        "traceroute", do_traceroute, aliases=("tracert",), requires_unlock=True,
        validate=_need_arg("traceroute <host>"),
        help="Show the network path to a host", usage="traceroute <host>",
    ))
    engine.register_command(Command(
        "nslookup", do_nslookup, aliases=("dig",), requires_unlock=True,
        validate=_need_arg("nslookup <name> [type]"),
        help="Query DNS records", usage="nslookup <name> [A|AAAA|MX|NS|TXT]",
    ))
    engine.register_command(Command(
        "scan", do_scan, aliases=("nmap",), requires_unlock=True,
        validate=_need_arg("scan <cidr|host>"),
        help="Discover hosts on a network", usage="scan <cidr|host>",
    ))


def _need_arg(usage: str):
    def validate(args: list[str]) -> str | None:
        if not args:
            return f"Usage: {usage}"
        return None
    return validate


def _hops(player: Any, host: Any) -> int:
    path = player.world.find_path(player.local_host, host.id)
    return len(path) - 1 if path else 8


def _reachable(player: Any, host: Any) -> bool:
    return host.online and (player.vpn_connected or not host.requires_vpn)


# ── Sessions ─────────────────────────────────────────────────────

async def do_connect(player: Any, args: list[str]) -> CommandResult:
    target = args[0]
    user = None
    if "@" in target:
        user, target = target.split("@", 1)
    password = args[1] if len(args) > 1 else None

    if player.current_server is not None:
        return fail(f"Already connected to {player.current_server}. Disconnect first.")
    host = player.world.resolve_host(target)
    if host is None:
        return fail(f"connect: could not resolve hostname {target}")
    if host.id == player.local_host:
        return fail("connect: you are already on your local machine")
    if host.requires_vpn and not player.vpn_connected:
        return fail(
            f"connect: {host.display_name} is on a private network. Connect to a VPN first.",
        )
    if not host.online or not host.ssh_enabled:
        return fail(f"connect: connection to {host.display_name} port 22 refused")

    creds = host.credentials
    username = user or (creds.username if creds else player.username)
    if creds is not None:
        if user is not None and user != creds.username:
            return fail(f"{user}@{host.display_name}: Permission denied")
        known = host.id in player.known_credentials
        if creds.requires_cracking and not known and password != creds.password:
            return fail(
                f"{username}@{host.display_name}: Permission denied. "
                "You need valid credentials for this server.",
            )
        if password is not None and password != creds.password:
            return fail(f"{username}@{host.display_name}: Permission denied")

    async def finish() -> None:
        player.current_server = host.id
        player.known_credentials.setdefault(host.id, username)
        player.cwds[host.id] = player.filesystem(host.id).home
        log.info("%s connected to %s as %s", player.name, host.id, username)
        await player.bus.publish(
            SERVER_CONNECTED, server_id=host.id, username=username, ip=host.ip_address,
        )
        await player.notify(
            f"{{green}}Connected to {host.display_name} ({host.ip_address}) as {username}.{{reset}}"
        )

    duration = player.tool_duration("connect")
    player.queue.enqueue(QueuedAction(duration, finish, label=f"connect {host.id}"))
    return ok(f"Connecting to {host.display_name} ({host.ip_address})...")


async def do_disconnect(player: Any, args: list[str]) -> CommandResult:
    server_id = player.current_server
    if server_id is None:
        return fail("Not connected to any server.")
    player.current_server = None
    log.info("%s disconnected from %s", player.name, server_id)
    await player.bus.publish(SERVER_DISCONNECTED, server_id=server_id)
    return ok(f"Connection to {server_id} closed.")


# ── Diagnostics ──────────────────────────────────────────────────

async def do_ping(player: Any, args: list[str]) -> CommandResult:
    target = args[0]
    host = player.world.resolve_host(target)
    if host is None:
        return fail(f"ping: {target}: Name or service not known")

    lines = [f"PING {host.display_name} ({host.ip_address}): 56 data bytes"]
    if not _reachable(player, host):
        for seq in range(PING_COUNT):
            lines.append(f"Request timeout for icmp_seq {seq}")
        lines.append("")
        lines.append(f"--- {host.display_name} ping statistics ---")
        lines.append(f"{PING_COUNT} packets transmitted, 0 packets received, 100.0% packet loss")
        return fail(lines)

    hops = _hops(player, host)
    base = 0.04 if hops == 0 else 4.0 + hops * 7.5
    times = [base + seq * (0.01 if hops == 0 else 0.6) for seq in range(PING_COUNT)]
    for seq, ms in enumerate(times):
        lines.append(f"64 bytes from {host.ip_address}: icmp_seq={seq} ttl={64 - hops} time={ms:.3f} ms")
    lines.append("")
    lines.append(f"--- {host.display_name} ping statistics ---")
    lines.append(f"{PING_COUNT} packets transmitted, {PING_COUNT} packets received, 0.0% packet loss")
    lines.append(f"round-trip min/avg/max = {min(times):.3f}/"
                 f"{sum(times) / len(times):.3f}/{max(times):.3f} ms")
    return ok(lines, educational="ping sends ICMP echo requests and measures the round trip.")


async def do_traceroute(player: Any, args: list[str]) -> CommandResult:
    target = args[0]
    host = player.world.resolve_host(target)
    if host is None:
        return fail(f"traceroute: unknown host {target}")
    path = player.world.find_path(player.local_host, host.id)
    if path is None:
        return fail(f"traceroute: no route to {host.display_name}")

    lines = [f"traceroute to {host.display_name} ({host.ip_address}), 30 hops max"]
    hops = path[1:] or path
    for n, hop in enumerate(hops, 1):
        if hop.requires_vpn and not player.vpn_connected:
            lines.append(f"{n:>2}  * * *")
            continue
        ms = 0.05 if hop.id == player.local_host else 4.0 + n * 7.5
        lines.append(f"{n:>2}  {hop.display_name} ({hop.ip_address})  {ms:.3f} ms")
    return ok(lines, educational="Each line is a router your packets pass through.")


async def do_nslookup(player: Any, args: list[str]) -> CommandResult:
    name = args[0]
    record_type = args[1].upper() if len(args) > 1 else None
    lines = ["Server:    8.8.8.8", "Address:   8.8.8.8#53", ""]

    by_ip = player.world.find_host_by_ip(name)
    if by_ip is not None and record_type is None:
        lines.append(f"{name}\tname = {by_ip.display_name}")
        return ok(lines)

    records = player.world.dns_lookup(name, record_type)
    if not records or not any(records.values()):
        kind = f" ({record_type})" if record_type else ""
        lines.append(f"** server can't find {name}{kind}: NXDOMAIN")
        return fail(lines)

    lines.append("Non-authoritative answer:")
    for rtype, values in records.items():
        for value in values:
            if rtype in ("A", "AAAA"):
                lines.append(f"Name:    {name}")
                lines.append(f"Address: {value}")
            elif rtype == "MX":
                lines.append(f"{name}\tmail exchanger = {value}")
            elif rtype == "NS":
                lines.append(f"{name}\tnameserver = {value}")
            else:
                lines.append(f"{name}\t{rtype.lower()} = \"{value}\"")
    return ok(lines, educational="DNS maps names to addresses; MX records name mail servers.")


async def do_scan(player: Any, args: list[str]) -> CommandResult:
    target = args[0]
    if "/" in target:
        try:
            hosts = player.world.hosts_in_range(target)
        except ValueError:
            return fail(f"scan: invalid network range '{target}'")
    else:
        host = player.world.resolve_host(target)
        if host is None:
            return fail(f"scan: unknown host {target}")
        hosts = [host]

    catalog = player.game.catalog if player.game is not None else {}
    premium = owns_premium(player, catalog, "network-scanner")
    server_id = player.active_host_id

    async def finish() -> None:
        found = [h for h in hosts if h.online and h.id != player.local_host]
        player.discovered_hosts.update(h.id for h in found)
        lines = [f"{{cyan}}Scan of {target} complete:{{reset}} {len(found)} host(s) up"]
        for h in found:
            ports = "22/ssh" if h.ssh_enabled else "filtered"
            detail = f"  {h.role}, {ports}" if premium else ""
            lines.append(f"  {h.ip_address:<16} {h.display_name}{detail}")
        await player.bus.publish(
            TOOL_USED, tool_id="network-scanner", target=target,
            server_id=server_id, premium=premium,
        )
        await player.notify("\n".join(lines))

    duration = player.tool_duration("network-scanner", premium)
    player.queue.enqueue(QueuedAction(duration, finish, label=f"scan {target}"))
    return ok(f"Scanning {target}...")
