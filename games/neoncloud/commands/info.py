"""Info commands — help, missions, hints, wallet, store, save/load."""

from __future__ import annotations

import logging
from typing import Any

from core.commands import Command, CommandResult, fail, ok
from core.missions import ACTIVE, COMPLETED, LOCKED
from core.wallet import CURRENCY
from games.neoncloud.store import PurchaseError, purchase

log = logging.getLogger(__name__)


_STATUS_MARK = {
    COMPLETED: "{green}[x]{reset}",
    ACTIVE: "{yellow}[>]{reset}",
    LOCKED: "{bright_black}[-]{reset}",
}


def register(engine: Any) -> None:
    engine.register_command(Command(
        "help", do_help, aliases=("?", "commands"),
        help="List available commands", usage="help [command]",
    ))
    engine.register_command(Command(
        "clear", do_clear, aliases=("cls",), help="Clear the screen", usage="clear",
    ))
    engine.register_command(Command(
        "echo", do_echo, help="Print text", usage="echo <text>",
    ))
    engine.register_command(Command(
        "whoami", do_whoami, help="Show the current user", usage="whoami",
    ))
    engine.register_command(Command(
        "missions", do_missions, help="List all missions", usage="missions",
    ))
    engine.register_command(Command(
        "mission", do_mission, aliases=("objective", "objectives"),
        help="Show or start a mission", usage="mission [start|restart <id>]",
    ))
    engine.register_command(Command(
        "hint", do_hint, aliases=("hints",),
        help="Reveal a hint for the current task", usage="hint [task-id]",
    ))
    engine.register_command(Command(
        "status", do_status, help="Show agent status", usage="status",
    ))
    engine.register_command(Command(
        "balance", do_balance, aliases=("wallet", "nc"),
        help="Show NeonCoin balance", usage="balance",
    ))
    engine.register_command(Command(
        "store", do_store, aliases=("shop",),
        help="Browse and buy software", usage="store [buy <item>]",
    ))
    engine.register_command(Command(
        "save", do_save, help="Save progress", usage="save",
    ))
    engine.register_command(Command(
        "load", do_load, help="Restore saved progress", usage="load",
    ))


async def do_help(player: Any, args: list[str]) -> CommandResult:
    registry = player.commands
    if args:
        cmd = registry.get(args[0])
        if cmd is None:
            return fail(f"help: no help for '{args[0]}'")
        lines = [f"{{bold}}{cmd.name}{{reset}} - {cmd.help}"]
        if cmd.usage:
            lines.append(f"Usage: {cmd.usage}")
        if cmd.aliases:
            lines.append("Aliases: " + ", ".join(cmd.aliases))
        if cmd.requires_unlock and cmd.name not in player.unlocked_commands:
            lines.append("{red}Locked.{reset} Complete missions or buy software to unlock.")
        return ok(lines)

    lines = ["{bold}Available commands{reset}", ""]
    locked = []
    for cmd in registry.visible():
        if cmd.requires_unlock and cmd.name not in player.unlocked_commands:
            locked.append(cmd.name)
            continue
        lines.append(f"  {{cyan}}{cmd.name:<12}{{reset}} {cmd.help}")
    if locked:
        lines.append("")
        lines.append("{bright_black}Locked: " + ", ".join(locked) + "{reset}")
    lines.append("")
    lines.append("Type 'help <command>' for details.")
    return ok(lines)


async def do_clear(player: Any, args: list[str]) -> CommandResult:
    return ok("{clear}")


async def do_echo(player: Any, args: list[str]) -> CommandResult:
    return ok(" ".join(args))


async def do_whoami(player: Any, args: list[str]) -> CommandResult:
    if player.current_server is not None:
        return ok(player.known_credentials.get(player.current_server, "admin"))
    return ok(player.username)


# ── Missions ─────────────────────────────────────────────────────

async def do_missions(player: Any, args: list[str]) -> CommandResult:
    sm = player.missions
    lines = ["{bold}Missions{reset}"]
    for category in sm.registry.categories():
        lines.append("")
        lines.append(f"{{cyan}}{category}{{reset}}")
        for mission in sm.registry.by_category(category):
            status = sm.status(mission.id)
            mark = _STATUS_MARK.get(status, "[ ]")
            done, total = sm.progress(mission.id)
            lines.append(
                f"  {mark} {mission.id:<14} {mission.title}  "
                f"({done}/{total}, {mission.reward} {CURRENCY})"
            )
    return ok(lines)


def _mission_detail(player: Any, mission: Any) -> list[str]:
    sm = player.missions
    lines = [
        f"{{bold}}{mission.title}{{reset}} ({mission.id})",
        f"Category: {mission.category}  Difficulty: {mission.difficulty or '-'}  "
        f"Reward: {mission.reward} {CURRENCY}",
    ]
    if mission.description:
        lines.append("")
        lines.append(mission.description.rstrip())
    lines.append("")
    for task in mission.tasks:
        mark = "{green}[x]{reset}" if sm.is_task_completed(mission.id, task.id) else "[ ]"
        lines.append(f"  {mark} {task.description}")
    return lines


async def do_mission(player: Any, args: list[str]) -> CommandResult:
    sm = player.missions
    if not args:
        mission = sm.current_mission
        if mission is None:
            return ok("No active mission. Type 'missions' to see what is available.")
        return ok(_mission_detail(player, mission))

    sub = args[0].lower()
    if sub in ("start", "restart"):
        if len(args) < 2:
            return fail(f"Usage: mission {sub} <id>")
        mission_id = args[1]
        if mission_id not in sm.registry:
            return fail(f"Unknown mission: {mission_id}")
        if sub == "restart":
            await sm.restart_mission(mission_id)
            return ok(f"Mission {mission_id} restarted.")
        if sm.is_completed(mission_id):
            return fail(f"Mission {mission_id} is already completed.")
        if not sm.is_unlocked(mission_id):
            mission = sm.registry.get(mission_id)
            return fail(f"Mission {mission_id} is locked. Complete first: "
                        + ", ".join(mission.prerequisites))
        await sm.start_mission(mission_id)
        return ok(_mission_detail(player, sm.registry.get(mission_id)))

    mission = sm.registry.get(args[0])
    if mission is None:
        return fail(f"Unknown mission: {args[0]}")
    return ok(_mission_detail(player, mission))


async def do_hint(player: Any, args: list[str]) -> CommandResult:
    sm = player.missions
    if sm.current_mission is None:
        return fail("No active mission.")
    result = await sm.use_hint(task_id=args[0] if args else None)
    if result is None:
        return fail("No hints available.")
    task, hint = result
    return ok(
        [f"{{yellow}}Hint{{reset}} ({task.description}):", f"  {hint}"],
        educational="Using hints forfeits the no-hints bonus for this mission.",
    )


# ── Status / wallet ──────────────────────────────────────────────

async def do_status(player: Any, args: list[str]) -> CommandResult:
    sm = player.missions
    lines = [
        f"Agent:      {player.name}",
        f"Host:       {player.active_host_id}",
        f"VPN:        {player.vpn_type + ' (connected)' if player.vpn_connected else 'disconnected'}",
        f"Balance:    {player.wallet.balance} {CURRENCY}",
        f"Completed:  {len(sm.completed_missions)}/{len(sm.registry)} missions",
    ]
    mission = sm.current_mission
    if mission is not None:
        done, total = sm.progress(mission.id)
        lines.append(f"Mission:    {mission.title} ({done}/{total})")
    action = player.queue.current
    if action is not None:
        lines.append(f"Running:    {action.label} {int(action.progress * 100)}% "
                     f"({player.queue.remaining():.1f}s left)")
    if player.inventory:
        lines.append("Software:   " + ", ".join(player.inventory))
    return ok(lines)


async def do_balance(player: Any, args: list[str]) -> CommandResult:
    wallet = player.wallet
    lines = [f"Balance: {{bold}}{wallet.balance} {CURRENCY}{{reset}}"]
    recent = wallet.recent(5)
    if recent:
        lines.append("")
        lines.append("Recent transactions:")
        for tx in reversed(recent):
            sign = "+" if tx.amount >= 0 else ""
            lines.append(f"  {sign}{tx.amount:>6}  {tx.reason}")
    return ok(lines)


# ── Store ────────────────────────────────────────────────────────

async def do_store(player: Any, args: list[str]) -> CommandResult:
    catalog = player.game.catalog if player.game is not None else {}
    if args and args[0].lower() in ("buy", "purchase"):
        if len(args) < 2:
            return fail("Usage: store buy <item>")
        try:
            item = await purchase(player, catalog, args[1])
        except PurchaseError as e:
            return fail(str(e))
        lines = [f"{{green}}Purchased {item.name}{{reset}} for {item.price} {CURRENCY}.",
                 f"Balance: {player.wallet.balance} {CURRENCY}"]
        if item.unlocks:
            lines.append("Commands available: " + ", ".join(item.unlocks))
        return ok(lines)

    lines = [f"{{bold}}NeonCloud Software Store{{reset}}  "
             f"(balance: {player.wallet.balance} {CURRENCY})", ""]
    for item in catalog.values():
        if player.has_item(item.id):
            tag = "{green}owned{reset}"
        elif any(not player.missions.is_completed(r) for r in item.requires):
            tag = "{bright_black}locked{reset}"
        else:
            tag = f"{item.price} {CURRENCY}"
        lines.append(f"  {{cyan}}{item.id:<26}{{reset}} {item.name:<26} {tag}")
        if item.description:
            lines.append(f"      {item.description}")
    lines.append("")
    lines.append("Type 'store buy <item>' to purchase.")
    return ok(lines)


# ── Persistence ──────────────────────────────────────────────────

async def do_save(player: Any, args: list[str]) -> CommandResult:
    if player.snapshots is None:
        return fail("Saving is not available.")
    await player.snapshots.save_snapshot(player.name, player.export_snapshot())
    return ok("Progress saved.")


async def do_load(player: Any, args: list[str]) -> CommandResult:
    if player.snapshots is None:
        return fail("Loading is not available.")
    data = await player.snapshots.load_snapshot(player.name)
    if data is None:
        return fail("No saved progress found.")
    await player.queue.clear()
    player.import_snapshot(data)
    log.info("%s restored a saved snapshot", player.name)
    return ok("Progress restored.")
