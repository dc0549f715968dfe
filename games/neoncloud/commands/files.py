"""File commands — ls, cd, pwd, cat."""

from __future__ import annotations

import base64
import textwrap
from typing import Any

from core.commands import Command, CommandResult, fail, ok
from core.events import FILE_READ


def register(engine: Any) -> None:
    engine.register_command(Command(
        "ls", do_ls, aliases=("dir",),
        help="List directory contents", usage="ls [-a] [-l] [path]",
    ))
    engine.register_command(Command(
        "cd", do_cd, help="Change directory", usage="cd [path]",
    ))
    engine.register_command(Command(
        "pwd", do_pwd, help="Print working directory", usage="pwd",
    ))
    engine.register_command(Command(
        "cat", do_cat, aliases=("nano", "type"), validate=_need_path,
        help="Print a file", usage="cat <file>",
    ))


def _need_path(args: list[str]) -> str | None:
    if not args:
        return "Usage: cat <file>"
    return None


def scramble(text: str) -> str:
    """Printable stand-in for an encrypted file body."""
    blob = base64.b64encode(text[::-1].encode("utf-8")).decode("ascii")
    return "\n".join(textwrap.wrap(blob, 48))


async def do_ls(player: Any, args: list[str]) -> CommandResult:
    flags = "".join(a[1:] for a in args if a.startswith("-"))
    targets = [a for a in args if not a.startswith("-")]
    fs = player.fs
    path = fs.normalize(targets[0], player.cwd) if targets else player.cwd

    if fs.is_file(path):
        return ok(path.rsplit("/", 1)[-1])
    if not fs.is_dir(path):
        return fail(f"ls: cannot access '{targets[0]}': No such file or directory")

    dirs, files = fs.list_dir(path, show_hidden="a" in flags)
    if not dirs and not files:
        return ok("")
    if "l" in flags:
        lines = [f"drwxr-xr-x  {'-':>6}  {{blue}}{d}/{{reset}}" for d in dirs]
        for name in files:
            f = fs.read(f"{path.rstrip('/')}/{name}")
            mode = "-rw-------" if f.encrypted else "-rw-r--r--"
            lines.append(f"{mode}  {f.size:>6}  {name}")
        return ok(lines)
    entries = [f"{{blue}}{d}/{{reset}}" for d in dirs] + files
    return ok("  ".join(entries))


async def do_cd(player: Any, args: list[str]) -> CommandResult:
    fs = player.fs
    target = args[0] if args else "~"
    path = fs.normalize(target, player.cwd)
    if fs.is_file(path):
        return fail(f"cd: {target}: Not a directory")
    if not fs.is_dir(path):
        return fail(f"cd: {target}: No such file or directory")
    player.cwd = path
    return ok()


async def do_pwd(player: Any, args: list[str]) -> CommandResult:
    return ok(player.cwd)


async def do_cat(player: Any, args: list[str]) -> CommandResult:
    fs = player.fs
    path = fs.normalize(args[0], player.cwd)
    if fs.is_dir(path):
        return fail(f"cat: {args[0]}: Is a directory")
    f = fs.read(path)
    if f is None:
        return fail(f"cat: {args[0]}: No such file or directory")

    await player.bus.publish(
        FILE_READ, file_path=path, filename=f.name,
        server_id=player.active_host_id, encrypted=f.encrypted,
    )
    if f.encrypted:
        return ok(
            ["{red}[encrypted]{reset}", scramble(f.content)],
            educational="Encrypted files must be cracked before they can be read. Try 'crack'.",
        )
    return ok(f.content.rstrip("\n"))
