"""Mail command — inbox listing and reading."""

from __future__ import annotations

import posixpath
from typing import Any

from core.commands import Command, CommandResult, fail, ok
from core.events import EMAIL_READ


def register(engine: Any) -> None:
    engine.register_command(Command(
        "mail", do_mail, aliases=("email", "inbox"),
        help="Read your email", usage="mail [read <n|id>]",
    ))


def _save_attachments(player: Any, email: Any) -> list[str]:
    fs = player.filesystem(player.local_host)
    downloads = posixpath.join(fs.home, "Downloads")
    saved = []
    for att in email.attachments:
        path = posixpath.join(downloads, att.filename)
        if fs.is_file(path):
            continue
        fs.write(path, att.content, encrypted=att.encrypted,
                 unlocks=att.unlocks, cipher=att.cipher)
        saved.append(path)
    return saved


async def do_mail(player: Any, args: list[str]) -> CommandResult:
    mailbox = player.mailbox
    if mailbox is None:
        return fail("Mail is not available.")

    if not args or args[0].lower() in ("list", "ls"):
        emails = mailbox.emails
        if not emails:
            return ok("Your inbox is empty.")
        lines = [f"{{bold}}Inbox{{reset}} ({mailbox.unread_count} unread)", ""]
        for idx, email in enumerate(emails, 1):
            flag = " " if email.id in mailbox.read else "{yellow}*{reset}"
            lines.append(f"  {flag} {idx:>2}. {email.sender:<32} {email.subject}")
        lines.append("")
        lines.append("Type 'mail read <n>' to read a message.")
        return ok(lines)

    if args[0].lower() in ("read", "open"):
        if len(args) < 2:
            return fail("Usage: mail read <n|id>")
        ref = args[1]
    else:
        ref = args[0]

    email = mailbox.find(ref)
    if email is None:
        return fail(f"mail: no message '{ref}'")

    mailbox.mark_read(email.id)
    saved = _save_attachments(player, email)
    await player.bus.publish(EMAIL_READ, email_id=email.id, mission_id=email.mission_id)

    lines = [
        f"{{bold}}From:{{reset}}    {email.sender}",
        f"{{bold}}To:{{reset}}      {email.to}",
        f"{{bold}}Subject:{{reset}} {email.subject}",
        "",
        email.body.rstrip(),
    ]
    if email.attachments:
        lines.append("")
        lines.append("Attachments:")
        for att in email.attachments:
            tag = " (encrypted)" if att.encrypted else ""
            lines.append(f"  {att.filename}{tag}")
    if saved:
        lines.append("")
        lines.append("{green}Saved to ~/Downloads:{reset} "
                     + ", ".join(posixpath.basename(p) for p in saved))
    return ok(lines)
