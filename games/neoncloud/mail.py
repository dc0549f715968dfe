"""Mail — email templates, per-player inbox and mission delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from core.events import MISSION_STARTED, GameEvent

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Attachment:
    filename: str
    content: str
    encrypted: bool = False
    unlocks: str | None = None
    cipher: str = "basic"


@dataclass(frozen=True, slots=True)
class Email:
    id: str
    sender: str
    subject: str
    body: str
    to: str = ""
    mission_id: str | None = None
    attachments: tuple[Attachment, ...] = ()


def load_emails(path: str | Path) -> dict[str, Email]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    emails: dict[str, Email] = {}
    for d in data.get("emails", []):
        attachments = tuple(
            Attachment(
                filename=a["filename"],
                content=a.get("content", ""),
                encrypted=a.get("encrypted", False),
                unlocks=a.get("unlocks"),
                cipher=a.get("cipher", "basic"),
            )
            for a in d.get("attachments", [])
        )
        emails[d["id"]] = Email(
            id=d["id"], sender=d.get("from", ""), subject=d.get("subject", ""),
            body=d.get("body", ""), to=d.get("to", ""),
            mission_id=d.get("mission_id"), attachments=attachments,
        )
    log.info("Emails loaded: %d", len(emails))
    return emails


@dataclass(slots=True)
class Mailbox:
    """One player's inbox. Ordered by delivery; index 1 is the oldest."""

    templates: dict[str, Email]
    delivered: list[str] = field(default_factory=list)
    read: set[str] = field(default_factory=set)

    def deliver(self, email_id: str) -> Email | None:
        email = self.templates.get(email_id)
        if email is None or email_id in self.delivered:
            return None
        self.delivered.append(email_id)
        return email

    def deliver_for_mission(self, mission_id: str) -> list[Email]:
        return [
            e for e in (self.deliver(em.id) for em in self.templates.values()
                        if em.mission_id == mission_id)
            if e is not None
        ]

    @property
    def emails(self) -> list[Email]:
        return [self.templates[i] for i in self.delivered if i in self.templates]

    @property
    def unread_count(self) -> int:
        return sum(1 for i in self.delivered if i not in self.read)

    def find(self, ref: str) -> Email | None:
        """Look up by 1-based index or email id."""
        emails = self.emails
        if ref.isdigit():
            idx = int(ref)
            if 1 <= idx <= len(emails):
                return emails[idx - 1]
            return None
        for e in emails:
            if e.id == ref:
                return e
        return None

    def mark_read(self, email_id: str) -> bool:
        """True on first read."""
        if email_id in self.read:
            return False
        self.read.add(email_id)
        return True

    def export_state(self) -> dict[str, Any]:
        return {"delivered": list(self.delivered), "read": sorted(self.read)}

    def import_state(self, data: dict[str, Any]) -> None:
        self.delivered = [i for i in data.get("delivered", []) if i in self.templates]
        self.read = set(data.get("read", []))


def attach_mailbox(player: Any, templates: dict[str, Email]) -> Mailbox:
    """Give player an inbox that receives mission emails on mission start."""
    mailbox = Mailbox(templates)
    player.mailbox = mailbox

    async def _on_mission_started(event: GameEvent) -> None:
        new = mailbox.deliver_for_mission(event["mission_id"])
        for email in new:
            await player.notify(f"{{yellow}}New mail from {email.sender}: {email.subject}{{reset}}")

    player.bus.subscribe(MISSION_STARTED, _on_mission_started)
    return mailbox
