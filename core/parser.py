"""Command line parser — quote-aware tokenizer."""

from __future__ import annotations

from dataclasses import dataclass, field

_QUOTES = ("'", '"')


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    command: str
    args: list[str] = field(default_factory=list)
    raw: str = ""

    @property
    def arg_str(self) -> str:
        return " ".join(self.args)


def tokenize(text: str) -> list[str]:
    """Split on whitespace outside quotes; quotes are stripped."""
    parts: list[str] = []
    current: list[str] = []
    quote = ""

    for ch in text:
        if quote:
            if ch == quote:
                quote = ""
            else:
                current.append(ch)
            continue
        if ch in _QUOTES:
            quote = ch
            continue
        if ch.isspace():
            if current:
                parts.append("".join(current))
                current.clear()
            continue
        current.append(ch)

    if current:
        parts.append("".join(current))
    return parts


def parse_command(text: str) -> ParsedCommand:
    raw = text.strip()
    if not raw:
        return ParsedCommand("", [], "")
    parts = tokenize(raw)
    if not parts:
        return ParsedCommand("", [], raw)
    return ParsedCommand(parts[0].lower(), parts[1:], raw)
