"""ANSI color code converter — {color_name} → ANSI escape sequences."""

from __future__ import annotations

import re

_FG = {
    "black": "30", "red": "31", "green": "32", "yellow": "33",
    "blue": "34", "magenta": "35", "cyan": "36", "white": "37",
    "bright_black": "90", "bright_red": "91", "bright_green": "92",
    "bright_yellow": "93", "bright_blue": "94", "bright_magenta": "95",
    "bright_cyan": "96", "bright_white": "97",
}

_FMT = {"bold": "1", "dim": "2", "underline": "4", "reverse": "7"}

_ESC = "\033["
_RESET = f"{_ESC}0m"
CLEAR_SCREEN = f"{_ESC}2J{_ESC}H"

_CODE_MAP: dict[str, str] = {"reset": _RESET, "normal": _RESET, "clear": CLEAR_SCREEN}
for name, code in {**_FG, **_FMT}.items():
    _CODE_MAP[name] = f"{_ESC}{code}m"

# Only known tags are tags; "{" in file contents passes through untouched.
_COLOR_RE = re.compile(r"\{(" + "|".join(sorted(_CODE_MAP, key=len, reverse=True)) + r")\}")
_ANSI_RE = re.compile(r"\033\[[0-9;]*[A-Za-z]")


def colorize(text: str) -> str:
    """Convert {color_name} tags to ANSI escape sequences."""
    return _COLOR_RE.sub(lambda m: _CODE_MAP[m.group(1)], text)


def strip_colors(text: str) -> str:
    """Remove all {color} tags from text."""
    return _COLOR_RE.sub("", text)


def strip_ansi(text: str) -> str:
    """Remove all ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)
