"""ANSI colors for host prefixes and summaries."""

from __future__ import annotations

import os
import zlib

RESET = "\033[0m"

# Host palette. Red is reserved for errors, green for success.
PALETTE = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[34m",  # Blue
    "\033[92m",  # Light Green
    "\033[93m",  # Light Yellow
    "\033[94m",  # Light Blue
    "\033[95m",  # Light Magenta
    "\033[96m",  # Light Cyan
]

RED = "\033[31m"
GREEN = "\033[32m"
BOLD = "\033[1m"


def enabled() -> bool:
    """Colors are on unless NO_COLOR is set."""
    return not os.environ.get("NO_COLOR")


def paint(text: str, code: str) -> str:
    if not enabled():
        return text
    return f"{code}{text}{RESET}"


def pick(text: str) -> str:
    """Return the palette entry for ``text``.

    The choice is a crc32 of the text, so the same host gets the same
    color on every run.
    """
    return PALETTE[zlib.crc32(text.encode("utf-8")) % len(PALETTE)]


def color(text: str) -> str:
    return paint(text, pick(text))


def color_err(text: str) -> str:
    return paint(text, RED)


def color_ok(text: str) -> str:
    return paint(text, GREEN)


def color_strong(text: str) -> str:
    return paint(text, BOLD)
