"""Output noise filtering and prompt marker handling.

The Qwen Code CLI mixes startup banners and debug chatter into its output.
These helpers decide which lines are noise so that only conversational
content reaches the ACP client.
"""

from __future__ import annotations

import re

from .config import PermissionMode

# Matched against the start of a line
NOISE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^qwen version", re.IGNORECASE),
    re.compile(r"^loading\.\.\.", re.IGNORECASE),
    re.compile(r"^initializing\.\.\.", re.IGNORECASE),
    re.compile(r"^starting\.\.\.", re.IGNORECASE),
    re.compile(r"^\[.*\]\s*$"),  # bracketed tag on its own
    re.compile(r"^>\s*$"),  # empty prompt
    re.compile(r"^model:\s*\w+", re.IGNORECASE),
    re.compile(r"^using model:", re.IGNORECASE),
    re.compile(r"^connected to", re.IGNORECASE),
)

# Matched anywhere in a line
NOISE_MARKERS: tuple[str, ...] = (
    "[debug]",
    "flushing log events",
)

PERMISSION_MARKER_RE = re.compile(r"\[ACP:PERMISSION:\w+\]")

_PERMISSION_MARKERS: tuple[tuple[str, PermissionMode], ...] = (
    ("[ACP:PERMISSION:ACCEPT_EDITS]", PermissionMode.ACCEPT_EDITS),
    ("[ACP:PERMISSION:BYPASS]", PermissionMode.BYPASS_PERMISSIONS),
    ("[ACP:PERMISSION:DEFAULT]", PermissionMode.DEFAULT),
)


def is_noise_line(line: str) -> bool:
    """Return True if a line of process output is operational noise."""
    lowered = line.lower()
    if any(marker in lowered for marker in NOISE_MARKERS):
        return True
    return any(pattern.match(line) for pattern in NOISE_PATTERNS)


def clean_output(text: str) -> str:
    """Drop noise lines from a block of output, keeping line structure.

    Empty lines are not noise and survive, so a trailing newline is kept.
    """
    return "\n".join(line for line in text.split("\n") if not is_noise_line(line))


def clean_prompt_text(text: str) -> str:
    """Strip ``[ACP:PERMISSION:...]`` markers from prompt text."""
    return PERMISSION_MARKER_RE.sub("", text).strip()


def extract_permission_mode(text: str) -> PermissionMode | None:
    """Return the permission mode requested by a marker in the text, if any."""
    for marker, mode in _PERMISSION_MARKERS:
        if marker in text:
            return mode
    return None
