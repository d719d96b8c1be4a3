"""coach/sanitizer.py

Input sanitizer applied to every user-authored string before it reaches the
model: truncation plus removal of role-switch and instruction-delimiter
tokens commonly used for prompt injection.
"""

from __future__ import annotations

# Standard Library
import re
from typing import Any, Final

DEFAULT_MAX_LENGTH: Final[int] = 5000

_INJECTION_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"system:"
    r"|assistant:"
    r"|<\|im_start\|>"
    r"|<\|im_end\|>"
    r"|\[INST\]"
    r"|\[/INST\]"
    r"|<<SYS>>"
    r"|<</SYS>>"
    r"|<s>"
    r"|</s>",
    re.IGNORECASE,
)


def sanitize(text: Any, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Truncate ``text`` and strip prompt-injection markers.

    Removal repeats until no marker remains, so fragments that join into a
    new marker once an inner one is removed (``"sysassistant:tem:"``) are
    also cleared.  The result is therefore stable under re-application.

    Args:
        text: Raw user input.  Non-string values yield ``""``.
        max_length: Maximum number of characters kept.

    Returns:
        The cleaned, whitespace-trimmed string (possibly empty).
    """
    if not isinstance(text, str) or not text:
        return ""

    cleaned = text[: max(max_length, 0)]
    while True:
        stripped = _INJECTION_PATTERN.sub("", cleaned)
        if stripped == cleaned:
            break
        cleaned = stripped
    return cleaned.strip()


def sanitize_history(
    history: Any,
    max_turns: int,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> list[dict[str, str]]:
    """Sanitize prior conversation turns and keep the most recent ones.

    Roles other than ``"user"`` are coerced to ``"assistant"`` so a client
    cannot smuggle in ``system`` or ``tool`` turns.  Turns that are empty
    after sanitization are dropped.

    Args:
        history: List of ``{"role", "content"}`` dicts from the request.
        max_turns: Number of trailing turns to keep.
        max_length: Characters kept per turn.

    Returns:
        Clean ``[{"role", "content"}]`` list, oldest first.
    """
    if not isinstance(history, list) or max_turns <= 0:
        return []

    turns: list[dict[str, str]] = []
    for item in history:
        if not isinstance(item, dict):
            continue
        content = sanitize(item.get("content"), max_length)
        if not content:
            continue
        role = "user" if item.get("role") == "user" else "assistant"
        turns.append({"role": role, "content": content})
    return turns[-max_turns:]
