"""coach/history.py

Per-request conversation context.

Holds the pinned system prompt, a rolling window of prior turns and the
messages produced during the current request (the user message, assistant
tool-call turns and tool results).  Only the rolling window is bounded;
turns added during the request are never dropped, so a tool result can
always be paired with the call that produced it.
"""

from __future__ import annotations

# Standard Library
from typing import Any


class ConversationContext:
    """Rolling context window for one chat request.

    Args:
        max_turns: Maximum number of *prior* turns retained.  The system
            message and the current request's messages do not count toward
            this limit.
    """

    def __init__(self, max_turns: int = 10) -> None:
        self.max_turns = max_turns
        self._history: list[dict[str, Any]] = []
        self._turn: list[dict[str, Any]] = []
        self._system_message: dict[str, str] | None = None

    def set_system_message(self, content: str) -> None:
        """Set or replace the pinned system message."""
        self._system_message = {"role": "system", "content": content}

    def add_history(self, role: str, content: str) -> None:
        """Add a prior turn, evicting the oldest once the window is full."""
        if self.max_turns <= 0:
            return
        self._history.append({"role": role, "content": content})
        if len(self._history) > self.max_turns:
            self._history.pop(0)

    def extend_history(self, turns: list[dict[str, str]]) -> None:
        for turn in turns:
            self.add_history(turn["role"], turn["content"])

    def append(self, message: dict[str, Any]) -> None:
        """Append a message belonging to the current request."""
        self._turn.append(message)

    def get_context(self) -> list[dict[str, Any]]:
        """Messages ready for the completion API, system message first."""
        context: list[dict[str, Any]] = []
        if self._system_message:
            context.append(self._system_message)
        context.extend(self._history)
        context.extend(self._turn)
        return context

    def last_assistant_content(self) -> str:
        """Most recent non-empty assistant text produced during this request."""
        for message in reversed(self._turn):
            if message.get("role") == "assistant" and message.get("content"):
                return str(message["content"])
        return ""

    def history_count(self) -> int:
        return len(self._history)

    def __len__(self) -> int:
        return len(self.get_context())
