"""coach/gate.py

Write-tool gate: decides, from the raw user message, whether mutating tools
are offered to the model for this turn.

Vague statements ("I want to create a goal") must not let the model silently
write data.  Write tools are withheld until the user supplies concrete
details or explicitly asks for the action, which forces a clarifying
question from the model instead.

The heuristics are approximate by nature.  The loop depends only on the
:class:`WriteToolGate` protocol so a stricter or model-based classifier can
be dropped in without touching orchestration code.
"""

from __future__ import annotations

# Standard Library
import logging
import re
from typing import Final, Protocol

logger = logging.getLogger(__name__)

# (a) goal phrasing + a concrete parameter -----------------------------------

_GOAL_PHRASE: Final[re.Pattern[str]] = re.compile(
    r"\bgoals?\b"
    r"|\bi\s+(?:want|need|would\s+like|'d\s+like)\s+to\b"
    r"|\bi(?:'m|\s+am)\s+going\s+to\b"
    r"|\bi\s+(?:will|plan\s+to|intend\s+to|commit\s+to)\b"
    r"|\bi'll\b",
    re.IGNORECASE,
)

_DURATION: Final[re.Pattern[str]] = re.compile(
    r"\b\d+\s*(?:-\s*)?(?:days?|weeks?|months?)\b"
    r"|\b(?:a|one|two|three|four|six)\s+(?:weeks?|months?)\b"
    r"|\b(?:daily|weekly|every\s+(?:day|morning|night|evening|week)|each\s+day)\b",
    re.IGNORECASE,
)

_ACTIVITY: Final[re.Pattern[str]] = re.compile(
    r"\b(?:meditat\w*|exercis\w*|run(?:ning)?|walk(?:ing)?|jog(?:ging)?|yoga"
    r"|gym|workout|swim(?:ming)?|read(?:ing)?|journal(?:ing|ling)?"
    r"|attend\w*|meetings?|therapy|counsel\w*|sponsor|sleep\w*|breath\w*)\b",
    re.IGNORECASE,
)

# (b) explicit mood statement in check-in vocabulary -------------------------

_MOOD_STATEMENT: Final[re.Pattern[str]] = re.compile(
    r"\b(?:i\s+feel|i'm\s+feeling|i\s+am\s+feeling|feeling|i'm|i\s+am"
    r"|my\s+mood\s+(?:today\s+)?is|mood\s*:)"
    r"\s+(?:(?:really|very|so|pretty|quite|a\s+bit|kind\s+of|kinda)\s+)?"
    r"(?:great|good|okay|ok|struggling|in\s+crisis)\b",
    re.IGNORECASE,
)

# (c) imperative verb + target noun ------------------------------------------

_IMPERATIVE: Final[re.Pattern[str]] = re.compile(
    r"(?:^|[.!?;:\n]\s*|\b(?:please|can\s+you|could\s+you|would\s+you|go\s+ahead\s+and)\s+)"
    r"(?:create|log|set|add|record|make|start|complete|mark|save|write|track)\b"
    r"(?:\s+[\w'-]+){0,3}?\s+"
    r"(?:goals?|check[\s-]?ins?|journal|entry|mood|activity|coping)\b",
    re.IGNORECASE,
)


class WriteToolGate(Protocol):
    """Policy deciding whether mutating tools are offered for a message."""

    def should_enable_write_tools(self, raw_message: str) -> bool: ...


def has_concrete_goal(raw_message: str) -> bool:
    """Goal phrasing together with a duration, frequency or named activity."""
    if not _GOAL_PHRASE.search(raw_message):
        return False
    return bool(_DURATION.search(raw_message) or _ACTIVITY.search(raw_message))


def has_mood_statement(raw_message: str) -> bool:
    """Explicit statement using the check-in mood vocabulary."""
    return bool(_MOOD_STATEMENT.search(raw_message))


def has_imperative_action(raw_message: str) -> bool:
    """Imperative action verb followed closely by a target noun."""
    return bool(_IMPERATIVE.search(raw_message.strip()))


class HeuristicWriteGate:
    """Default gate: true if any of the three heuristics matches."""

    def should_enable_write_tools(self, raw_message: str) -> bool:
        if not isinstance(raw_message, str) or not raw_message.strip():
            return False

        checks = {
            "concrete_goal": has_concrete_goal(raw_message),
            "mood_statement": has_mood_statement(raw_message),
            "imperative_action": has_imperative_action(raw_message),
        }
        enabled = any(checks.values())
        logger.info(
            "[gate] write_tools=%s matched=%s",
            enabled,
            [name for name, hit in checks.items() if hit],
        )
        return enabled


_DEFAULT_GATE: Final[HeuristicWriteGate] = HeuristicWriteGate()


def should_enable_write_tools(raw_message: str) -> bool:
    """Module-level shortcut for the default heuristic gate."""
    return _DEFAULT_GATE.should_enable_write_tools(raw_message)
