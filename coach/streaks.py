"""coach/streaks.py

Check-in streak bookkeeping on the user's profile.

Runs after every successful check-in:

- last check-in today      -> streak unchanged
- last check-in yesterday  -> streak + 1
- anything else            -> streak restarts at 1

``longest_streak`` never decreases and ``last_check_in`` moves to ``now``.
"""

from __future__ import annotations

# Standard Library
import logging
from datetime import date, datetime, timezone
from typing import Any

# Local Modules
from coach.store import RecordStore, parse_timestamp

logger = logging.getLogger(__name__)


def _as_date(value: Any) -> date | None:
    parsed = parse_timestamp(value)
    return parsed.astimezone(timezone.utc).date() if parsed else None


def next_streak(current: int, last_check_in: date | None, today: date) -> int:
    """Compute the streak value after a check-in made on ``today``."""
    if last_check_in is None:
        return 1
    gap = (today - last_check_in).days
    if gap <= 0:
        return max(current, 1)
    if gap == 1:
        return current + 1
    return 1


def recalculate_streak(store: RecordStore, user_id: str, now: datetime) -> dict[str, int] | None:
    """Update streak fields on the user's profile.

    Args:
        store: Record store.
        user_id: Owner of the profile.
        now: Timestamp of the check-in that was just recorded.

    Returns:
        ``{"current_streak", "longest_streak"}`` after the update, or ``None``
        if the user has no profile row.
    """
    profile = store.get_profile(user_id)
    if profile is None:
        logger.warning("[streaks] no profile for user %s; streak not updated", user_id)
        return None

    current = int(profile.get("current_streak") or 0)
    longest = int(profile.get("longest_streak") or 0)
    streak = next_streak(current, _as_date(profile.get("last_check_in")), now.date())
    longest = max(longest, streak)

    store.update(
        "profiles",
        profile["id"],
        user_id,
        {
            "current_streak": streak,
            "longest_streak": longest,
            "last_check_in": now.isoformat(),
        },
    )
    logger.info("[streaks] user=%s streak %d -> %d (longest %d)", user_id, current, streak, longest)
    return {"current_streak": streak, "longest_streak": longest}
