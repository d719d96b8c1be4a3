"""coach/prompts.py

Builds the coach's system prompt from the user's recovery context.
"""

from __future__ import annotations

# Standard Library
import dataclasses
from datetime import datetime, timedelta

# Local Modules
from coach.store import RecordStore, parse_timestamp


@dataclasses.dataclass
class UserContext:
    """Snapshot of the user's data injected into the system prompt."""

    pseudonym: str = "Friend"
    days_sober: int = 0
    addiction_type: str | None = None
    check_ins_this_week: int = 0
    active_goals: int = 0
    latest_journal_excerpt: str | None = None

    @classmethod
    def load(cls, store: RecordStore, user_id: str, now: datetime) -> "UserContext":
        """Read profile, check-ins, goals and journal for ``user_id``."""
        profile = store.get_profile(user_id) or {}

        started = parse_timestamp(profile.get("sobriety_start_date"))
        days_sober = max(0, (now - started).days) if started else 0

        week_ago = (now - timedelta(days=7)).isoformat()
        check_ins = store.select("check_ins", user_id, since=("created_at", week_ago))
        goals = [g for g in store.select("goals", user_id) if not g.get("completed")]
        journal = store.select(
            "journal_entries", user_id, order_by="created_at", descending=True, limit=1
        )

        excerpt = None
        if journal and journal[0].get("content"):
            excerpt = str(journal[0]["content"])[:100]

        return cls(
            pseudonym=profile.get("pseudonym") or "Friend",
            days_sober=days_sober,
            addiction_type=profile.get("addiction_type"),
            check_ins_this_week=len(check_ins),
            active_goals=len(goals),
            latest_journal_excerpt=excerpt,
        )


class PromptBuilder:
    """Translates a :class:`UserContext` into the coach system prompt."""

    def __init__(self, max_words: int = 150) -> None:
        self.max_words = max_words

    def generate_system_prompt(self, context: UserContext) -> str:
        lines: list[str] = [
            f"- Name: {context.pseudonym}",
            f"- Days sober: {context.days_sober}",
        ]
        if context.addiction_type:
            lines.append(f"- Recovering from: {context.addiction_type}")
        lines.append(f"- Check-ins this week: {context.check_ins_this_week}")
        lines.append(f"- Active goals: {context.active_goals}")
        if context.latest_journal_excerpt:
            lines.append(f'- Latest journal entry: "{context.latest_journal_excerpt}..."')

        base_prompt = (
            "You are a compassionate, supportive recovery coach helping someone "
            "on their sobriety journey. You are warm, encouraging and never "
            "judgmental. Celebrate progress, however small."
        )

        tool_guardrail = (
            "\n\nYou can look up the user's progress, moods, goals, journal and "
            "wearable data with your tools; use them rather than guessing. "
            "When the user asks you to record something but leaves out details "
            "you need (what the goal is, how long it runs, how they feel), ask a "
            "short clarifying question instead of inventing values. "
            "Never claim to have saved something unless a tool confirmed it."
        )

        safety = (
            f"\n\nKeep answers under {self.max_words} words. "
            "You are not a therapist or a doctor. If the user mentions self-harm, "
            "suicide or being in danger, urge them to call or text 988 (Suicide "
            "& Crisis Lifeline) or their local emergency number right away."
        )

        return base_prompt + "\n\nUser context:\n" + "\n".join(lines) + tool_guardrail + safety


def build_system_prompt(store: RecordStore, user_id: str, now: datetime) -> str:
    """Convenience wrapper: load the user context and render the prompt."""
    return PromptBuilder().generate_system_prompt(UserContext.load(store, user_id, now))
