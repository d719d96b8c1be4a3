"""coach/risk.py

Proactive relapse-risk check.

Collects weighted :class:`RiskSignal` values from recent check-ins,
biometrics and the sobriety timeline, scores them and, when the score
warrants it, stores a supportive intervention message for the user.

Signals (type, severity, weight):

    missed_check_ins       medium  0.30   no check-in for 2+ days
    declining_mood         high    0.40   last 3 of >=3 weekly check-ins avg <= 2
    high_urges             high    0.50   2-day average urge >= 7
    moderate_urges         medium  0.25   2-day average urge >= 5
    high_stress            high    0.40   2-day average stress >= 8
    poor_sleep             medium  0.30   2-day average sleep < 5h
    milestone_approaching  low     0.15   within [m-2, m+1] of a milestone
"""

from __future__ import annotations

# Standard Library
import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, Final

# Local Modules
from coach.errors import ModelAPIError
from coach.executor import MILESTONES
from coach.llm import CompletionClient
from coach.models import RiskSignal
from coach.observability import ObservabilityLogger
from coach.store import RecordStore, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

MOOD_SCORES: Final[dict[str, int]] = {
    "great": 5,
    "good": 4,
    "okay": 3,
    "struggling": 2,
    "crisis": 1,
}

INTERVENTION_THRESHOLD: Final[float] = 0.4

FALLBACK_TEMPLATE: Final[str] = (
    "Hey {name}, I noticed you might be going through a challenging time. "
    "Remember, you're not alone in this. Would you like to talk, try a coping "
    "exercise, or just check in?"
)
FALLBACK_ACTIONS: Final[tuple[str, ...]] = ("talk_to_coach", "try_meditation", "do_check_in")


def _average(values: Sequence[float]) -> float | None:
    return sum(values) / len(values) if values else None


def collect_risk_signals(store: RecordStore, user_id: str, now: datetime) -> list[RiskSignal]:
    """Gather every risk signal that currently applies to ``user_id``."""
    signals: list[RiskSignal] = []
    two_days_ago = (now - timedelta(days=2)).isoformat()
    week_ago = (now - timedelta(days=7)).isoformat()

    recent = store.select("check_ins", user_id, since=("created_at", two_days_ago))
    if not recent:
        signals.append(
            RiskSignal("missed_check_ins", "medium", "You haven't checked in for 2+ days", 0.3)
        )

    weekly = store.select(
        "check_ins", user_id, since=("created_at", week_ago), order_by="created_at"
    )
    if len(weekly) >= 3:
        last_three = weekly[-3:]
        score = sum(MOOD_SCORES.get(c.get("mood") or "", 3) for c in last_three) / len(last_three)
        if score <= 2:
            signals.append(
                RiskSignal(
                    "declining_mood", "high",
                    "Your recent moods indicate you might be struggling", 0.4,
                )
            )

    urge = _average([c["urge_intensity"] for c in recent if c.get("urge_intensity") is not None])
    if urge is not None:
        if urge >= 7:
            signals.append(
                RiskSignal("high_urges", "high", "Your urge levels have been elevated", 0.5)
            )
        elif urge >= 5:
            signals.append(
                RiskSignal("moderate_urges", "medium", "You've been experiencing some urges", 0.25)
            )

    biometrics = store.select("biometric_logs", user_id, since=("logged_at", two_days_ago))
    stress = _average([b["stress_level"] for b in biometrics if b.get("stress_level") is not None])
    sleep = _average([b["sleep_hours"] for b in biometrics if b.get("sleep_hours") is not None])
    if stress is not None and stress >= 8:
        signals.append(RiskSignal("high_stress", "high", "Your stress levels are very high", 0.4))
    if sleep is not None and sleep < 5:
        signals.append(
            RiskSignal("poor_sleep", "medium", "You haven't been getting enough sleep", 0.3)
        )

    profile = store.get_profile(user_id) or {}
    started = parse_timestamp(profile.get("sobriety_start_date"))
    if started:
        days_sober = (now - started).days
        for milestone in MILESTONES:
            if milestone - 2 <= days_sober <= milestone + 1:
                signals.append(
                    RiskSignal(
                        "milestone_approaching", "low",
                        f"You're approaching your {milestone}-day milestone!", 0.15,
                    )
                )
                break

    return signals


def risk_score(signals: Sequence[RiskSignal]) -> float:
    """Sum of signal weights, capped at 1."""
    return min(1.0, round(sum(s.weight for s in signals), 4))


def needs_intervention(signals: Sequence[RiskSignal]) -> bool:
    return risk_score(signals) >= INTERVENTION_THRESHOLD or any(
        s.severity in ("high", "critical") for s in signals
    )


def suggested_actions(signals: Sequence[RiskSignal]) -> list[str]:
    """Map detected signal types to follow-up actions offered in the app."""
    types = {s.type for s in signals}
    actions: list[str] = []
    if types & {"high_urges", "moderate_urges"}:
        actions.append("try_coping_tool")
    if types & {"declining_mood", "high_stress"}:
        actions.append("talk_to_coach")
    if "missed_check_ins" in types:
        actions.append("do_check_in")
    if "poor_sleep" in types:
        actions.append("try_meditation")
    return actions or ["talk_to_coach", "do_check_in"]


class ProactiveChecker:
    """Runs the proactive check for one user.

    Args:
        store: Record store.
        client: Completion client used to phrase the intervention message.
        observability: Logger for the per-request record.
        clock: Returns the current UTC time.
    """

    function_name = "proactive-check"

    def __init__(
        self,
        store: RecordStore,
        client: CompletionClient,
        observability: ObservabilityLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.observability = observability or ObservabilityLogger(store)
        self.clock = clock

    def _generate_message(self, name: str, signals: Sequence[RiskSignal]) -> str | None:
        summary = "\n".join(f"- {s.description} ({s.severity})" for s in signals)
        messages = [
            {
                "role": "system",
                "content": (
                    "You are a caring AI Recovery Coach. Generate a brief, empathetic "
                    "intervention message based on detected risk signals. Be warm but "
                    "not alarming. Offer 2-3 specific, actionable suggestions. Keep it "
                    f"under 100 words. Use the user's name: {name}"
                ),
            },
            {
                "role": "user",
                "content": f"Risk signals detected:\n{summary}\n\nGenerate a supportive check-in message.",
            },
        ]
        try:
            reply = self.client.complete(messages, [])
        except ModelAPIError as exc:
            logger.warning("[risk] message generation failed, using template: %s", exc)
            return None
        return reply.content or None

    def run(self, user_id: str) -> dict[str, Any]:
        """Assess risk and record an intervention when needed.

        Returns:
            The API response body.
        """
        started = time.perf_counter()

        existing = self.store.select(
            "ai_interventions", user_id,
            eq={"was_acknowledged": False},
            order_by="created_at", descending=True, limit=1,
        )
        if existing:
            logger.info("[risk] user=%s has an unacknowledged intervention", user_id)
            return {"needs_intervention": True, "intervention": existing[0], "is_existing": True}

        now = self.clock()
        signals = collect_risk_signals(self.store, user_id, now)
        score = risk_score(signals)
        logger.info(
            "[risk] user=%s score=%.2f signals=%s", user_id, score, [s.type for s in signals]
        )

        if not needs_intervention(signals):
            return {
                "needs_intervention": False,
                "risk_score": score,
                "signals_detected": len(signals),
            }

        profile = self.store.get_profile(user_id) or {}
        name = profile.get("pseudonym") or "Friend"
        message = self._generate_message(name, signals)
        if message is None:
            message = FALLBACK_TEMPLATE.format(name=name)
            actions = list(FALLBACK_ACTIONS)
            model_used = "template"
        else:
            actions = suggested_actions(signals)
            model_used = self.client.model

        trigger = signals[0].type if signals else "proactive_check"
        intervention = self.store.insert(
            "ai_interventions",
            {
                "user_id": user_id,
                "trigger_type": trigger,
                "risk_score": score,
                "message": message,
                "suggested_actions": actions,
                "was_acknowledged": False,
                "created_at": now.isoformat(),
            },
        )

        self.observability.record(
            user_id=user_id,
            function_name=self.function_name,
            tools_called=[],
            input_summary="Risk signals: " + ", ".join(s.type for s in signals),
            response_summary=message,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            model_used=model_used,
            intervention_triggered=True,
            intervention_type=trigger,
        )

        return {
            "needs_intervention": True,
            "intervention": intervention,
            "risk_signals": [
                {"type": s.type, "severity": s.severity, "description": s.description, "weight": s.weight}
                for s in signals
            ],
            "risk_score": score,
        }
