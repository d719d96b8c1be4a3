"""coach/executor.py

Tool executor: maps a tool name and its arguments to a handler that runs
against the record store on behalf of exactly one user.

Handlers are registered once in a name -> method table.  Every read and
write passes the authenticated ``user_id`` to the store, so a handler can
never see or change another user's rows.  Store failures come back as
``ToolResult(success=False)`` so the orchestration loop can keep going with
partial results; argument problems raise :class:`ToolArgumentError` and the
loop skips that one invocation.
"""

from __future__ import annotations

# Standard Library
import json
import logging
import re
from collections import Counter
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, Final

# Local Modules
from coach.errors import StoreError, ToolArgumentError
from coach.models import ToolResult
from coach.store import RecordStore, parse_timestamp, utc_now
from coach.streaks import recalculate_streak
from coach.tools import ToolDefinition, get_tool

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any], str], ToolResult]

MILESTONES: Final[tuple[int, ...]] = (7, 14, 30, 60, 90, 180, 365)

CRISIS_RESOURCES: Final[tuple[dict[str, str], ...]] = (
    {"name": "988 Suicide & Crisis Lifeline", "contact": "Call or text 988"},
    {"name": "Crisis Text Line", "contact": "Text HOME to 741741"},
    {"name": "SAMHSA National Helpline", "contact": "1-800-662-4357 (free, 24/7)"},
    {"name": "Emergency services", "contact": "Call 911 if you are in immediate danger"},
)

CRISIS_MESSAGE: Final[str] = (
    "I'm really glad you reached out, and I want you to be safe right now. "
    "Please contact someone who can help immediately:\n"
    + "\n".join(f"- {r['name']}: {r['contact']}" for r in CRISIS_RESOURCES)
    + "\nYou don't have to go through this alone."
)

COPING_SUGGESTIONS: Final[dict[str, tuple[str, ...]]] = {
    "low": (
        "Take a short mindful walk",
        "Write down three things you're grateful for",
        "Listen to music that calms you",
    ),
    "medium": (
        "Box breathing: in for 4, hold for 4, out for 4, hold for 4",
        "Call or text someone in your support network",
        "Do ten minutes of light exercise",
    ),
    "high": (
        "5-4-3-2-1 grounding: name 5 things you see, 4 you feel, 3 you hear, 2 you smell, 1 you taste",
        "Reach out to your sponsor or support group now",
        "Leave the triggering situation and change your surroundings",
        "Splash cold water on your face to reset your nervous system",
    ),
}

_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"[a-z0-9]+")
_INTEGER_PATTERN: Final[re.Pattern[str]] = re.compile(r"-?[0-9]+")


# ---------------------------------------------------------------------------
# Fuzzy goal-title matching
# ---------------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Lower-case alphanumeric words of ``text``, ignoring single characters."""
    if not text:
        return []
    return [token for token in _TOKEN_PATTERN.findall(text.lower()) if len(token) > 1]


def overlap_score(target_tokens: Sequence[str], candidate_tokens: Sequence[str]) -> int:
    """Count target tokens that overlap (substring either way) a candidate token."""
    return sum(
        1
        for t in target_tokens
        if any(t in c or c in t for c in candidate_tokens)
    )


def best_title_match(target: str, candidates: Sequence[str]) -> int | None:
    """Pick the candidate title that best matches ``target``.

    Highest overlap score wins; ties go to the earliest candidate.  Returns
    ``None`` when nothing overlaps at all.

    >>> best_title_match("exercise", ["Exercise daily", "Read a book"])
    0
    """
    target_tokens = tokenize(target)
    best_index: int | None = None
    best_score = 0
    for index, title in enumerate(candidates):
        score = overlap_score(target_tokens, tokenize(title))
        if score > best_score:
            best_index, best_score = index, score
    return best_index


# ---------------------------------------------------------------------------
# Argument parsing and validation
# ---------------------------------------------------------------------------


def parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """Decode model-supplied tool arguments into a dict.

    Raises:
        ToolArgumentError: If ``raw`` is not valid JSON or not a JSON object.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        decoded = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ToolArgumentError("Malformed tool arguments.", details=str(exc)) from exc
    if not isinstance(decoded, dict):
        raise ToolArgumentError(
            "Malformed tool arguments.", details=f"expected object, got {type(decoded).__name__}"
        )
    return decoded


def _coerce(name: str, spec_type: str, value: Any) -> Any:
    if spec_type == "string":
        if not isinstance(value, str):
            raise ToolArgumentError(f"Parameter '{name}' must be a string.")
        return value.strip()
    if spec_type == "integer":
        if isinstance(value, bool):
            raise ToolArgumentError(f"Parameter '{name}' must be an integer.")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INTEGER_PATTERN.fullmatch(value.strip()):
            return int(value.strip())
        raise ToolArgumentError(f"Parameter '{name}' must be an integer.")
    if spec_type == "number":
        if isinstance(value, bool):
            raise ToolArgumentError(f"Parameter '{name}' must be a number.")
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ToolArgumentError(f"Parameter '{name}' must be a number.") from exc
    if spec_type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ToolArgumentError(f"Parameter '{name}' must be true or false.")
    raise ToolArgumentError(f"Parameter '{name}' has unsupported type {spec_type!r}.")


def coerce_arguments(definition: ToolDefinition, arguments: dict[str, Any]) -> dict[str, Any]:
    """Validate ``arguments`` against ``definition`` and normalise types.

    Unknown keys are dropped, ``None`` counts as absent, enum values are
    compared case-insensitively and numeric bounds are enforced.

    Raises:
        ToolArgumentError: On a missing required parameter or an invalid value.
    """
    clean: dict[str, Any] = {}
    for name, spec in definition.parameters.items():
        value = arguments.get(name)
        if value is None:
            continue
        value = _coerce(name, spec.type, value)
        if spec.type == "string" and value == "":
            continue
        if spec.enum is not None:
            value = value.lower()
            if value not in spec.enum:
                raise ToolArgumentError(
                    f"Parameter '{name}' must be one of {', '.join(spec.enum)}."
                )
        if spec.minimum is not None and value < spec.minimum:
            raise ToolArgumentError(f"Parameter '{name}' must be at least {spec.minimum:g}.")
        if spec.maximum is not None and value > spec.maximum:
            raise ToolArgumentError(f"Parameter '{name}' must be at most {spec.maximum:g}.")
        clean[name] = value

    missing = [name for name in definition.required if name not in clean]
    if missing:
        raise ToolArgumentError(f"Missing required parameter(s): {', '.join(missing)}.")

    ignored = set(arguments) - set(definition.parameters)
    if ignored:
        logger.debug("[executor] %s: ignoring unknown arguments %s", definition.name, sorted(ignored))
    return clean


def _average(values: Sequence[float]) -> float | None:
    return round(sum(values) / len(values), 1) if values else None


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class ToolExecutor:
    """Dispatches tool invocations to per-tool handlers.

    Args:
        store: Record store used by every handler.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self.clock = clock
        self._handlers: dict[str, Handler] = {
            "get_sobriety_progress": self._get_sobriety_progress,
            "get_mood_summary": self._get_mood_summary,
            "get_active_goals": self._get_active_goals,
            "suggest_coping_activity": self._suggest_coping_activity,
            "get_recent_journal_entries": self._get_recent_journal_entries,
            "get_biometric_insights": self._get_biometric_insights,
            "create_goal": self._create_goal,
            "create_check_in": self._create_check_in,
            "create_journal_entry": self._create_journal_entry,
            "complete_goal": self._complete_goal,
            "log_coping_activity": self._log_coping_activity,
            "log_intervention": self._log_intervention,
        }

    @property
    def tool_names(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def validate(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Return coerced arguments for ``tool_name``.

        Raises:
            ToolArgumentError: If the arguments do not satisfy the schema.
        """
        definition = get_tool(tool_name)
        if definition is None:
            return arguments
        return coerce_arguments(definition, arguments)

    def execute(self, tool_name: str, arguments: dict[str, Any], user_id: str) -> ToolResult:
        """Run one tool for ``user_id``.

        Args:
            tool_name: Registered tool name.
            arguments: Decoded arguments from the model.
            user_id: Authenticated owner of every record touched.

        Returns:
            The handler's ToolResult, or a failure result for unknown tools
            and store errors.

        Raises:
            ToolArgumentError: If the arguments do not satisfy the schema.
        """
        handler = self._handlers.get(tool_name)
        if handler is None or get_tool(tool_name) is None:
            logger.warning("[executor] unknown tool requested: %s", tool_name)
            return ToolResult.fail(f"Unknown tool: {tool_name}")

        args = self.validate(tool_name, arguments)
        logger.info("[executor] %s user=%s args=%s", tool_name, user_id, args)
        try:
            result = handler(args, user_id)
        except StoreError as exc:
            logger.error("[executor] %s store failure: %s", tool_name, exc)
            return ToolResult.fail(f"Could not complete {tool_name}: {exc.message}")
        except Exception as exc:
            logger.error("[executor] %s unexpected error: %s", tool_name, exc, exc_info=True)
            return ToolResult.fail(f"Could not complete {tool_name}.")

        logger.info(
            "[executor] %s -> success=%s %s",
            tool_name, result.success, result.error or result.message or "",
        )
        return result

    # -- read tools --------------------------------------------------------

    def _get_sobriety_progress(self, args: dict[str, Any], user_id: str) -> ToolResult:
        profile = self.store.get_profile(user_id)
        if profile is None:
            return ToolResult.fail("No profile found for this user.")

        now = self.clock()
        start = parse_timestamp(profile.get("sobriety_start_date"))
        days_sober = max(0, (now - start).days) if start else 0
        next_milestone = next((m for m in MILESTONES if m > days_sober), None)
        if next_milestone is None:
            next_milestone = (days_sober // 365 + 1) * 365

        payload = {
            "days_sober": days_sober,
            "sobriety_start_date": profile.get("sobriety_start_date"),
            "addiction_type": profile.get("addiction_type"),
            "current_streak": int(profile.get("current_streak") or 0),
            "longest_streak": int(profile.get("longest_streak") or 0),
            "next_milestone": next_milestone,
            "days_to_next_milestone": next_milestone - days_sober,
        }
        return ToolResult.ok(payload, f"{days_sober} days sober.")

    def _get_mood_summary(self, args: dict[str, Any], user_id: str) -> ToolResult:
        week_ago = (self.clock() - timedelta(days=7)).isoformat()
        check_ins = self.store.select(
            "check_ins", user_id, since=("created_at", week_ago), order_by="created_at"
        )
        urges = [c["urge_intensity"] for c in check_ins if c.get("urge_intensity") is not None]

        if not urges:
            trend = "no_data"
        elif urges[-1] < urges[0]:
            trend = "improving"
        else:
            trend = "needs_attention"

        payload = {
            "check_in_count": len(check_ins),
            "moods": dict(Counter(c.get("mood") for c in check_ins if c.get("mood"))),
            "latest_mood": check_ins[-1].get("mood") if check_ins else None,
            "average_urge_intensity": _average(urges),
            "trend": trend,
        }
        return ToolResult.ok(payload, f"{len(check_ins)} check-ins in the last 7 days, trend {trend}.")

    def _get_active_goals(self, args: dict[str, Any], user_id: str) -> ToolResult:
        now = self.clock()
        goals = self.store.select("goals", user_id, order_by="created_at")
        active = []
        for goal in goals:
            if goal.get("completed"):
                continue
            end = parse_timestamp(goal.get("end_date"))
            active.append(
                {
                    "id": goal.get("id"),
                    "title": goal.get("title"),
                    "description": goal.get("description"),
                    "progress": goal.get("progress") or 0,
                    "end_date": goal.get("end_date"),
                    "days_remaining": max(0, (end - now).days) if end else None,
                }
            )
        return ToolResult.ok({"goals": active, "count": len(active)}, f"{len(active)} active goals.")

    def _suggest_coping_activity(self, args: dict[str, Any], user_id: str) -> ToolResult:
        level = args["stress_level"]
        if level == "crisis":
            logger.warning("[executor] crisis stress level reported by user=%s", user_id)
            return ToolResult.ok(
                {"stress_level": level, "crisis": True, "resources": list(CRISIS_RESOURCES)},
                CRISIS_MESSAGE,
            )

        favourites = self.store.select("coping_activities", user_id)
        favourites = [a for a in favourites if a.get("helpful") is not False]
        favourites.sort(key=lambda a: int(a.get("times_used") or 0), reverse=True)

        payload = {
            "stress_level": level,
            "suggestions": list(COPING_SUGGESTIONS[level]),
            "your_go_to_activities": [a.get("activity_name") for a in favourites[:3]],
        }
        return ToolResult.ok(payload)

    def _get_recent_journal_entries(self, args: dict[str, Any], user_id: str) -> ToolResult:
        limit = args.get("limit", 3)
        entries = self.store.select(
            "journal_entries", user_id, order_by="created_at", descending=True, limit=limit
        )
        excerpts = []
        for entry in entries:
            content = entry.get("content") or ""
            excerpts.append(
                {
                    "title": entry.get("title"),
                    "created_at": entry.get("created_at"),
                    "excerpt": content[:200] + ("..." if len(content) > 200 else ""),
                }
            )
        return ToolResult.ok({"entries": excerpts, "count": len(excerpts)})

    def _get_biometric_insights(self, args: dict[str, Any], user_id: str) -> ToolResult:
        days = args.get("days", 7)
        since = (self.clock() - timedelta(days=days)).isoformat()
        logs = self.store.select("biometric_logs", user_id, since=("logged_at", since))
        if not logs:
            return ToolResult.ok(
                {"days": days, "samples": 0, "insights": []},
                "No biometric data recorded in this period.",
            )

        def collect(column: str) -> list[float]:
            return [float(row[column]) for row in logs if row.get(column) is not None]

        sleep = _average(collect("sleep_hours"))
        steps = _average(collect("steps"))
        stress = _average(collect("stress_level"))

        insights: list[str] = []
        if sleep is not None:
            if sleep < 6:
                insights.append("You're averaging under 6 hours of sleep; rest protects your recovery.")
            elif sleep >= 7:
                insights.append("Your sleep looks healthy. Keep that routine going.")
        if steps is not None:
            if steps < 5000:
                insights.append("Activity is low; a short walk can lift mood and ease cravings.")
            elif steps >= 8000:
                insights.append("Great activity levels this week.")
        if stress is not None:
            if stress >= 7:
                insights.append("Stress has been high; consider a coping exercise today.")
            elif stress <= 3:
                insights.append("Stress levels have stayed low.")

        payload = {
            "days": days,
            "samples": len(logs),
            "average_sleep_hours": sleep,
            "average_steps": round(steps) if steps is not None else None,
            "average_stress_level": stress,
            "insights": insights,
        }
        return ToolResult.ok(payload)

    # -- write tools -------------------------------------------------------

    def _create_goal(self, args: dict[str, Any], user_id: str) -> ToolResult:
        now = self.clock()
        target_days = args.get("target_days")
        end = now + timedelta(days=target_days) if target_days else None
        goal = self.store.insert(
            "goals",
            {
                "user_id": user_id,
                "title": args["title"],
                "description": args.get("description"),
                "target_days": target_days,
                "start_date": now.isoformat(),
                "end_date": end.isoformat() if end else None,
                "completed": False,
                "progress": 0,
                "created_at": now.isoformat(),
            },
        )
        message = f"Created goal '{goal['title']}'"
        if end:
            message += f" ending {end:%B} {end.day}, {end.year}"
        return ToolResult.ok({"goal": goal}, message + ".")

    def _create_check_in(self, args: dict[str, Any], user_id: str) -> ToolResult:
        now = self.clock()
        check_in = self.store.insert(
            "check_ins",
            {
                "user_id": user_id,
                "mood": args["mood"],
                "urge_intensity": args.get("urge_intensity"),
                "notes": args.get("notes"),
                "created_at": now.isoformat(),
            },
        )
        payload: dict[str, Any] = {"check_in": check_in}
        try:
            payload["streak"] = recalculate_streak(self.store, user_id, now)
        except StoreError as exc:
            logger.warning("[executor] streak update failed for user=%s: %s", user_id, exc)
            payload["streak"] = None
        return ToolResult.ok(payload, f"Check-in recorded with mood '{check_in['mood']}'.")

    def _create_journal_entry(self, args: dict[str, Any], user_id: str) -> ToolResult:
        now = self.clock()
        title = args.get("title") or f"Journal Entry - {now:%B} {now.day}, {now.year}"
        entry = self.store.insert(
            "journal_entries",
            {
                "user_id": user_id,
                "title": title,
                "content": args["content"],
                "created_at": now.isoformat(),
            },
        )
        return ToolResult.ok({"entry": entry}, f"Saved journal entry '{title}'.")

    def _complete_goal(self, args: dict[str, Any], user_id: str) -> ToolResult:
        goals = self.store.select("goals", user_id, order_by="created_at")
        open_goals = [g for g in goals if not g.get("completed")]
        if not open_goals:
            return ToolResult.fail("There are no open goals to complete.")

        index = best_title_match(args["goal_title"], [g.get("title") or "" for g in open_goals])
        if index is None:
            return ToolResult.fail(f"No open goal matches '{args['goal_title']}'.")

        goal = self.store.update(
            "goals",
            open_goals[index]["id"],
            user_id,
            {"completed": True, "progress": 100},
        )
        return ToolResult.ok({"goal": goal}, f"Marked '{goal['title']}' as completed.")

    def _log_coping_activity(self, args: dict[str, Any], user_id: str) -> ToolResult:
        name = args["activity_name"]
        existing = next(
            (
                a for a in self.store.select("coping_activities", user_id, order_by="created_at")
                if (a.get("activity_name") or "").strip().casefold() == name.casefold()
            ),
            None,
        )

        if existing is not None:
            changes: dict[str, Any] = {"times_used": int(existing.get("times_used") or 0) + 1}
            if "helpful" in args:
                changes["helpful"] = args["helpful"]
            activity = self.store.update("coping_activities", existing["id"], user_id, changes)
        else:
            activity = self.store.insert(
                "coping_activities",
                {
                    "user_id": user_id,
                    "activity_name": name,
                    "category": args.get("category") or "general",
                    "times_used": 1,
                    "helpful": args.get("helpful"),
                    "created_at": self.clock().isoformat(),
                },
            )
        return ToolResult.ok(
            {"activity": activity},
            f"Logged '{activity['activity_name']}' ({activity['times_used']} times so far).",
        )

    def _log_intervention(self, args: dict[str, Any], user_id: str) -> ToolResult:
        intervention = self.store.insert(
            "ai_interventions",
            {
                "user_id": user_id,
                "trigger_type": args["trigger_type"],
                "message": args["message"],
                "risk_score": args.get("risk_score"),
                "suggested_actions": [],
                "was_acknowledged": False,
                "created_at": self.clock().isoformat(),
            },
        )
        return ToolResult.ok(
            {"intervention": intervention, "intervention_triggered": True},
            "Intervention recorded.",
        )
