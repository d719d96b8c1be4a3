"""coach/tools.py

Declarative tool registry.

Each :class:`ToolDefinition` names an operation the model may request, its
typed parameter schema and whether it mutates user data.  The registry is
built once at import time and never modified; :func:`active_tools` returns
the subset offered to the model for one turn.
"""

from __future__ import annotations

# Standard Library
import dataclasses
from collections.abc import Iterable
from types import MappingProxyType
from typing import Any, Final, Literal, Mapping

ParamType = Literal["string", "integer", "number", "boolean"]

MOODS: Final[tuple[str, ...]] = ("great", "good", "okay", "struggling", "crisis")
STRESS_LEVELS: Final[tuple[str, ...]] = ("low", "medium", "high", "crisis")


@dataclasses.dataclass(frozen=True, slots=True)
class ParameterSpec:
    """Schema for one named tool parameter."""

    type: ParamType
    description: str
    enum: tuple[str, ...] | None = None
    minimum: float | None = None
    maximum: float | None = None

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        return schema


@dataclasses.dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Definition of one callable tool.

    Attributes:
        name: Unique tool name the model refers to.
        description: What the tool does, shown to the model.
        parameters: Parameter name -> spec, in declaration order.
        required: Names of parameters that must be present.
        mutating: True for write tools (gated per turn).
    """

    name: str
    description: str
    parameters: Mapping[str, ParameterSpec] = dataclasses.field(default_factory=dict)
    required: tuple[str, ...] = ()
    mutating: bool = False

    def to_schema(self) -> dict[str, Any]:
        """Render the OpenAI function-calling schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {
                        name: spec.to_schema() for name, spec in self.parameters.items()
                    },
                    "required": list(self.required),
                },
            },
        }


# ---------------------------------------------------------------------------
# Read tools, always active
# ---------------------------------------------------------------------------

READ_TOOLS: Final[tuple[ToolDefinition, ...]] = (
    ToolDefinition(
        name="get_sobriety_progress",
        description=(
            "Get the user's sobriety progress: days sober, current and longest "
            "check-in streak, and the next milestone."
        ),
    ),
    ToolDefinition(
        name="get_mood_summary",
        description=(
            "Summarise the user's check-ins from the last 7 days: mood counts, "
            "average urge intensity and whether urges are improving."
        ),
    ),
    ToolDefinition(
        name="get_active_goals",
        description="List the user's open goals with the days remaining for each.",
    ),
    ToolDefinition(
        name="suggest_coping_activity",
        description=(
            "Suggest coping activities for the user's current stress level. "
            "Use 'crisis' when the user may be in danger."
        ),
        parameters={
            "stress_level": ParameterSpec(
                "string", "How stressed the user is right now.", enum=STRESS_LEVELS
            ),
        },
        required=("stress_level",),
    ),
    ToolDefinition(
        name="get_recent_journal_entries",
        description="Get short excerpts of the user's most recent journal entries.",
        parameters={
            "limit": ParameterSpec(
                "integer", "How many entries to return (default 3).", minimum=1, maximum=10
            ),
        },
    ),
    ToolDefinition(
        name="get_biometric_insights",
        description=(
            "Get average sleep, steps and stress from the user's wearable data "
            "with short insights."
        ),
        parameters={
            "days": ParameterSpec(
                "integer", "Look-back window in days (default 7).", minimum=1, maximum=90
            ),
        },
    ),
)

# ---------------------------------------------------------------------------
# Write tools, active only when the gate passes
# ---------------------------------------------------------------------------

WRITE_TOOLS: Final[tuple[ToolDefinition, ...]] = (
    ToolDefinition(
        name="create_goal",
        description=(
            "Create a recovery goal. Only call this when the user has given a "
            "concrete goal; ask a follow-up question otherwise."
        ),
        parameters={
            "title": ParameterSpec("string", "Short goal title, e.g. 'Meditate daily'."),
            "description": ParameterSpec("string", "Optional longer description."),
            "target_days": ParameterSpec(
                "integer", "Number of days the goal runs for.", minimum=1, maximum=3650
            ),
        },
        required=("title",),
        mutating=True,
    ),
    ToolDefinition(
        name="create_check_in",
        description="Record a mood check-in for the user.",
        parameters={
            "mood": ParameterSpec("string", "The user's current mood.", enum=MOODS),
            "urge_intensity": ParameterSpec(
                "integer", "Urge intensity from 0 (none) to 10 (overwhelming).",
                minimum=0, maximum=10,
            ),
            "notes": ParameterSpec("string", "Optional free-text notes."),
        },
        required=("mood",),
        mutating=True,
    ),
    ToolDefinition(
        name="create_journal_entry",
        description="Save a journal entry written by the user.",
        parameters={
            "content": ParameterSpec("string", "The journal text."),
            "title": ParameterSpec("string", "Optional title."),
        },
        required=("content",),
        mutating=True,
    ),
    ToolDefinition(
        name="complete_goal",
        description="Mark one of the user's open goals as completed, matched by title.",
        parameters={
            "goal_title": ParameterSpec("string", "Title (or part of it) of the goal."),
        },
        required=("goal_title",),
        mutating=True,
    ),
    ToolDefinition(
        name="log_coping_activity",
        description=(
            "Log that the user used a coping activity. Repeated activities "
            "increase its usage count."
        ),
        parameters={
            "activity_name": ParameterSpec("string", "Name of the activity, e.g. 'Deep breathing'."),
            "category": ParameterSpec("string", "Optional category, e.g. 'mindfulness'."),
            "helpful": ParameterSpec("boolean", "Whether the activity helped."),
        },
        required=("activity_name",),
        mutating=True,
    ),
    ToolDefinition(
        name="log_intervention",
        description="Record that a proactive supportive nudge was given to the user.",
        parameters={
            "trigger_type": ParameterSpec("string", "What prompted the nudge, e.g. 'high_urges'."),
            "message": ParameterSpec("string", "The supportive message given."),
            "risk_score": ParameterSpec(
                "number", "Estimated risk from 0 to 1.", minimum=0, maximum=1
            ),
        },
        required=("trigger_type", "message"),
        mutating=True,
    ),
)

TOOL_REGISTRY: Final[Mapping[str, ToolDefinition]] = MappingProxyType(
    {tool.name: tool for tool in (*READ_TOOLS, *WRITE_TOOLS)}
)


def get_tool(name: str) -> ToolDefinition | None:
    """Look up a tool definition by name."""
    return TOOL_REGISTRY.get(name)


def active_tools(include_write: bool) -> tuple[ToolDefinition, ...]:
    """Return the tools offered to the model for one turn."""
    return READ_TOOLS + WRITE_TOOLS if include_write else READ_TOOLS


def tool_schemas(tools: Iterable[ToolDefinition]) -> list[dict[str, Any]]:
    """Render OpenAI function-calling schemas for ``tools``."""
    return [tool.to_schema() for tool in tools]
