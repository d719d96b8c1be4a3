"""coach/models.py

Value objects shared by the registry, executor and orchestration loop.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import json
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]


@dataclasses.dataclass(slots=True)
class ChatTurn:
    """One entry of the conversation context sent to the model."""

    role: Role
    content: str
    tool_call_id: str | None = None

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        return message


@dataclasses.dataclass(slots=True)
class ToolInvocation:
    """A tool call requested by the model.

    Attributes:
        id: Provider-assigned call id (echoed back in the tool turn).
        name: Tool name as emitted by the model.
        raw_arguments: JSON string (gateway) or already-decoded dict (Ollama).
    """

    id: str
    name: str
    raw_arguments: str | dict[str, Any] | None = None


@dataclasses.dataclass(slots=True)
class ToolResult:
    """Structured outcome of one tool execution."""

    success: bool
    payload: dict[str, Any] = dataclasses.field(default_factory=dict)
    message: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, payload: dict[str, Any], message: str | None = None) -> ToolResult:
        return cls(success=True, payload=payload, message=message)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    def to_json(self) -> str:
        """Serialise for a ``tool`` role turn."""
        body: dict[str, Any] = {"success": self.success}
        if self.payload:
            body["data"] = self.payload
        if self.message:
            body["message"] = self.message
        if self.error:
            body["error"] = self.error
        return json.dumps(body, ensure_ascii=False, default=str)


@dataclasses.dataclass(slots=True)
class ModelReply:
    """Normalised completion response.

    Attributes:
        content: Assistant text (may be empty when only tools were requested).
        tool_calls: Tool invocations in the order the model emitted them.
        message: Provider-format assistant message to append to the context.
        model: Model tag reported by the provider.
    """

    content: str
    tool_calls: list[ToolInvocation]
    message: dict[str, Any]
    model: str = ""


@dataclasses.dataclass(slots=True)
class RiskSignal:
    """Weighted indicator used by the proactive check."""

    type: str
    severity: Literal["low", "medium", "high", "critical"]
    description: str
    weight: float


@dataclasses.dataclass(frozen=True, slots=True)
class ObservabilityRecord:
    """Append-only per-request log entry."""

    user_id: str
    function_name: str
    tools_called: tuple[str, ...]
    response_summary: str
    response_time_ms: int
    model_used: str
    intervention_triggered: bool
    input_summary: str = ""
    intervention_type: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "function_name": self.function_name,
            "tools_called": list(self.tools_called),
            "input_summary": self.input_summary,
            "response_summary": self.response_summary,
            "response_time_ms": self.response_time_ms,
            "model_used": self.model_used,
            "intervention_triggered": self.intervention_triggered,
            "intervention_type": self.intervention_type,
        }


@dataclasses.dataclass(slots=True)
class LoopOutcome:
    """Terminal output of one orchestration run."""

    response: str
    tools_used: list[str]
    response_time_ms: int
    iterations: int
    model_used: str
    intervention_triggered: bool = False
    terminated_by: str = "answer"
