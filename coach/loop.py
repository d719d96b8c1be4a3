"""coach/loop.py

Bounded tool-orchestration loop.

One chat request runs as an explicit state machine:

    AWAITING_MODEL  --reply has tool calls-->  EXECUTING_TOOLS
    EXECUTING_TOOLS --all calls answered--->   AWAITING_MODEL
    AWAITING_MODEL  --plain answer--------->   DONE
    any             --cap / failure / crisis-> DONE

The iteration counter counts model calls and is checked before every call,
so the loop never makes more than ``max_iterations`` of them.  Only an error
on the very first model call propagates; later failures degrade to the best
partial answer.
"""

from __future__ import annotations

# Standard Library
import logging
import time
from enum import StrEnum
from typing import Any, Final

# Local Modules
from coach.errors import InvalidMessageError, ModelAPIError, ToolArgumentError
from coach.executor import ToolExecutor, parse_arguments
from coach.gate import HeuristicWriteGate, WriteToolGate
from coach.history import ConversationContext
from coach.llm import CompletionClient
from coach.models import LoopOutcome, ToolInvocation, ToolResult
from coach.sanitizer import sanitize, sanitize_history
from coach.tools import active_tools, tool_schemas

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE: Final[str] = (
    "I'm here for you, but I had trouble putting my thoughts together just now. "
    "Could you tell me a little more about what's on your mind?"
)


class LoopState(StrEnum):
    """States of one orchestration run."""

    AWAITING_MODEL = "AWAITING_MODEL"
    EXECUTING_TOOLS = "EXECUTING_TOOLS"
    DONE = "DONE"


class AgentLoop:
    """Runs the model <-> tool cycle for a single chat request.

    Args:
        client: Completion client.
        executor: Tool executor bound to a record store.
        gate: Policy deciding whether write tools are offered.
        max_iterations: Hard cap on model calls per request.
        history_turns: Prior conversation turns kept in context.
        max_message_length: Characters kept from each user-authored string.
    """

    def __init__(
        self,
        client: CompletionClient,
        executor: ToolExecutor,
        gate: WriteToolGate | None = None,
        max_iterations: int = 5,
        history_turns: int = 10,
        max_message_length: int = 2000,
    ) -> None:
        self.client = client
        self.executor = executor
        self.gate = gate or HeuristicWriteGate()
        self.max_iterations = max_iterations
        self.history_turns = history_turns
        self.max_message_length = max_message_length

    def run(
        self,
        user_id: str,
        message: Any,
        history: Any = None,
        system_prompt: str = "",
    ) -> LoopOutcome:
        """Answer one user message.

        Args:
            user_id: Authenticated user; every tool call is scoped to it.
            message: Raw user message (sanitized here, gated unsanitized).
            history: Prior ``[{"role", "content"}]`` turns from the client.
            system_prompt: Pinned system message.

        Returns:
            The final answer plus the tools actually executed.

        Raises:
            InvalidMessageError: If the message is empty after sanitization.
            ModelAPIError: If the first model call fails.
        """
        started = time.perf_counter()

        clean_message = sanitize(message, self.max_message_length)
        if not clean_message:
            raise InvalidMessageError()

        write_enabled = isinstance(message, str) and self.gate.should_enable_write_tools(message)
        tools = active_tools(include_write=write_enabled)
        active_names = frozenset(tool.name for tool in tools)
        schemas = tool_schemas(tools)

        context = ConversationContext(max_turns=self.history_turns)
        if system_prompt:
            context.set_system_message(system_prompt)
        context.extend_history(
            sanitize_history(history, self.history_turns, self.max_message_length)
        )
        context.append({"role": "user", "content": clean_message})

        state = LoopState.AWAITING_MODEL
        iterations = 0
        pending: list[ToolInvocation] = []
        tools_used: list[str] = []
        intervention_triggered = False
        model_used = self.client.model
        response = ""
        terminated_by = "answer"

        logger.info(
            "[loop] start user=%s write_tools=%s history=%d",
            user_id, write_enabled, context.history_count(),
        )

        while state is not LoopState.DONE:
            if state is LoopState.AWAITING_MODEL:
                if iterations >= self.max_iterations:
                    logger.warning("[loop] iteration cap (%d) reached", self.max_iterations)
                    response = context.last_assistant_content() or FALLBACK_RESPONSE
                    terminated_by = "iteration_cap"
                    state = LoopState.DONE
                    continue

                try:
                    reply = self.client.complete(context.get_context(), schemas)
                except ModelAPIError as exc:
                    if iterations == 0:
                        raise
                    logger.warning("[loop] continuation call failed: %s", exc)
                    response = context.last_assistant_content() or FALLBACK_RESPONSE
                    terminated_by = "model_error"
                    state = LoopState.DONE
                    continue

                iterations += 1
                model_used = reply.model or model_used
                context.append(reply.message)

                if reply.tool_calls:
                    pending = list(reply.tool_calls)
                    state = LoopState.EXECUTING_TOOLS
                else:
                    response = reply.content or context.last_assistant_content() or FALLBACK_RESPONSE
                    state = LoopState.DONE

            elif state is LoopState.EXECUTING_TOOLS:
                crisis_message: str | None = None
                for call in pending:
                    result, executed = self._run_tool(call, user_id, active_names)
                    context.append(self.client.tool_message(call, result.to_json()))
                    if executed:
                        tools_used.append(call.name)
                    if result.success and result.payload.get("intervention_triggered"):
                        intervention_triggered = True
                    if result.success and result.payload.get("crisis"):
                        crisis_message = result.message
                pending = []

                if crisis_message:
                    logger.warning("[loop] crisis resources returned; bypassing model")
                    response = crisis_message
                    intervention_triggered = True
                    terminated_by = "crisis"
                    state = LoopState.DONE
                else:
                    state = LoopState.AWAITING_MODEL

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "[loop] done user=%s iterations=%d tools=%s terminated_by=%s in %dms",
            user_id, iterations, tools_used, terminated_by, elapsed_ms,
        )
        return LoopOutcome(
            response=response,
            tools_used=tools_used,
            response_time_ms=elapsed_ms,
            iterations=iterations,
            model_used=model_used,
            intervention_triggered=intervention_triggered,
            terminated_by=terminated_by,
        )

    def _run_tool(
        self,
        call: ToolInvocation,
        user_id: str,
        active_names: frozenset[str],
    ) -> tuple[ToolResult, bool]:
        """Execute one invocation; returns the result and whether it ran."""
        if call.name not in active_names:
            logger.warning("[loop] refusing inactive tool %r", call.name)
            return (
                ToolResult.fail(
                    f"Tool '{call.name}' is not available for this message. "
                    "Ask the user for the details you need instead."
                ),
                False,
            )

        try:
            arguments = parse_arguments(call.raw_arguments)
            result = self.executor.execute(call.name, arguments, user_id)
        except ToolArgumentError as exc:
            logger.warning("[loop] skipping %s: %s", call.name, exc)
            return ToolResult.fail(f"Invalid arguments: {exc.message}"), False
        return result, True
