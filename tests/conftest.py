"""tests/conftest.py

Pytest configuration and shared fixtures for the recovery coach test suite.
"""

from __future__ import annotations

# Standard Library
import copy
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

# Third-Party Libraries
import pytest

# Local Modules
from coach.executor import ToolExecutor
from coach.models import ModelReply, ToolInvocation
from coach.store import InMemoryRecordStore

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class ScriptedClient:
    """Completion client that replays canned replies and records every call.

    Items in ``script`` are ModelReply objects or exceptions to raise.  Once
    the script is exhausted the last item is repeated.
    """

    def __init__(self, script: list[Any], model: str = "test-model") -> None:
        self.script = list(script)
        self.model = model
        self.calls: list[dict[str, Any]] = []

    def complete(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> ModelReply:
        self.calls.append({"messages": copy.deepcopy(messages), "tools": copy.deepcopy(tools)})
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]
        if isinstance(item, Exception):
            raise item
        return item

    def tool_message(self, call: ToolInvocation, content: str) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": content}

    def offered_tool_names(self, call_index: int = 0) -> set[str]:
        return {t["function"]["name"] for t in self.calls[call_index]["tools"]}


def make_reply(content: str = "", tool_calls: list[tuple[str, Any]] | None = None) -> ModelReply:
    """Build a ModelReply; tool call arguments given as dicts are JSON-encoded."""
    invocations = [
        ToolInvocation(
            id=f"call_{index}",
            name=name,
            raw_arguments=json.dumps(args) if isinstance(args, dict) else args,
        )
        for index, (name, args) in enumerate(tool_calls or [])
    ]
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if invocations:
        message["tool_calls"] = [
            {"id": c.id, "type": "function", "function": {"name": c.name, "arguments": c.raw_arguments}}
            for c in invocations
        ]
    return ModelReply(content=content, tool_calls=invocations, message=message, model="test-model")


@pytest.fixture
def fixed_now() -> datetime:
    """A fixed 'current' instant shared by store, executor and assertions."""
    return FIXED_NOW


@pytest.fixture
def clock(fixed_now: datetime) -> Callable[[], datetime]:
    return lambda: fixed_now


@pytest.fixture
def store(clock: Callable[[], datetime], fixed_now: datetime) -> InMemoryRecordStore:
    """In-memory store seeded with two users' profiles.

    Returns:
        Store where ``user-1`` is 12 days sober and ``user-2`` exists only to
        check that nothing leaks across users.
    """
    return InMemoryRecordStore(
        seed={
            "profiles": [
                {
                    "id": USER_ID,
                    "pseudonym": "River",
                    "addiction_type": "alcohol",
                    "sobriety_start_date": (fixed_now - timedelta(days=12)).isoformat(),
                    "current_streak": 0,
                    "longest_streak": 0,
                    "last_check_in": None,
                },
                {
                    "id": OTHER_USER_ID,
                    "pseudonym": "Sky",
                    "sobriety_start_date": (fixed_now - timedelta(days=100)).isoformat(),
                    "current_streak": 4,
                    "longest_streak": 9,
                },
            ]
        },
        clock=clock,
    )


@pytest.fixture
def executor(store: InMemoryRecordStore, clock: Callable[[], datetime]) -> ToolExecutor:
    return ToolExecutor(store, clock=clock)


@pytest.fixture
def scripted_client() -> Callable[..., ScriptedClient]:
    """Factory for ScriptedClient instances."""
    return ScriptedClient


@pytest.fixture
def reply() -> Callable[..., ModelReply]:
    """Factory for ModelReply instances (see ``make_reply``)."""
    return make_reply


@pytest.fixture
def sample_history() -> list[dict[str, str]]:
    """Prior conversation turns as a web client would send them."""
    return [
        {"role": "user", "content": "Hi coach"},
        {"role": "assistant", "content": "Hi River! How are you doing today?"},
        {"role": "user", "content": "A bit tired."},
        {"role": "assistant", "content": "Thanks for telling me. Rest matters."},
    ]
