#!/usr/bin/env python3
"""coach/cli.py

Interactive terminal client for the recovery coach, built on Rich.

Runs the same orchestration loop as the HTTP API against a local record
store, so the tool loop can be exercised without a web client.
"""

from __future__ import annotations

# Standard Library
import sys
from datetime import timedelta
from typing import NoReturn

# Third-Party Libraries
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.theme import Theme

# Local Modules
from coach.config import CoachSettings
from coach.errors import CoachError
from coach.executor import ToolExecutor
from coach.llm import build_completion_client
from coach.loop import AgentLoop
from coach.observability import ObservabilityLogger
from coach.prompts import build_system_prompt
from coach.risk import ProactiveChecker
from coach.store import InMemoryRecordStore, RecordStore, SupabaseRecordStore, utc_now

custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "user": "bold blue",
        "assistant": "green",
    }
)
console = Console(theme=custom_theme)


def display_help() -> None:
    """Display available commands."""
    help_text = """
**Available Commands:**

- `/help` - Show this help message
- `/clear` - Forget the conversation so far
- `/stats` - Show your progress and what the coach can see
- `/check` - Run a proactive wellbeing check
- `/quit` or `/exit` - Leave
- Any other text - Talk to your coach

**Tips:**

- Be specific when you want something saved, e.g. "log a check-in, I'm feeling good"
- In an emergency call or text **988**
    """
    console.print(Panel(Markdown(help_text), title="Help", border_style="cyan"))


def display_stats(store: RecordStore, user_id: str, history: list[dict[str, str]], max_turns: int) -> None:
    """Display the user's progress and the context window usage."""
    profile = store.get_profile(user_id) or {}
    goals = [g for g in store.select("goals", user_id) if not g.get("completed")]

    table = Table(show_header=False, border_style="cyan")
    table.add_row("Pseudonym", str(profile.get("pseudonym") or "-"))
    table.add_row("Current streak", str(profile.get("current_streak") or 0))
    table.add_row("Longest streak", str(profile.get("longest_streak") or 0))
    table.add_row("Open goals", ", ".join(g.get("title", "") for g in goals) or "-")
    table.add_row("Check-ins", str(len(store.select("check_ins", user_id))))
    table.add_row("Context turns", f"{min(len(history), max_turns)}/{max_turns}")
    console.print(Panel(table, title="Statistics", border_style="cyan"))


def build_store(settings: CoachSettings, user_id: str) -> RecordStore:
    """Supabase when configured, otherwise a seeded in-memory store."""
    if settings.store_backend == "supabase" and settings.supabase_url:
        return SupabaseRecordStore(settings.supabase_url, settings.supabase_service_key)
    now = utc_now()
    return InMemoryRecordStore(
        seed={
            "profiles": [
                {
                    "id": user_id,
                    "pseudonym": "Friend",
                    "addiction_type": "alcohol",
                    "sobriety_start_date": (now - timedelta(days=12)).isoformat(),
                    "current_streak": 0,
                    "longest_streak": 0,
                }
            ]
        }
    )


def main() -> NoReturn:
    """Main entry point for the recovery coach CLI."""
    load_dotenv()
    settings = CoachSettings()
    user_id = settings.dev_user_id

    console.print("Initializing recovery coach...", style="info")
    console.print(f"Provider: {settings.llm_provider} @ {settings.llm_base_url}", style="info")
    console.print(f"Model: {settings.llm_model}", style="info")

    try:
        store = build_store(settings, user_id)
        client = build_completion_client(settings)
    except CoachError as exc:
        console.print(f"Failed to initialize: {exc}", style="error")
        sys.exit(1)

    loop = AgentLoop(
        client=client,
        executor=ToolExecutor(store),
        max_iterations=settings.max_iterations,
        history_turns=settings.history_turns,
        max_message_length=settings.max_message_length,
    )
    observability = ObservabilityLogger(store)
    history: list[dict[str, str]] = []

    console.print("Coach ready. Type [bold]/help[/bold] for commands.\n", style="success")

    while True:
        try:
            user_input = Prompt.ask("[bold blue]You[/bold blue]").strip()
            if not user_input:
                continue

            command = user_input.lower()
            if command in ("/quit", "/exit"):
                console.print("\nTake care. Goodbye!\n", style="success")
                sys.exit(0)
            elif command == "/help":
                display_help()
                continue
            elif command == "/clear":
                history.clear()
                console.print("Conversation cleared.\n", style="success")
                continue
            elif command == "/stats":
                display_stats(store, user_id, history, settings.history_turns)
                continue
            elif command == "/check":
                with console.status("[bold green]Checking in...", spinner="dots"):
                    result = ProactiveChecker(store, client, observability).run(user_id)
                if result.get("needs_intervention"):
                    console.print(Panel(result["intervention"]["message"], border_style="yellow"))
                else:
                    console.print(f"All good (risk {result['risk_score']:.2f}).\n", style="success")
                continue

            console.print()
            with console.status("[bold green]Thinking...", spinner="dots"):
                outcome = loop.run(
                    user_id, user_input, history, build_system_prompt(store, user_id, utc_now())
                )
            observability.record(
                user_id=user_id,
                function_name="cli",
                tools_called=outcome.tools_used,
                input_summary=user_input,
                response_summary=outcome.response,
                response_time_ms=outcome.response_time_ms,
                model_used=outcome.model_used,
                intervention_triggered=outcome.intervention_triggered,
            )

            history.append({"role": "user", "content": user_input})
            history.append({"role": "assistant", "content": outcome.response})

            subtitle = f"tools: {', '.join(outcome.tools_used)}" if outcome.tools_used else None
            console.print(
                Panel(
                    Markdown(outcome.response),
                    title="[bold green]Coach[/bold green]",
                    subtitle=subtitle,
                    border_style="green",
                )
            )
            console.print()

        except KeyboardInterrupt:
            console.print("\n\nInterrupted. Goodbye!\n", style="warning")
            sys.exit(0)

        except CoachError as exc:
            console.print(f"\n{exc.message}\n", style="error")
            console.print("You can keep chatting or type /quit to exit.\n", style="info")


if __name__ == "__main__":
    main()
