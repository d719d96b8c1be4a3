"""coach/api.py

FastAPI HTTP interface for the recovery coach.

Endpoints:
  GET  /health           liveness probe
  POST /chat             one coach turn: sanitize, gate, tool loop, answer
  POST /proactive-check  risk assessment and intervention message
"""

from __future__ import annotations

# Standard Library
import asyncio
import dataclasses
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import lru_cache
from typing import Any

# Third-Party Libraries
import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

# Local Modules
from coach.auth import (
    IdentityProvider,
    StaticTokenAuthProvider,
    SupabaseAuthProvider,
    bearer_token,
)
from coach.config import CoachSettings, get_settings
from coach.errors import CoachError, InvalidMessageError
from coach.executor import ToolExecutor
from coach.gate import HeuristicWriteGate, WriteToolGate
from coach.llm import CompletionClient, build_completion_client
from coach.loop import AgentLoop
from coach.observability import ObservabilityLogger
from coach.prompts import build_system_prompt
from coach.risk import ProactiveChecker
from coach.sanitizer import sanitize
from coach.store import InMemoryRecordStore, RecordStore, SupabaseRecordStore, utc_now

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup for the service entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class CoachServices:
    """Everything a request needs; swapped out wholesale in tests."""

    settings: CoachSettings
    store: RecordStore
    client: CompletionClient
    auth: IdentityProvider
    gate: WriteToolGate = dataclasses.field(default_factory=HeuristicWriteGate)
    clock: Callable[[], datetime] = utc_now

    @property
    def observability(self) -> ObservabilityLogger:
        return ObservabilityLogger(self.store)

    def build_loop(self) -> AgentLoop:
        return AgentLoop(
            client=self.client,
            executor=ToolExecutor(self.store, clock=self.clock),
            gate=self.gate,
            max_iterations=self.settings.max_iterations,
            history_turns=self.settings.history_turns,
            max_message_length=self.settings.max_message_length,
        )


def build_services(settings: CoachSettings) -> CoachServices:
    """Wire store, completion client and identity provider from settings."""
    store: RecordStore
    if settings.store_backend == "memory":
        store = InMemoryRecordStore()
    else:
        store = SupabaseRecordStore(settings.supabase_url, settings.supabase_service_key)

    auth: IdentityProvider
    if settings.dev_token:
        logger.warning("[api] DEV_TOKEN set: using static token auth for user %s", settings.dev_user_id)
        auth = StaticTokenAuthProvider(settings.dev_token, settings.dev_user_id)
    elif settings.supabase_url:
        auth = SupabaseAuthProvider(settings.supabase_url, settings.supabase_service_key)
    else:
        raise CoachError(
            "No identity provider configured.",
            details="Set SUPABASE_URL or DEV_TOKEN.",
        )

    return CoachServices(
        settings=settings,
        store=store,
        client=build_completion_client(settings),
        auth=auth,
    )


@lru_cache(maxsize=1)
def get_services() -> CoachServices:
    return build_services(get_settings())


def current_user(
    authorization: str | None = Header(default=None),
    services: CoachServices = Depends(get_services),
) -> str:
    """Resolve the bearer token to a user id (401 on failure)."""
    return services.auth.resolve_user(bearer_token(authorization))


# ---------------------------------------------------------------------------
# Thread pool for running the synchronous orchestration loop
# ---------------------------------------------------------------------------
_executor = ThreadPoolExecutor(
    max_workers=get_settings().worker_threads, thread_name_prefix="coach-loop"
)

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Recovery Coach",
    version="0.1.0",
    description=(
        "AI recovery coach. Turns chat messages into validated reads and "
        "writes of the user's recovery data through a bounded tool loop."
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CoachError)
async def coach_error_handler(request: Request, exc: CoachError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[api] %s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("[api] %s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("[api] %s %s -> 400: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=400, content=InvalidMessageError().to_dict())


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Left untyped so an empty or non-string message maps to 400, not 422.
    message: Any = Field(None, description="The user's chat message.")
    conversation_history: list[Any] | None = Field(
        default_factory=list,
        alias="conversationHistory",
        description="Prior turns as [{role, content}], oldest first.",
    )


class ChatResponse(BaseModel):
    response: str
    tools_used: list[str]
    response_time_ms: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok", "server": "recovery-coach"}


@app.post("/chat", response_model=ChatResponse, tags=["coach"])
async def chat(
    body: ChatRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    services: CoachServices = Depends(get_services),
) -> ChatResponse:
    """Run one coach turn for the authenticated user.

    The observability record is written after the response is sent; a
    logging failure never changes the answer.
    """

    def _run() -> Any:
        system_prompt = build_system_prompt(services.store, user_id, services.clock())
        return services.build_loop().run(
            user_id, body.message, body.conversation_history or [], system_prompt
        )

    loop = asyncio.get_running_loop()
    outcome = await loop.run_in_executor(_executor, _run)

    background_tasks.add_task(
        services.observability.record,
        user_id=user_id,
        function_name="chat-with-ai",
        tools_called=outcome.tools_used,
        input_summary=sanitize(body.message, 200),
        response_summary=outcome.response,
        response_time_ms=outcome.response_time_ms,
        model_used=outcome.model_used,
        intervention_triggered=outcome.intervention_triggered,
    )
    return ChatResponse(
        response=outcome.response,
        tools_used=outcome.tools_used,
        response_time_ms=outcome.response_time_ms,
    )


@app.post("/proactive-check", tags=["coach"])
async def proactive_check(
    user_id: str = Depends(current_user),
    services: CoachServices = Depends(get_services),
) -> dict[str, Any]:
    """Assess relapse risk and return (or create) an intervention."""
    checker = ProactiveChecker(
        services.store, services.client, services.observability, clock=services.clock
    )
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, checker.run, user_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_api() -> None:
    """Start the FastAPI server via uvicorn."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting recovery-coach API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        "coach.api:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_api()
