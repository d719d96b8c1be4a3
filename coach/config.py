"""coach/config.py

Runtime configuration for the recovery coach service.

All values are loaded from environment variables (or a ``.env`` file) by
pydantic-settings.  Variable names are the upper-cased field names, e.g.
``LLM_BASE_URL`` or ``MAX_ITERATIONS``.
"""

from __future__ import annotations

# Standard Library
from functools import lru_cache
from typing import Literal

# Third-Party Libraries
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoachSettings(BaseSettings):
    """Runtime configuration loaded from environment variables / .env file.

    Attributes:
        llm_provider: ``"gateway"`` for any OpenAI-compatible chat-completions
            endpoint, ``"ollama"`` for a local Ollama server.
        llm_base_url: Base URL of the completion API.
        llm_api_key: Bearer key sent to the gateway (unused by Ollama).
        llm_model: Model tag used for every completion call.
        llm_temperature: Sampling temperature.
        llm_timeout: HTTP timeout in seconds for one completion call.
        max_iterations: Hard cap on model calls per chat request.
        history_turns: Number of prior conversation turns kept in context.
        max_message_length: Characters kept from each user message.
        store_backend: ``"supabase"`` (PostgREST) or ``"memory"``.
        supabase_url: Project URL for the record store and auth.
        supabase_service_key: Service-role key for store/auth requests.
        dev_token: Bearer token accepted by the static auth provider.
        dev_user_id: User id the static auth provider resolves to.
        api_host: Bind host for the HTTP API.
        api_port: Bind port for the HTTP API.
        worker_threads: Thread-pool size for running chat loops.
        log_level: Root log level name.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    llm_provider: Literal["gateway", "ollama"] = Field(
        "gateway",
        description="Completion backend: OpenAI-compatible gateway or Ollama.",
    )
    llm_base_url: str = Field(
        "http://localhost:11434/v1",
        description="Base URL of the completion API.",
    )
    llm_api_key: str = Field("", description="Bearer key for the gateway.")
    llm_model: str = Field(
        "llama3.1:8b-instruct-q4_K_M",
        description="Model tag used for chat completions.",
    )
    llm_temperature: float = Field(0.4, description="Sampling temperature.")
    llm_timeout: float = Field(
        60.0, description="Seconds before a completion call is abandoned."
    )

    max_iterations: int = Field(
        5,
        ge=1,
        description=(
            "Maximum model calls per request.  Bounds runaway tool-calling "
            "cycles regardless of model behaviour."
        ),
    )
    history_turns: int = Field(
        10, ge=0, description="Prior conversation turns kept in context."
    )
    max_message_length: int = Field(
        2000, ge=1, description="Characters kept from each user message."
    )

    store_backend: Literal["supabase", "memory"] = Field(
        "supabase",
        description="Record store implementation.",
    )
    supabase_url: str = Field("", description="Supabase project URL.")
    supabase_service_key: str = Field("", description="Service-role key.")

    dev_token: str = Field(
        "",
        description=(
            "Static bearer token for local development.  When set together "
            "with the memory store, Supabase auth is bypassed."
        ),
    )
    dev_user_id: str = Field("local-user", description="User id for dev_token.")

    api_host: str = Field("0.0.0.0", description="HTTP bind host.")
    api_port: int = Field(8300, description="HTTP bind port.")
    worker_threads: int = Field(
        4, ge=1, description="Threads available for concurrent chat loops."
    )
    log_level: str = Field("INFO", description="Root log level.")


@lru_cache(maxsize=1)
def get_settings() -> CoachSettings:
    """Return the process-wide settings instance (loaded once)."""
    return CoachSettings()
