"""coach/llm.py

Chat-completion clients.

Both clients return a normalised :class:`ModelReply` and raise
:class:`ModelAPIError` (or its 429/402 subclasses) on failure, so the
orchestration loop never sees provider-specific types.

- :class:`GatewayCompletionClient` posts to any OpenAI-compatible
  ``/chat/completions`` endpoint with ``httpx``.
- :class:`OllamaCompletionClient` talks to a local Ollama server through the
  ``ollama`` Python client.
"""

from __future__ import annotations

# Standard Library
import logging
from typing import Any, Protocol

# Third-Party Libraries
import httpx
from ollama import Client, ResponseError

# Local Modules
from coach.config import CoachSettings
from coach.errors import ModelAPIError, model_error_for_status
from coach.models import ModelReply, ToolInvocation

logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    """Minimal interface the orchestration loop depends on."""

    model: str

    def complete(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> ModelReply: ...

    def tool_message(self, call: ToolInvocation, content: str) -> dict[str, Any]: ...


def _str_content(val: Any) -> str:
    """Flatten message content that may arrive as a list of parts."""
    if val is None:
        return ""
    if isinstance(val, str):
        return val
    if isinstance(val, list):
        return "".join(
            part.get("text", "") for part in val if isinstance(part, dict)
        )
    return str(val)


# ---------------------------------------------------------------------------
# OpenAI-compatible gateway
# ---------------------------------------------------------------------------


class GatewayCompletionClient:
    """Client for an OpenAI-compatible chat-completions gateway.

    Args:
        base_url: Gateway base URL (``/chat/completions`` is appended).
        model: Model tag sent with every request.
        api_key: Bearer key; omitted from headers when empty.
        temperature: Sampling temperature.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        temperature: float = 0.4,
        timeout: float = 60.0,
    ) -> None:
        self.completions_url = base_url.rstrip("/") + "/chat/completions"
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.timeout = timeout

    def complete(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> ModelReply:
        """Send one completion request.

        Args:
            messages: Conversation context in OpenAI message format.
            tools: Function schemas offered for this call (may be empty).

        Returns:
            The parsed assistant reply.

        Raises:
            ModelAPIError: On transport failure or a non-2xx status.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": False,
        }
        if tools:
            payload["tools"] = tools
        payload["tool_choice"] = "auto" if tools else "none"

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info(
            "[gateway] model=%r url=%s messages=%d tools=%d",
            self.model, self.completions_url, len(messages), len(tools),
        )
        try:
            response = httpx.post(
                self.completions_url, json=payload, headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            logger.error("[gateway] transport error: %s", exc)
            raise ModelAPIError(details=str(exc)) from exc

        if response.status_code >= 400:
            logger.error("[gateway] HTTP %d: %s", response.status_code, response.text[:300])
            raise model_error_for_status(response.status_code, response.text)

        try:
            data = response.json()
            raw_msg: dict[str, Any] = (data.get("choices") or [{}])[0].get("message") or {}
            tool_calls = [
                ToolInvocation(
                    id=str(tc.get("id") or f"call_{index}"),
                    name=(tc.get("function") or {}).get("name", ""),
                    raw_arguments=(tc.get("function") or {}).get("arguments"),
                )
                for index, tc in enumerate(raw_msg.get("tool_calls") or [])
            ]
            content = _str_content(raw_msg.get("content")).strip()
        except (ValueError, AttributeError, IndexError, TypeError) as exc:
            logger.error("[gateway] unparseable completion response: %s", exc)
            raise ModelAPIError(details=f"Unparseable completion response: {exc}") from exc

        message: dict[str, Any] = {"role": "assistant", "content": content}
        if tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.raw_arguments or "{}"},
                }
                for call in tool_calls
            ]

        logger.info("[gateway] content=%d chars tool_calls=%s", len(content), [c.name for c in tool_calls])
        return ModelReply(
            content=content,
            tool_calls=tool_calls,
            message=message,
            model=str(data.get("model") or self.model),
        )

    def tool_message(self, call: ToolInvocation, content: str) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": content}


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


class OllamaCompletionClient:
    """Client for a local Ollama server.

    Ollama returns tool arguments already decoded and assigns no call ids, so
    ids are synthesised from the call position.
    """

    def __init__(
        self,
        host: str,
        model: str,
        temperature: float = 0.4,
        timeout: float = 60.0,
        client: Client | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        # The ollama client wants the bare host, not the OpenAI-compat path.
        host = host.rstrip("/")
        if host.endswith("/v1"):
            host = host[: -len("/v1")]
        self.host = host
        self.client = client or Client(host=host, timeout=timeout)

    def complete(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> ModelReply:
        logger.info(
            "[ollama] model=%r host=%s messages=%d tools=%d",
            self.model, self.host, len(messages), len(tools),
        )
        try:
            response = self.client.chat(
                model=self.model,
                messages=messages,
                tools=tools or None,
                options={"temperature": self.temperature},
            )
        except ResponseError as exc:
            logger.error("[ollama] HTTP %s: %s", exc.status_code, exc.error)
            raise model_error_for_status(exc.status_code, str(exc.error)) from exc
        except (httpx.HTTPError, ConnectionError) as exc:
            logger.error("[ollama] transport error: %s", exc)
            raise ModelAPIError(details=str(exc)) from exc

        raw_msg = response["message"]
        content = (getattr(raw_msg, "content", None) or "").strip()
        tool_calls = [
            ToolInvocation(
                id=f"call_{index}",
                name=tc.function.name,
                raw_arguments=dict(tc.function.arguments) if tc.function.arguments else {},
            )
            for index, tc in enumerate(getattr(raw_msg, "tool_calls", None) or [])
        ]

        message: dict[str, Any] = {"role": "assistant", "content": content}
        if tool_calls:
            message["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.raw_arguments}}
                for call in tool_calls
            ]

        return ModelReply(
            content=content,
            tool_calls=tool_calls,
            message=message,
            model=str(getattr(response, "model", None) or self.model),
        )

    def tool_message(self, call: ToolInvocation, content: str) -> dict[str, Any]:
        return {"role": "tool", "tool_name": call.name, "content": content}


def build_completion_client(settings: CoachSettings) -> CompletionClient:
    """Create the completion client selected by ``settings.llm_provider``."""
    if settings.llm_provider == "ollama":
        return OllamaCompletionClient(
            host=settings.llm_base_url,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout,
        )
    return GatewayCompletionClient(
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        api_key=settings.llm_api_key,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout,
    )
