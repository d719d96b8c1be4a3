"""coach/errors.py

Exception hierarchy for the recovery coach.

Every exception carries a human-readable ``message``, optional ``details``
and the HTTP status the API layer should answer with.  Only input errors,
auth errors and a failed *first* model call ever reach the caller; the
orchestration loop converts everything else into degraded responses.
"""

from __future__ import annotations

# Standard Library
from typing import Any


class CoachError(Exception):
    """Base exception for all coach errors.

    Attributes:
        message: Human-readable error message (safe to show to end users).
        details: Optional extra context for logs.
        status_code: HTTP status the API maps this error to.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API error body."""
        return {"error": self.message}


class InvalidMessageError(CoachError):
    """The chat message is empty after sanitization."""

    status_code = 400

    def __init__(self, message: str = "Invalid message", details: str | None = None) -> None:
        super().__init__(message, details)


class AuthError(CoachError):
    """Missing or invalid bearer token."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: str | None = None) -> None:
        super().__init__(message, details)


class ModelAPIError(CoachError):
    """The completion API failed (non-2xx status or transport error).

    Attributes:
        upstream_status: HTTP status returned by the provider, or ``None``
            for network failures.
    """

    status_code = 500

    def __init__(
        self,
        message: str = "Failed to get AI response",
        details: str | None = None,
        upstream_status: int | None = None,
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(message, details)


class RateLimitError(ModelAPIError):
    """Provider answered 429."""

    status_code = 429

    def __init__(self, details: str | None = None) -> None:
        super().__init__(
            "Rate limits exceeded. Please try again later.",
            details,
            upstream_status=429,
        )


class QuotaExceededError(ModelAPIError):
    """Provider answered 402 (credits exhausted)."""

    status_code = 402

    def __init__(self, details: str | None = None) -> None:
        super().__init__(
            "AI usage limit reached. Please add credits to continue.",
            details,
            upstream_status=402,
        )


class StoreError(CoachError):
    """A record-store operation failed."""

    status_code = 500


class ToolArgumentError(CoachError):
    """Tool arguments are malformed or fail schema validation."""

    status_code = 400


def model_error_for_status(status: int, body: str = "") -> ModelAPIError:
    """Map an upstream HTTP status onto the matching ModelAPIError subclass.

    Args:
        status: HTTP status code returned by the completion API.
        body: Response body, kept as details for logging.

    Returns:
        A RateLimitError (429), QuotaExceededError (402) or generic
        ModelAPIError for any other status.
    """
    details = f"HTTP {status}: {body[:300]}" if body else f"HTTP {status}"
    if status == 429:
        return RateLimitError(details)
    if status == 402:
        return QuotaExceededError(details)
    return ModelAPIError(details=details, upstream_status=status)
