"""coach/auth.py

Identity providers: resolve an opaque bearer token to a user id.
"""

from __future__ import annotations

# Standard Library
import hmac
import logging
from typing import Protocol

# Third-Party Libraries
import httpx

# Local Modules
from coach.errors import AuthError

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    def resolve_user(self, token: str) -> str: ...


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthError: If the header is missing or not a bearer credential.
    """
    if not authorization:
        raise AuthError(details="missing Authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError(details="expected a Bearer token")
    return token.strip()


class SupabaseAuthProvider:
    """Looks the token up with Supabase Auth (``GET /auth/v1/user``)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"apikey": api_key},
            timeout=timeout,
            transport=transport,
        )

    def resolve_user(self, token: str) -> str:
        try:
            response = self._client.get(
                "/auth/v1/user", headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as exc:
            logger.error("[auth] identity lookup failed: %s", exc)
            raise AuthError(details=str(exc)) from exc

        if response.status_code != 200:
            logger.info("[auth] token rejected (HTTP %d)", response.status_code)
            raise AuthError(details=f"HTTP {response.status_code}")

        user_id = (response.json() or {}).get("id")
        if not user_id:
            raise AuthError(details="no user id in auth response")
        return str(user_id)

    def close(self) -> None:
        self._client.close()


class StaticTokenAuthProvider:
    """Accepts one fixed token (local development and tests)."""

    def __init__(self, token: str, user_id: str) -> None:
        if not token:
            raise ValueError("StaticTokenAuthProvider needs a non-empty token")
        self._token = token
        self.user_id = user_id

    def resolve_user(self, token: str) -> str:
        if not hmac.compare_digest(token, self._token):
            raise AuthError(details="token does not match dev token")
        return self.user_id
