"""coach/store.py

Record-store collaborators.

The executor only needs four narrow operations, every one of them scoped to
a single user:

    select(table, user_id, ...)   read rows owned by the user
    insert(table, row)            add a row (row must carry ``user_id``)
    update(table, id, user_id, ...) patch one row owned by the user
    get_profile(user_id)          fetch the user's profile row

Two implementations are provided:

- :class:`InMemoryRecordStore`: thread-safe dict-of-lists used by tests and
  the local CLI.
- :class:`SupabaseRecordStore`: PostgREST over ``httpx`` against a Supabase
  project using the service-role key.
"""

from __future__ import annotations

# Standard Library
import copy
import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Protocol

# Third-Party Libraries
import httpx

# Local Modules
from coach.errors import StoreError

logger = logging.getLogger(__name__)

Row = dict[str, Any]

# Profiles are keyed by the auth user id itself.
_USER_COLUMN: dict[str, str] = {"profiles": "id"}


def user_column(table: str) -> str:
    """Return the column that scopes ``table`` to a user."""
    return _USER_COLUMN.get(table, "user_id")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 value from a row; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class RecordStore(Protocol):
    """Per-user table operations used by the tool executor."""

    def select(
        self,
        table: str,
        user_id: str,
        *,
        eq: dict[str, Any] | None = None,
        since: tuple[str, str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    def insert(self, table: str, row: Row) -> Row: ...

    def update(self, table: str, record_id: str, user_id: str, changes: Row) -> Row: ...

    def get_profile(self, user_id: str) -> Row | None: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryRecordStore:
    """Thread-safe in-process store.

    Rows are kept per table in insertion order.  Timestamps are ISO-8601
    UTC strings so ordering and ``since`` filters compare lexically, the same
    way PostgREST compares ``timestamptz`` text.
    """

    def __init__(
        self,
        seed: dict[str, list[Row]] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._tables: dict[str, list[Row]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        for table, rows in (seed or {}).items():
            for row in rows:
                self.insert(table, row)

    def select(
        self,
        table: str,
        user_id: str,
        *,
        eq: dict[str, Any] | None = None,
        since: tuple[str, str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        owner = user_column(table)
        with self._lock:
            rows = [
                copy.deepcopy(r)
                for r in self._tables.get(table, [])
                if r.get(owner) == user_id
            ]

        for column, value in (eq or {}).items():
            rows = [r for r in rows if r.get(column) == value]
        if since is not None:
            column, threshold = since
            rows = [r for r in rows if r.get(column) is not None and r[column] >= threshold]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def insert(self, table: str, row: Row) -> Row:
        record = dict(row)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", self._clock().isoformat())
        with self._lock:
            self._tables.setdefault(table, []).append(record)
        return copy.deepcopy(record)

    def update(self, table: str, record_id: str, user_id: str, changes: Row) -> Row:
        owner = user_column(table)
        with self._lock:
            for record in self._tables.get(table, []):
                if record.get("id") == record_id and record.get(owner) == user_id:
                    record.update(changes)
                    return copy.deepcopy(record)
        raise StoreError(f"No {table} row {record_id!r} for this user.")

    def get_profile(self, user_id: str) -> Row | None:
        rows = self.select("profiles", user_id, limit=1)
        return rows[0] if rows else None

    def rows(self, table: str) -> list[Row]:
        """All rows of ``table`` regardless of owner (test inspection only)."""
        with self._lock:
            return copy.deepcopy(self._tables.get(table, []))


# ---------------------------------------------------------------------------
# Supabase / PostgREST implementation
# ---------------------------------------------------------------------------


def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class SupabaseRecordStore:
    """PostgREST client for a Supabase project.

    Uses the service-role key, so every request adds an explicit owner filter;
    the store never returns or touches rows of another user.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not base_url or not service_key:
            raise StoreError(
                "Supabase store is not configured.",
                details="Set SUPABASE_URL and SUPABASE_SERVICE_KEY.",
            )
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _request(self, method: str, table: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, f"/{table}", **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "[store] %s %s -> HTTP %d: %s",
                method, table, exc.response.status_code, exc.response.text[:200],
            )
            raise StoreError(
                f"Store request failed for {table}.",
                details=f"HTTP {exc.response.status_code}",
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("[store] %s %s transport error: %s", method, table, exc)
            raise StoreError(f"Store request failed for {table}.", details=str(exc)) from exc
        return response.json() if response.content else None

    def select(
        self,
        table: str,
        user_id: str,
        *,
        eq: dict[str, Any] | None = None,
        since: tuple[str, str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        params: dict[str, str] = {"select": "*", user_column(table): f"eq.{user_id}"}
        for column, value in (eq or {}).items():
            params[column] = f"eq.{_filter_value(value)}"
        if since is not None:
            params[since[0]] = f"gte.{since[1]}"
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        return list(self._request("GET", table, params=params) or [])

    def insert(self, table: str, row: Row) -> Row:
        data = self._request(
            "POST", table, json=row, headers={"Prefer": "return=representation"}
        )
        return data[0] if isinstance(data, list) and data else dict(row)

    def update(self, table: str, record_id: str, user_id: str, changes: Row) -> Row:
        data = self._request(
            "PATCH",
            table,
            params={"id": f"eq.{record_id}", user_column(table): f"eq.{user_id}"},
            json=changes,
            headers={"Prefer": "return=representation"},
        )
        if not data:
            raise StoreError(f"No {table} row {record_id!r} for this user.")
        return data[0]

    def get_profile(self, user_id: str) -> Row | None:
        rows = self.select("profiles", user_id, limit=1)
        return rows[0] if rows else None

    def close(self) -> None:
        self._client.close()
