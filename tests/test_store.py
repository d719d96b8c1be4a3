"""tests/test_store.py

Unit tests for the record stores (coach/store.py).
"""

from __future__ import annotations

# Standard Library
import json
from datetime import datetime, timezone
from typing import Any

# Third-Party Libraries
import httpx
import pytest

# Local Modules
from coach.errors import StoreError
from coach.store import InMemoryRecordStore, SupabaseRecordStore, parse_timestamp, user_column


class TestHelpers:
    def test_user_column(self) -> None:
        assert user_column("profiles") == "id"
        assert user_column("check_ins") == "user_id"

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2026-03-15T12:00:00+00:00", datetime(2026, 3, 15, 12, tzinfo=timezone.utc)),
            ("2026-03-15T12:00:00Z", datetime(2026, 3, 15, 12, tzinfo=timezone.utc)),
            ("2026-03-15T12:00:00", datetime(2026, 3, 15, 12, tzinfo=timezone.utc)),
            ("not a date", None),
            (None, None),
            ("", None),
        ],
    )
    def test_parse_timestamp(self, value: Any, expected: datetime | None) -> None:
        assert parse_timestamp(value) == expected


class TestInMemoryRecordStore:
    """Test suite for InMemoryRecordStore."""

    def test_select_is_scoped_to_user(self, store: InMemoryRecordStore) -> None:
        store.insert("goals", {"user_id": "user-1", "title": "mine"})
        store.insert("goals", {"user_id": "user-2", "title": "theirs"})

        assert [g["title"] for g in store.select("goals", "user-1")] == ["mine"]
        assert [g["title"] for g in store.select("goals", "user-2")] == ["theirs"]

    def test_insert_assigns_id_and_created_at(self, store: InMemoryRecordStore, fixed_now: datetime) -> None:
        row = store.insert("goals", {"user_id": "user-1", "title": "walk"})
        assert row["id"]
        assert row["created_at"] == fixed_now.isoformat()

    def test_eq_since_order_and_limit(self, store: InMemoryRecordStore) -> None:
        for day, status in [(10, "active"), (12, "completed"), (14, "active"), (13, "active")]:
            store.insert(
                "goals",
                {
                    "user_id": "user-1",
                    "status": status,
                    "created_at": f"2026-03-{day:02d}T00:00:00+00:00",
                },
            )

        rows = store.select(
            "goals",
            "user-1",
            eq={"status": "active"},
            since=("created_at", "2026-03-11T00:00:00+00:00"),
            order_by="created_at",
            descending=True,
            limit=1,
        )
        assert [r["created_at"][:10] for r in rows] == ["2026-03-14"]

    def test_returned_rows_are_copies(self, store: InMemoryRecordStore) -> None:
        store.insert("goals", {"user_id": "user-1", "title": "walk"})
        store.select("goals", "user-1")[0]["title"] = "changed"
        assert store.select("goals", "user-1")[0]["title"] == "walk"

    def test_update_own_row(self, store: InMemoryRecordStore) -> None:
        row = store.insert("goals", {"user_id": "user-1", "status": "active"})
        updated = store.update("goals", row["id"], "user-1", {"status": "completed"})
        assert updated["status"] == "completed"

    def test_update_other_users_row_fails(self, store: InMemoryRecordStore) -> None:
        row = store.insert("goals", {"user_id": "user-2", "status": "active"})
        with pytest.raises(StoreError):
            store.update("goals", row["id"], "user-1", {"status": "completed"})
        assert store.select("goals", "user-2")[0]["status"] == "active"

    def test_get_profile(self, store: InMemoryRecordStore) -> None:
        profile = store.get_profile("user-1")
        assert profile is not None
        assert profile["pseudonym"] == "River"
        assert store.get_profile("missing") is None


class TestSupabaseRecordStore:
    """Test suite for the PostgREST-backed store, using httpx.MockTransport."""

    def _store(self, handler: Any) -> SupabaseRecordStore:
        return SupabaseRecordStore(
            "https://project.supabase.co/",
            "service-key",
            transport=httpx.MockTransport(handler),
        )

    def test_requires_configuration(self) -> None:
        with pytest.raises(StoreError):
            SupabaseRecordStore("", "")

    def test_select_builds_filters(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": "g1"}])

        rows = self._store(handler).select(
            "goals",
            "user-1",
            eq={"status": "active", "acknowledged": False},
            since=("created_at", "2026-03-08T00:00:00+00:00"),
            order_by="created_at",
            descending=True,
            limit=5,
        )

        assert rows == [{"id": "g1"}]
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/goals"
        params = request.url.params
        assert params["user_id"] == "eq.user-1"
        assert params["status"] == "eq.active"
        assert params["acknowledged"] == "eq.false"
        assert params["created_at"] == "gte.2026-03-08T00:00:00+00:00"
        assert params["order"] == "created_at.desc"
        assert params["limit"] == "5"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["authorization"] == "Bearer service-key"

    def test_profile_scoped_by_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": "user-1", "pseudonym": "River"}])

        profile = self._store(handler).get_profile("user-1")
        assert profile == {"id": "user-1", "pseudonym": "River"}
        assert seen[0].url.params["id"] == "eq.user-1"

    def test_insert_returns_representation(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["prefer"] == "return=representation"
            body = json.loads(request.content)
            return httpx.Response(201, json=[{**body, "id": "new"}])

        row = self._store(handler).insert("journal_entries", {"user_id": "user-1", "content": "hi"})
        assert row == {"user_id": "user-1", "content": "hi", "id": "new"}

    def test_update_scoped_and_missing_row(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        with pytest.raises(StoreError):
            self._store(handler).update("goals", "g1", "user-1", {"status": "completed"})
        assert seen[0].method == "PATCH"
        assert seen[0].url.params["id"] == "eq.g1"
        assert seen[0].url.params["user_id"] == "eq.user-1"

    def test_http_error_raises_store_error(self) -> None:
        store = self._store(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(StoreError) as excinfo:
            store.select("goals", "user-1")
        assert excinfo.value.details == "HTTP 500"

    def test_transport_error_raises_store_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(StoreError):
            self._store(handler).select("goals", "user-1")
