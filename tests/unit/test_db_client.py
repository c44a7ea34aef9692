"""Tests for the SQLite client: filters, conditional updates and transactions."""

import pytest

from src.core import db_client
from src.core.db_client import RecordNotFoundError


async def _user(name: str, email: str, role: str = "wellwisher") -> dict:
    return await db_client.create_record(
        collection="users",
        data={"name": name, "email": email, "role": role},
    )


@pytest.mark.unit
class TestParseFilter:
    """Tests for the filter mini-language."""

    def test_and_of_comparisons(self):
        clause, params = db_client.parse_filter('status = "pending" && order_id = "12"')

        assert clause == "status = ? AND order_id = ?"
        assert params == ["pending", 12]

    def test_or_group(self):
        clause, params = db_client.parse_filter('(status = "pending" || status = "in_progress") && wellwisher_id = "3"')

        assert clause == "(status = ? OR status = ?) AND wellwisher_id = ?"
        assert params == ["pending", "in_progress", 3]

    def test_null_comparisons(self):
        clause, params = db_client.parse_filter("assigned_wellwisher = null && payment_ref != null")

        assert clause == "assigned_wellwisher IS NULL AND payment_ref IS NOT NULL"
        assert params == []

    def test_inequality_operators(self):
        clause, params = db_client.parse_filter('completed_at <= "2025-01-01T00:00:00+00:00"')

        assert clause == "completed_at <= ?"
        assert params == ["2025-01-01T00:00:00+00:00"]

    def test_sanitized_quotes_round_trip(self):
        value = 'foo" OR 1=1 --'
        _, params = db_client.parse_filter(f'email = "{db_client.sanitize_param(value)}"')

        assert params == [value]

    def test_sanitized_unicode_round_trip(self):
        _, params = db_client.parse_filter(f'name = "{db_client.sanitize_param("José")}"')

        assert params == ["José"]

    def test_invalid_syntax_rejected(self):
        with pytest.raises(ValueError, match="Invalid filter syntax"):
            db_client.parse_filter("status pending")


@pytest.mark.unit
class TestParseSort:
    """Tests for sort clause translation."""

    def test_prefixed_fields(self):
        assert db_client._parse_sort("-created,+id") == "created DESC, id ASC"

    def test_default_when_empty(self):
        assert db_client._parse_sort("") == "id ASC"

    def test_injection_falls_back_to_default(self):
        assert db_client._parse_sort("id; DROP TABLE tasks") == "id ASC"


@pytest.mark.unit
class TestCrud:
    """Tests for record creation, lookup and listing."""

    async def test_create_and_get_returns_string_ids(self, sqlite_db):
        created = await _user("Bob", "bob@example.com")

        fetched = await db_client.get_record(collection="users", record_id=created["id"])

        assert isinstance(created["id"], str)
        assert fetched["email"] == "bob@example.com"
        assert fetched["created"]

    async def test_get_missing_record_raises(self, sqlite_db):
        with pytest.raises(RecordNotFoundError):
            await db_client.get_record(collection="users", record_id="999")

    async def test_list_count_and_group(self, sqlite_db):
        await _user("Bob", "bob@example.com")
        await _user("Cara", "cara@example.com")
        await _user("Dan", "dan@example.com", role="buyer")

        workers = await db_client.list_records(collection="users", filter_query='role = "wellwisher"', sort="-id")
        count = await db_client.count_records(collection="users", filter_query='role = "wellwisher"')
        grouped = await db_client.count_grouped(collection="users", group_by="role")

        assert [w["name"] for w in workers] == ["Cara", "Bob"]
        assert count == 2
        assert grouped == {"wellwisher": 2, "buyer": 1}

    async def test_get_first_record_none_when_no_match(self, sqlite_db):
        assert await db_client.get_first_record(collection="users", filter_query='email = "x@y.z"') is None


@pytest.mark.unit
class TestUpdateWhere:
    """Tests for the compare-and-swap primitive."""

    async def test_matching_precondition_updates(self, sqlite_db):
        user = await _user("Bob", "bob@example.com")

        changed = await db_client.update_where(
            collection="users", match={"id": int(user["id"]), "status": "active"}, data={"status": "disabled"}
        )

        assert changed == 1
        assert (await db_client.get_record(collection="users", record_id=user["id"]))["status"] == "disabled"

    async def test_stale_precondition_changes_nothing(self, sqlite_db):
        user = await _user("Bob", "bob@example.com")
        await db_client.update_record(collection="users", record_id=user["id"], data={"status": "disabled"})

        changed = await db_client.update_where(
            collection="users", match={"id": int(user["id"]), "status": "active"}, data={"name": "Robert"}
        )

        assert changed == 0
        assert (await db_client.get_record(collection="users", record_id=user["id"]))["name"] == "Bob"

    async def test_in_and_null_matches(self, sqlite_db):
        await _user("Bob", "bob@example.com")
        await _user("Dan", "dan@example.com", role="buyer")

        changed = await db_client.update_where(
            collection="users", match={"role": ("wellwisher", "buyer")}, data={"status": "disabled"}
        )

        assert changed == 2

    async def test_append_to_json_array(self, sqlite_db):
        buyer = await _user("Dan", "dan@example.com", role="buyer")
        order = await db_client.create_record(
            collection="orders",
            data={
                "order_code": "DAN00001",
                "buyer_id": int(buyer["id"]),
                "buyer_email": "dan@example.com",
                "buyer_name": "Dan",
                "buyer_type": "individual",
                "items": [],
                "items_signature": "sig",
                "total_amount": 0,
            },
        )
        task = await db_client.create_record(
            collection="tasks",
            data={
                "order_id": int(order["id"]),
                "task_id": "DAN00001-0",
                "item_index": 0,
                "title": "Plant",
                "description": "Plant a tree",
                "scheduled_date": "2025-01-01T00:00:00+00:00",
                "location": "To be determined",
            },
        )

        for note in ("first", "second"):
            await db_client.update_where(
                collection="tasks", match={"id": int(task["id"])}, data={}, append={"growth_updates": {"notes": note}}
            )

        stored = await db_client.get_record(collection="tasks", record_id=task["id"])
        assert stored["growth_updates"] == [{"notes": "first"}, {"notes": "second"}]

    async def test_empty_match_rejected(self, sqlite_db):
        with pytest.raises(ValueError, match="match condition"):
            await db_client.update_where(collection="users", match={}, data={"name": "x"})


@pytest.mark.unit
class TestTransaction:
    """Tests for multi-statement atomic writes."""

    async def test_rollback_on_error(self, sqlite_db):
        with pytest.raises(RuntimeError, match="boom"):
            async with db_client.transaction():
                await _user("Bob", "bob@example.com")
                raise RuntimeError("boom")

        assert await db_client.count_records(collection="users") == 0

    async def test_commit_on_success(self, sqlite_db):
        async with db_client.transaction():
            await _user("Bob", "bob@example.com")
            await _user("Cara", "cara@example.com")

        assert await db_client.count_records(collection="users") == 2

    async def test_nested_transaction_joins_outer(self, sqlite_db):
        with pytest.raises(RuntimeError):
            async with db_client.transaction():
                await _user("Bob", "bob@example.com")
                async with db_client.transaction():
                    await _user("Cara", "cara@example.com")
                raise RuntimeError("outer fails")

        assert await db_client.count_records(collection="users") == 0
