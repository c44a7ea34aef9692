"""SQLite database client wrapper with CRUD and conditional-update operations."""

import asyncio
import contextvars
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.config import settings


logger = logging.getLogger(__name__)


# Columns holding JSON documents; decoded on read
JSON_FIELDS = frozenset({"items", "planting_details", "growth_updates"})

# Integer reference columns returned as string ids
REFERENCE_FIELDS = frozenset({"assigned_wellwisher"})


class DatabaseError(RuntimeError):
    """Raised when a database operation fails."""


class RecordNotFoundError(KeyError):
    """Raised when a record lookup by id matches nothing."""


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _validate_field_name(field: str) -> None:
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", field):
        msg = f"Invalid field name: {field}"
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _convert_record(record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ids to strings and decode JSON columns."""
    converted = record.copy()
    for key, value in converted.items():
        is_reference = key == "id" or key.endswith("_id") or key in REFERENCE_FIELDS
        if is_reference and isinstance(value, int) and not isinstance(value, bool):
            converted[key] = str(value)
        elif key in JSON_FIELDS and isinstance(value, str):
            converted[key] = json.loads(value)
    return converted


def _encode_value(value: Any) -> Any:
    """Encode a Python value for storage in SQLite."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return int(value)
    return value


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        return "%" + value.replace("%", "\\%").replace("_", "\\_") + "%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _unescape(raw: str, quote: str) -> str:
    """Undo sanitize_param escaping inside a quoted value."""
    if quote == '"':
        return json.loads(f'"{raw}"')
    return re.sub(r"\\(.)", r"\1", raw)


def _parse_single_comparison(comparison: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a single comparison expression into a SQL condition and parameters."""
    null_match = re.match(r"^(\w+)\s*(=|!=)\s*null$", comparison)
    if null_match:
        field = null_match.group(1)
        return f"{field} IS {'NOT ' if null_match.group(2) == '!=' else ''}NULL", []

    match = re.fullmatch(
        r"""(\w+)\s*(=|!=|>=|<=|>|<|~)\s*(['"])((?:\\.|(?!\3).)*)\3""",
        comparison,
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = _unescape(match.group(4), match.group(3))

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    if is_like:
        return f"{field} LIKE ? ESCAPE '\\'", [value]
    return f"{field} {sql_op} ?", [value]


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]
    or_parts = [p.strip() for p in inner.split("||")]
    or_conditions = []
    or_params: list[str | int | float | None] = []

    for part in or_parts:
        cond, values = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.extend(values)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Syntax: ``field = "value" && (a = "x" || a = "y") && other = null``.
    """
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params: list[str | int | float | None] = []

    for raw_part in parts:
        part = raw_part.strip()

        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
        else:
            cond, cond_params = _parse_single_comparison(part)
        conditions.append(cond)
        params.extend(cond_params)

    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Translate ``-field``/``+field``/``field DESC`` into a safe ORDER BY clause."""
    default = "id ASC"
    if not sort:
        return default

    clauses = []
    for raw_part in sort.split(","):
        part = raw_part.strip()
        direction = "ASC"
        if part.startswith("-"):
            direction, part = "DESC", part[1:]
        elif part.startswith("+"):
            part = part[1:]
        else:
            words = part.split()
            if len(words) == 2 and words[1].upper() in ("ASC", "DESC"):  # noqa: PLR2004
                part, direction = words[0], words[1].upper()

        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", part):
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return default
        clauses.append(f"{part} {direction}")

    return ", ".join(clauses)


def _build_match_clause(match: dict[str, Any]) -> tuple[str, list[Any]]:
    """Build a WHERE clause from exact-match conditions.

    Scalars compare with ``=``, ``None`` with ``IS NULL`` and tuples/lists/sets with ``IN``.
    """
    conditions = []
    params: list[Any] = []
    for field, expected in match.items():
        _validate_field_name(field)
        if expected is None:
            conditions.append(f"{field} IS NULL")
        elif isinstance(expected, tuple | list | set | frozenset):
            values = list(expected)
            placeholders = ", ".join("?" for _ in values)
            conditions.append(f"{field} IN ({placeholders})")
            params.extend(_encode_value(v) for v in values)
        else:
            conditions.append(f"{field} = ?")
            params.append(_encode_value(expected))
    return " AND ".join(conditions), params


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_loop_locks: dict[tuple[str, int], tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = {}
_active_transaction: contextvars.ContextVar[bool] = contextvars.ContextVar("active_transaction", default=False)


def _get_lock(name: str) -> asyncio.Lock:
    """Return a lock bound to the running event loop."""
    loop = asyncio.get_running_loop()
    key = (name, id(loop))
    entry = _loop_locks.get(key)
    # A closed loop's id can be reused by a new loop
    if entry is None or entry[0] is not loop:
        entry = (loop, asyncio.Lock())
        _loop_locks[key] = entry
    return entry[1]


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _get_lock("connect"):
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; multi-statement writes go through transaction()
        conn = await aiosqlite.connect(str(path), isolation_level=None)
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    conn = _db_connections.pop(cache_key, None)
    if conn is None:
        return

    try:
        await conn.close()
        logger.info(
            "Closed SQLite connection",
            extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": str(path)},
        )
    except Exception as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from src.core import schema

    await schema.init_db(db_path=db_path)


@asynccontextmanager
async def _write_guard() -> AsyncIterator[aiosqlite.Connection]:
    """Serialize a single write unless it already runs inside transaction()."""
    conn = await get_connection()
    if _active_transaction.get():
        yield conn
        return
    async with _get_lock("write"):
        yield conn


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Run several writes atomically.

    Writes issued through this module inside the block join the transaction.
    Nested use joins the outer transaction.
    """
    if _active_transaction.get():
        yield await get_connection()
        return

    conn = await get_connection()
    async with _get_lock("write"):
        token = _active_transaction.set(True)
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            await conn.execute("ROLLBACK")
            raise
        else:
            await conn.execute("COMMIT")
        finally:
            _active_transaction.reset(token)


def _raise_database_error(*, operation: str, collection: str, error: Exception) -> None:
    if isinstance(error, aiosqlite.OperationalError) and "no such table" in str(error):
        msg = f"Table '{collection}' does not exist. Call init_db() first."
        logger.error("Table not found", extra={"collection": collection})
        raise DatabaseError(msg) from error
    logger.error(f"{operation}_failed", extra={"collection": collection, "error": str(error)})
    msg = f"Failed to {operation.replace('_', ' ')} in {collection}: {error}"
    raise DatabaseError(msg) from error


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    now = datetime.now(UTC).isoformat()
    data = {"created": now, "updated": now, **data}
    try:
        _validate_collection_name(collection)
        columns = list(data.keys())
        for column in columns:
            _validate_field_name(column)
        columns_str = ", ".join(columns)
        placeholders_str = ", ".join("?" for _ in columns)
        values = [_encode_value(data[key]) for key in columns]

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - names are validated
        async with _write_guard() as conn:
            cursor = await conn.execute(query, values)
            record_id = cursor.lastrowid

        result = await get_record(collection=collection, record_id=str(record_id))
        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return result
    except (RecordNotFoundError, DatabaseError, ValueError):
        raise
    except Exception as e:
        _raise_database_error(operation="create_record", collection=collection, error=e)
        raise


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        if not str(record_id).isdigit():
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        conn = await get_connection()
        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        columns = [description[0] for description in cursor.description]
        record = dict(zip(columns, row, strict=True))

        logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return _convert_record(record)
    except RecordNotFoundError:
        raise
    except Exception as e:
        _raise_database_error(operation="get_record", collection=collection, error=e)
        raise


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID unconditionally and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    if not str(record_id).isdigit():
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    updated = await update_where(collection=collection, match={"id": int(record_id)}, data=data)
    if updated == 0:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def update_where(
    *,
    collection: str,
    match: dict[str, Any],
    data: dict[str, Any],
    append: dict[str, Any] | None = None,
) -> int:
    """Conditionally update rows and return the number of rows changed.

    This is the compare-and-swap primitive: ``match`` carries the expected
    pre-state, so a row changed by another writer is simply not matched.
    ``append`` pushes values onto JSON array columns in the same statement.
    """
    if not match:
        msg = "Conditional update requires at least one match condition"
        raise ValueError(msg)
    if not data and not append:
        msg = "Empty update payload"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        set_parts = []
        values: list[Any] = []
        for key, val in data.items():
            _validate_field_name(key)
            set_parts.append(f"{key} = ?")
            values.append(_encode_value(val))
        for key, val in (append or {}).items():
            _validate_field_name(key)
            set_parts.append(f"{key} = json_insert(COALESCE({key}, '[]'), '$[#]', json(?))")
            values.append(json.dumps(val, default=str))
        set_parts.append("updated = ?")
        values.append(datetime.now(UTC).isoformat())

        where_clause, where_params = _build_match_clause(match)
        query = f"UPDATE {collection} SET {', '.join(set_parts)} WHERE {where_clause}"  # noqa: S608 - names are validated

        async with _write_guard() as conn:
            cursor = await conn.execute(query, [*values, *where_params])
            changed = cursor.rowcount

        logger.debug("Conditional update", extra={"collection": collection, "matched": changed})
        return changed
    except ValueError:
        raise
    except Exception as e:
        _raise_database_error(operation="update_where", collection=collection, error=e)
        raise


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        async with _write_guard() as conn:
            cursor = await conn.execute(query, (int(record_id),))
            deleted = cursor.rowcount

        if deleted == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    except RecordNotFoundError:
        raise
    except Exception as e:
        _raise_database_error(operation="delete_record", collection=collection, error=e)
        raise


async def delete_where(*, collection: str, match: dict[str, Any]) -> int:
    """Delete rows matching exact conditions and return how many were removed."""
    if not match:
        msg = "Conditional delete requires at least one match condition"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        where_clause, params = _build_match_clause(match)
        query = f"DELETE FROM {collection} WHERE {where_clause}"  # noqa: S608 - names are validated
        async with _write_guard() as conn:
            cursor = await conn.execute(query, params)
            deleted = cursor.rowcount

        logger.info("Deleted records", extra={"collection": collection, "count": deleted})
        return deleted
    except ValueError:
        raise
    except Exception as e:
        _raise_database_error(operation="delete_where", collection=collection, error=e)
        raise


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        where_clause = ""
        params: list[Any] = []
        if filter_query:
            where_clause, params = parse_filter(filter_query)
            where_clause = f"WHERE {where_clause}"

        safe_sort = _parse_sort(sort)
        offset = (max(page, 1) - 1) * per_page

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {safe_sort} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params.extend([per_page, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        columns = [description[0] for description in cursor.description]
        records = [_convert_record(dict(zip(columns, row, strict=True))) for row in rows]

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except ValueError:
        raise
    except Exception as e:
        _raise_database_error(operation="list_records", collection=collection, error=e)
        raise


async def count_records(*, collection: str, filter_query: str = "") -> int:
    """Count records matching the filter."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        where_clause, params = parse_filter(filter_query)
        query = f"SELECT COUNT(*) FROM {collection}"  # noqa: S608 - collection is validated
        if where_clause:
            query += f" WHERE {where_clause}"

        cursor = await conn.execute(query, params)
        row = await cursor.fetchone()
        return int(row[0]) if row else 0
    except ValueError:
        raise
    except Exception as e:
        _raise_database_error(operation="count_records", collection=collection, error=e)
        raise


async def count_grouped(*, collection: str, group_by: str, filter_query: str = "") -> dict[str, int]:
    """Count records per distinct value of ``group_by``."""
    try:
        _validate_collection_name(collection)
        _validate_field_name(group_by)
        conn = await get_connection()

        where_clause, params = parse_filter(filter_query)
        query = f"SELECT {group_by}, COUNT(*) FROM {collection}"  # noqa: S608 - names are validated
        if where_clause:
            query += f" WHERE {where_clause}"
        query += f" GROUP BY {group_by}"

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return {str(key): int(count) for key, count in rows if key is not None}
    except ValueError:
        raise
    except Exception as e:
        _raise_database_error(operation="count_grouped", collection=collection, error=e)
        raise


async def get_first_record(*, collection: str, filter_query: str, sort: str = "") -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, sort=sort, per_page=1)
    return records[0] if records else None
