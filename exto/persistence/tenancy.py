"""Tenant namespace routing.

Core records (identities, users, organizations, categories, formats, billing)
live in the shared default namespace. Every organization owns one namespace
named ``sc_<slug>`` holding ``batch``, ``scan_history`` and one
``<category-slug>_data`` table per category. On Postgres a namespace is a
schema; on SQLite it is a database file ATTACHed next to the main file.
"""
from __future__ import annotations

import os
import re
from typing import Any

from sqlalchemy import Column, DateTime, MetaData, String, Table, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.schema import CreateIndex, CreateTable

from exto.core.config import TENANT_NAMESPACE_PREFIX
from exto.core.errors import InvalidInputError
from exto.domain.models import JSONType, as_utc


BATCH_TABLE = "batch"
SCAN_HISTORY_TABLE = "scan_history"
DATA_TABLE_SUFFIX = "_data"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_\-]*$")

# Table objects and provisioning state are derived data and safe to share per process.
_metadata_by_namespace: dict[str, MetaData] = {}
_created_tables: set[tuple[str, str]] = set()
_provisioned_schemas: set[str] = set()


def org_namespace(slug: str) -> str:
    # Callers must resolve the organization first; an empty slug is a programming error.
    if not slug or not _IDENTIFIER_RE.match(slug):
        raise InvalidInputError(f"Invalid organization slug: {slug!r}")
    return f"{TENANT_NAMESPACE_PREFIX}{slug}"


def category_data_collection(category_slug: str) -> str:
    if not category_slug or not _IDENTIFIER_RE.match(category_slug):
        raise InvalidInputError(f"Invalid category slug: {category_slug!r}")
    return f"{category_slug}{DATA_TABLE_SUFFIX}"


def _audit_columns() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True), nullable=False, index=True),
        Column("created_by", String, nullable=True),
        Column("updated_at", DateTime(timezone=True), nullable=False),
        Column("updated_by", String, nullable=True),
        Column("deleted_at", DateTime(timezone=True), nullable=True),
        Column("deleted_by", String, nullable=True),
    ]


def _metadata(namespace: str) -> MetaData:
    metadata = _metadata_by_namespace.get(namespace)
    if metadata is None:
        metadata = MetaData(schema=namespace)
        _metadata_by_namespace[namespace] = metadata
    return metadata


def _get_or_define(namespace: str, name: str, *columns: Column) -> Table:
    metadata = _metadata(namespace)
    key = f"{namespace}.{name}"
    if key in metadata.tables:
        return metadata.tables[key]
    return Table(name, metadata, *columns, *_audit_columns())


def batch_table(namespace: str) -> Table:
    return _get_or_define(
        namespace,
        BATCH_TABLE,
        Column("id", String, primary_key=True),
        Column("name", String, nullable=False),
        Column("status", String, nullable=False),
    )


def scan_history_table(namespace: str) -> Table:
    return _get_or_define(
        namespace,
        SCAN_HISTORY_TABLE,
        Column("id", String, primary_key=True),
        Column("format_id", String, nullable=True),
        Column("category_id", String, nullable=False, index=True),
        Column("scan_code", String, nullable=False),
        Column("category_data_col", String, nullable=False),
        Column("category_data_id", String, nullable=False, unique=True),
        Column("batch_id", String, nullable=True, index=True),
        Column("thumbnails", JSONType, nullable=False),
    )


def category_data_table(namespace: str, category_slug: str) -> Table:
    return _get_or_define(
        namespace,
        category_data_collection(category_slug),
        Column("id", String, primary_key=True),
        Column("category_id", String, nullable=False, index=True),
        Column("format_id", String, nullable=True),
        Column("org_id", String, nullable=False),
        Column("metadata", JSONType, nullable=False),
        Column("raw_data", JSONType, nullable=False),
        Column("document_paths", JSONType, nullable=False),
    )


def _dialect(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def _attach_path(session: AsyncSession, namespace: str) -> str:
    database = session.get_bind().url.database
    if not database or database == ":memory:":
        return ":memory:"
    return os.path.join(os.path.dirname(os.path.abspath(database)), f"{namespace}.db")


def _quote(session: AsyncSession, name: str) -> str:
    return session.get_bind().dialect.identifier_preparer.quote_identifier(name)


async def _attach(session: AsyncSession, namespace: str) -> None:
    # SQLite refuses ATTACH inside a transaction, so this runs before any DML.
    result = await session.execute(text("PRAGMA database_list"))
    attached = {row[1] for row in result.all()}
    if namespace not in attached:
        await session.execute(
            text(f"ATTACH DATABASE :path AS {_quote(session, namespace)}"),
            {"path": _attach_path(session, namespace)},
        )


def _pending(tables: tuple[Table, ...]) -> list[Table]:
    return [table for table in tables if (table.schema or "", table.name) not in _created_tables]


def _ddl(tables: list[Table]) -> list[Any]:
    # IF NOT EXISTS keeps concurrent first requests for a new tenant from colliding.
    statements: list[Any] = []
    for table in tables:
        statements.append(CreateTable(table, if_not_exists=True))
        for index in sorted(table.indexes, key=lambda idx: idx.name or ""):
            statements.append(CreateIndex(index, if_not_exists=True))
    return statements


async def open_namespace(session: AsyncSession, namespace: str, *tables: Table) -> None:
    """Make the tenant namespace and the given tables usable from this session.

    Call at the start of a session, before any DML.
    """
    pending = _pending(tables)
    if _dialect(session) == "sqlite":
        await _attach(session, namespace)
        statements = _ddl(pending)
        if statements:
            # SQLite runs DDL outside the implicit DML transaction.
            await session.run_sync(
                lambda sync_session: [sync_session.connection().execute(stmt) for stmt in statements]
            )
    elif pending or namespace not in _provisioned_schemas:
        # Provision on a separate committed connection so a rolled-back request
        # never leaves the process believing a schema exists.
        async with session.bind.begin() as connection:
            await connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {_quote(session, namespace)}"))
            for statement in _ddl(pending):
                await connection.execute(statement)
        _provisioned_schemas.add(namespace)
    for table in pending:
        _created_tables.add((table.schema or "", table.name))


async def drop_namespace(session: AsyncSession, namespace: str) -> None:
    """Remove every tenant table in the namespace (owner-initiated deletion)."""
    quoted = _quote(session, namespace)
    if _dialect(session) == "sqlite":
        await _attach(session, namespace)
        result = await session.execute(
            text(
                f"SELECT name FROM {quoted}.sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
            )
        )
        for (table_name,) in result.all():
            await session.execute(text(f"DROP TABLE IF EXISTS {quoted}.{_quote(session, table_name)}"))
    else:
        await session.execute(text(f"DROP SCHEMA IF EXISTS {quoted} CASCADE"))
        _provisioned_schemas.discard(namespace)
    for key in [key for key in _created_tables if key[0] == namespace]:
        _created_tables.discard(key)
    _metadata_by_namespace.pop(namespace, None)


def row_dict(row: Any) -> dict[str, Any]:
    # Core rows come back as mappings; normalize timestamps to aware UTC.
    data = dict(row._mapping)
    for key in ("created_at", "updated_at", "deleted_at"):
        if key in data:
            data[key] = as_utc(data[key])
    return data
