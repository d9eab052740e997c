"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from leadpipe.core.dates import parse_timestamp
from leadpipe.infrastructure.remote_data_client import Filter, SourceUnavailable, _as_filter
from leadpipe.persistence.database import Base
from leadpipe.persistence.models import *  # noqa: F401, F403


class FakeRemoteDataClient:
    """In-memory stand-in for the Remote Data API.

    Evaluates the same ``Filter`` objects the real client serializes and
    reproduces the schema errors PostgREST returns for unknown tables and
    columns.
    """

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        missing_tables: tuple[str, ...] = (),
        missing_columns: dict[str, set[str]] | None = None,
        failing_tables: tuple[str, ...] = (),
        configured: bool = True,
    ):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.missing_tables = set(missing_tables)
        self.missing_columns = {t: set(c) for t, c in (missing_columns or {}).items()}
        self.failing_tables = set(failing_tables)
        self.configured = configured
        self.selects: list[dict] = []
        self.updates: list[dict] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def _check_table(self, table: str) -> None:
        if table in self.failing_tables:
            raise SourceUnavailable(table, "timeout")
        if table in self.missing_tables:
            raise SourceUnavailable(
                table, f'relation "public.{table}" does not exist', code="42P01", missing_table=True
            )

    def _check_columns(self, table: str, columns) -> None:
        for column in columns:
            if column in self.missing_columns.get(table, set()):
                raise SourceUnavailable(
                    table,
                    f"column {table}.{column} does not exist",
                    code="42703",
                    missing_column=True,
                )

    @staticmethod
    def _equals(actual, expected) -> bool:
        if actual == expected:
            return True
        return actual is not None and expected is not None and str(actual) == str(expected)

    def _matches(self, row: dict, column: str, flt: Filter) -> bool:
        actual = row.get(column)
        if flt.op == "eq":
            return self._equals(actual, flt.value)
        if flt.op == "neq":
            return not self._equals(actual, flt.value)
        if flt.op == "in":
            return any(self._equals(actual, v) for v in flt.value)
        if flt.op == "is":
            return actual is None
        if flt.op == "not.is":
            return actual is not None
        if flt.op == "gte":
            left, right = parse_timestamp(actual), parse_timestamp(flt.value)
            if left is not None and right is not None:
                return left >= right
            return actual is not None and actual >= flt.value
        raise AssertionError(f"unsupported filter {flt.op}")

    @staticmethod
    def _sort_key(value):
        parsed = parse_timestamp(value) if isinstance(value, str) else None
        if parsed is not None:
            return (1, parsed.isoformat())
        return (0, "") if value is None else (1, str(value))

    async def select(
        self,
        table,
        *,
        columns="*",
        filters=None,
        or_filter=None,
        order=None,
        descending=True,
        limit=None,
    ):
        self.selects.append({"table": table, "filters": filters, "or_filter": or_filter, "columns": columns})
        self._check_table(table)

        referenced = list(filters or {}) + [c for c, _ in or_filter or []]
        if order:
            referenced.append(order)
        if columns != "*":
            referenced.extend(columns.split(","))
        self._check_columns(table, referenced)

        rows = []
        for row in self.tables.get(table, []):
            if not all(self._matches(row, c, _as_filter(v)) for c, v in (filters or {}).items()):
                continue
            if or_filter and not any(self._matches(row, c, _as_filter(v)) for c, v in or_filter):
                continue
            rows.append(dict(row))

        if order:
            rows.sort(key=lambda r: self._sort_key(r.get(order)), reverse=descending)
        if columns != "*":
            wanted = columns.split(",")
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def update(self, table, values, *, filters):
        self.updates.append({"table": table, "values": values, "filters": filters})
        self._check_table(table)
        self._check_columns(table, list(values) + list(filters))
        for row in self.tables.get(table, []):
            if all(self._matches(row, c, _as_filter(v)) for c, v in filters.items()):
                row.update(values)


@pytest.fixture
def make_remote():
    """Factory for fake Remote Data API clients."""
    return FakeRemoteDataClient


@pytest.fixture
async def engine():
    """In-memory SQLite engine with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session
