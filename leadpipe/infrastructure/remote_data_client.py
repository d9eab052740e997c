"""Remote Data API client.

The tenant data tables (contacts, form submissions, compliance results,
meetings, form dispatches) live behind a PostgREST-style REST API:

    GET   {base}/rest/v1/{table}?select=*&tenant_id=eq.abc&order=created_at.desc&limit=500
    PATCH {base}/rest/v1/{table}?id=eq.42        body: {"processado_whatsapp": true}

Every call opens its own ``httpx.AsyncClient`` with a bounded timeout. Any
failure surfaces as ``SourceUnavailable`` so callers can degrade per source.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable

import httpx

from leadpipe.settings import settings

logger = logging.getLogger(__name__)

# PostgREST / Postgres error codes for schema drift
MISSING_TABLE_CODES = {"42P01", "PGRST205"}
MISSING_COLUMN_CODES = {"42703", "PGRST204"}


class SourceUnavailable(Exception):
    """A remote table could not be read or written."""

    def __init__(
        self,
        table: str,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        missing_table: bool = False,
        missing_column: bool = False,
    ) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table
        self.message = message
        self.code = code
        self.status_code = status_code
        self.missing_table = missing_table
        self.missing_column = missing_column

    @property
    def is_schema_error(self) -> bool:
        return self.missing_table or self.missing_column


@dataclass(frozen=True)
class Filter:
    """A single PostgREST column predicate, e.g. ``eq.approved``."""

    op: str
    value: Any = None

    def to_query(self) -> str:
        if self.op == "in":
            return f"in.({','.join(_format_value(v) for v in self.value)})"
        return f"{self.op}.{_format_value(self.value)}"


def eq(value: Any) -> Filter:
    return Filter("eq", value)


def neq(value: Any) -> Filter:
    return Filter("neq", value)


def gte(value: Any) -> Filter:
    return Filter("gte", value)


def in_(values: Iterable[Any]) -> Filter:
    return Filter("in", tuple(values))


def is_null() -> Filter:
    return Filter("is", None)


def not_null() -> Filter:
    return Filter("not.is", None)


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _as_filter(value: Any) -> Filter:
    """Plain values are equality filters; None means IS NULL."""
    if isinstance(value, Filter):
        return value
    if value is None:
        return is_null()
    if isinstance(value, (list, tuple, set, frozenset)):
        return in_(value)
    return eq(value)


def build_params(
    *,
    columns: str = "*",
    filters: dict[str, Any] | None = None,
    or_filter: list[tuple[str, Any]] | None = None,
    order: str | None = None,
    descending: bool = True,
    limit: int | None = None,
) -> list[tuple[str, str]]:
    """Build PostgREST query parameters for a select."""
    params: list[tuple[str, str]] = [("select", columns)]
    for column, value in (filters or {}).items():
        params.append((column, _as_filter(value).to_query()))
    if or_filter:
        clauses = ",".join(
            f"{column}.{_as_filter(value).to_query()}" for column, value in or_filter
        )
        params.append(("or", f"({clauses})"))
    if order:
        params.append(("order", f"{order}.{'desc' if descending else 'asc'}"))
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


def _error_from_response(table: str, response: httpx.Response) -> SourceUnavailable:
    code = None
    message = response.text
    try:
        body = response.json()
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message
    except ValueError:
        pass

    lowered = (message or "").lower()
    missing_column = code in MISSING_COLUMN_CODES or (
        "column" in lowered and ("does not exist" in lowered or "schema cache" in lowered)
    )
    missing_table = not missing_column and (
        code in MISSING_TABLE_CODES
        or "does not exist" in lowered
        or "schema cache" in lowered
    )
    return SourceUnavailable(
        table,
        message or f"HTTP {response.status_code}",
        code=code,
        status_code=response.status_code,
        missing_table=missing_table,
        missing_column=missing_column,
    )


class RemoteDataClient:
    """Async client for the Remote Data API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.remote_data_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.remote_data_api_key
        self.timeout = timeout if timeout is not None else settings.remote_data_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        or_filter: list[tuple[str, Any]] | None = None,
        order: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read rows from a table.

        Args:
            table: Table name
            columns: PostgREST select list
            filters: Column -> value or ``Filter``; combined with AND
            or_filter: (column, value or ``Filter``) pairs combined with OR
            order: Column to order by
            descending: Order direction
            limit: Maximum number of rows

        Returns:
            List of row dicts

        Raises:
            SourceUnavailable: On missing configuration, transport errors or non-2xx responses
        """
        if not self.is_configured:
            raise SourceUnavailable(table, "Remote Data API not configured")

        params = build_params(
            columns=columns,
            filters=filters,
            or_filter=or_filter,
            order=order,
            descending=descending,
            limit=limit,
        )
        try:
            async with self._client() as client:
                response = await client.get(self._url(table), params=params, headers=self._headers())
        except httpx.TimeoutException:
            raise SourceUnavailable(table, "timeout")
        except httpx.HTTPError as e:
            raise SourceUnavailable(table, f"transport error: {e}")

        if response.status_code >= 400:
            raise _error_from_response(table, response)

        try:
            data = response.json()
        except ValueError:
            raise SourceUnavailable(table, "invalid JSON response", status_code=response.status_code)
        if not isinstance(data, list):
            raise SourceUnavailable(table, "unexpected response shape")
        return data

    async def update(self, table: str, values: dict[str, Any], *, filters: dict[str, Any]) -> None:
        """Update rows matching ``filters``.

        Raises:
            SourceUnavailable: On missing configuration, transport errors or non-2xx responses
        """
        if not self.is_configured:
            raise SourceUnavailable(table, "Remote Data API not configured")
        if not filters:
            raise ValueError("update requires at least one filter")

        params = [(column, _as_filter(value).to_query()) for column, value in filters.items()]
        headers = {**self._headers(), "Prefer": "return=minimal"}
        try:
            async with self._client() as client:
                response = await client.patch(
                    self._url(table), params=params, json=values, headers=headers
                )
        except httpx.TimeoutException:
            raise SourceUnavailable(table, "timeout")
        except httpx.HTTPError as e:
            raise SourceUnavailable(table, f"transport error: {e}")

        if response.status_code >= 400:
            raise _error_from_response(table, response)


_remote_data_client: RemoteDataClient | None = None


def get_remote_data_client() -> RemoteDataClient:
    """Get the shared Remote Data API client."""
    global _remote_data_client
    if _remote_data_client is None:
        _remote_data_client = RemoteDataClient()
    return _remote_data_client
