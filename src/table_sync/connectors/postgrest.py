"""
PostgREST Table Client.

Provides the remote table interface over a PostgREST endpoint (as served
by Supabase at ``/rest/v1``):
- Filter rendering to PostgREST query syntax
- Ordered, limited selects
- Inserts with duplicate-key detection
- PATCH updates returning the exact affected row count
- Error mapping to RemoteError / UniqueViolationError

Requests are never retried here; retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from table_sync.config import RemoteConfig
from table_sync.connectors.base import (
    And,
    Eq,
    Filter,
    Gt,
    Is,
    Or,
    RemoteError,
    RemoteTable,
    UniqueViolationError,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_CODE = "23505"

# Characters PostgREST treats as syntax inside logic trees
_RESERVED = set(',.:()"\\ ')


def format_value(value: Any) -> str:
    """Format a top-level filter operand (sent as-is in the query string)."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def quote_value(value: Any) -> str:
    """Format an operand inside ``or=(...)`` / ``and(...)``, quoting if needed."""
    text = format_value(value)
    if isinstance(value, str) and (not value or _RESERVED.intersection(value)):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _condition(where: Gt | Eq | Is, nested: bool) -> tuple[str, str]:
    """Column and ``op.value`` of a leaf filter."""
    if isinstance(where, Gt):
        op = "gt"
    elif isinstance(where, Eq):
        op = "eq"
    else:
        op = "is"
    value = quote_value(where.value) if nested else format_value(where.value)
    return where.column, f"{op}.{value}"


def render_logic(where: Filter) -> str:
    """Render a filter in PostgREST logic-tree syntax, e.g. ``and(a.eq.1,b.gt.2)``."""
    if isinstance(where, (And, Or)):
        op = "and" if isinstance(where, And) else "or"
        return f"{op}({','.join(render_logic(f) for f in where.filters)})"
    column, expression = _condition(where, nested=True)
    return f"{column}.{expression}"


def render_params(where: Filter | None) -> list[tuple[str, str]]:
    """
    Render a filter as query parameters.

    A top-level conjunction becomes one parameter per condition (PostgREST
    ANDs them); disjunctions go into ``or=(...)``.
    """
    if where is None:
        return []
    if isinstance(where, And):
        params: list[tuple[str, str]] = []
        for sub in where.filters:
            params.extend(render_params(sub))
        return params
    if isinstance(where, Or):
        return [("or", f"({','.join(render_logic(f) for f in where.filters)})")]
    return [_condition(where, nested=False)]


class PostgRESTTable(RemoteTable):
    """
    A table behind a PostgREST API.

    Example:
        table = PostgRESTTable(
            base_url="https://project.supabase.co",
            api_key="your-api-key",
            name="humans",
        )

        rows = await table.select(Gt("_modified", "2024-01-01"), order_by=["_modified"])
        await table.close()
    """

    REST_PATH = "/rest/v1"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        name: str,
        db_schema: str = "public",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize PostgREST table.

        Args:
            base_url: Project URL (without /rest/v1)
            api_key: API key, sent as apikey header and bearer token
            name: Table name
            db_schema: Schema exposed by PostgREST
            timeout_seconds: Read timeout
            client: Preconfigured HTTP client (optional)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.name = name
        self.db_schema = db_schema
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def table_url(self) -> str:
        """URL of the table resource."""
        return f"{self.base_url}{self.REST_PATH}/{self.name}"

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with authentication."""
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept-Profile": self.db_schema,
            "Content-Profile": self.db_schema,
        }

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.timeout_seconds,
                    write=30.0,
                    pool=10.0,
                ),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        params: list[tuple[str, str]] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an API request and map failures to RemoteError."""
        client = self._get_client()
        headers = {**self._get_headers(), **kwargs.pop("headers", {})}
        try:
            response = await client.request(
                method,
                self.table_url,
                params=params or [],
                headers=headers,
                **kwargs,
            )
        except httpx.TransportError as e:
            raise RemoteError(f"Connection error: {e}") from e

        logger.debug("%s %s -> %d", method, self.name, response.status_code)

        if response.is_success:
            return response

        try:
            error = response.json()
        except ValueError:
            error = {}
        if not isinstance(error, dict):
            error = {}
        message = error.get("message") or response.text or response.reason_phrase
        code = error.get("code")

        if code == UNIQUE_VIOLATION_CODE or (code is None and response.status_code == 409):
            raise UniqueViolationError(message, code, response.status_code)
        raise RemoteError(message, code, response.status_code)

    async def select(
        self,
        where: Filter | None = None,
        order_by: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = [("select", "*"), *render_params(where)]
        if order_by:
            params.append(("order", ",".join(f"{c}.asc" for c in order_by)))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request("GET", params)
        return response.json()

    async def insert(self, document: dict[str, Any]) -> None:
        await self._request(
            "POST",
            json=document,
            headers={"Prefer": "return=minimal"},
        )

    async def update(self, values: dict[str, Any], where: Filter) -> int:
        response = await self._request(
            "PATCH",
            render_params(where),
            json=values,
            headers={"Prefer": "return=minimal,count=exact"},
        )
        return parse_count(response.headers.get("Content-Range"))


def parse_count(content_range: str | None) -> int:
    """Total from a ``Content-Range`` header such as ``0-0/1`` or ``*/0``."""
    if not content_range or "/" not in content_range:
        raise RemoteError(f"Missing row count in Content-Range: {content_range!r}")
    total = content_range.rsplit("/", 1)[1]
    if not total.isdigit():
        raise RemoteError(f"Missing row count in Content-Range: {content_range!r}")
    return int(total)


def create_postgrest_table(remote: RemoteConfig, name: str) -> PostgRESTTable:
    """Create a PostgRESTTable from remote settings."""
    return PostgRESTTable(
        base_url=remote.url,
        api_key=remote.api_key.get_secret_value(),
        name=name,
        db_schema=remote.db_schema,
        timeout_seconds=remote.timeout_seconds,
    )
