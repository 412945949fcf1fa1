"""
Minimal PostgREST table client over httpx.

Builds requests against ``/rest/v1/<table>`` of a hosted backend:
- select() / insert() / update() / delete() pick the HTTP verb
- eq(), in_(), order(), limit() add query parameters
- execute() sends the request

Example:
    >>> rows = await (
    ...     rest.table("messages")
    ...     .select()
    ...     .eq("conversation_id", 42)
    ...     .order("created_at")
    ...     .execute()
    ... )

Invariants:
    - Filters are only added, never removed, once on a builder
    - httpx failures surface as TransportError, API errors as QueryError
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .errors import QueryError, TransportError

logger = logging.getLogger(__name__)

REST_PATH = "/rest/v1"

TokenSource = Callable[[], Optional[str]]


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class TableQuery:
    """Chainable request builder for one table.

    Attributes:
        table: Target table name
        method: HTTP method chosen by select/insert/update/delete
        filters: (column, operator expression) pairs, in insertion order
        body: JSON payload for insert/update
    """

    def __init__(self, client: RestClient, table: str) -> None:
        self._client = client
        self.table = table
        self.method = "GET"
        self.columns = "*"
        self.filters: List[Tuple[str, str]] = []
        self.body: Any = None
        self._order: List[str] = []
        self._limit: int | None = None
        self._single = False

    def select(self, columns: str = "*") -> TableQuery:
        self.method = "GET"
        self.columns = columns
        return self

    def insert(self, rows: Dict[str, Any] | List[Dict[str, Any]]) -> TableQuery:
        self.method = "POST"
        self.body = rows
        return self

    def update(self, patch: Dict[str, Any]) -> TableQuery:
        self.method = "PATCH"
        self.body = patch
        return self

    def delete(self) -> TableQuery:
        self.method = "DELETE"
        return self

    def eq(self, column: str, value: Any) -> TableQuery:
        self.filters.append((column, f"eq.{_format_value(value)}"))
        return self

    def in_(self, column: str, values: List[Any]) -> TableQuery:
        joined = ",".join(_format_value(v) for v in values)
        self.filters.append((column, f"in.({joined})"))
        return self

    def order(self, column: str, *, desc: bool = False) -> TableQuery:
        self._order.append(f"{column}.{'desc' if desc else 'asc'}")
        return self

    def limit(self, count: int) -> TableQuery:
        self._limit = count
        return self

    def single(self) -> TableQuery:
        """Expect exactly one row; execute() returns a dict."""
        self._single = True
        return self

    def params(self) -> List[Tuple[str, str]]:
        """Query parameters for this request."""
        params: List[Tuple[str, str]] = []
        if self.method in ("GET", "POST", "PATCH"):
            params.append(("select", self.columns))
        params.extend(self.filters)
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        return params

    async def execute(self) -> Any:
        """Send the request.

        Returns:
            List of rows, or a single row dict after single()

        Raises:
            QueryError: If the API rejects the request
            TransportError: If the request could not be completed
        """
        rows = await self._client._send(self)
        if self._single:
            if len(rows) != 1:
                raise QueryError(f"Expected 1 row, got {len(rows)}", table=self.table)
            return rows[0]
        return rows


class RestClient:
    """httpx client for the data API.

    Args:
        url: Backend base URL
        anon_key: Public API key
        token_source: Returns the signed-in access token, or None
        timeout: Request timeout in seconds
        http_client: Optional pre-built client
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        token_source: TokenSource | None = None,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._anon_key = anon_key
        self._token_source = token_source or (lambda: None)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _send(self, query: TableQuery) -> List[Dict[str, Any]]:
        url = f"{self.url}{REST_PATH}/{query.table}"
        token = self._token_source() or self._anon_key
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "Prefer": "return=representation",
        }

        try:
            response = await self._http.request(
                query.method,
                url,
                params=query.params(),
                json=query.body,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Data request failed: {e}", url=url) from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = body.get("message", response.text) if isinstance(body, dict) else response.text
            logger.warning(
                "Data API error",
                extra={"table": query.table, "method": query.method, "status": response.status_code},
            )
            raise QueryError(message or response.reason_phrase, table=query.table, status=response.status_code)

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]
