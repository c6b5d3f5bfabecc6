"""Client for the hosted table endpoints (PostgREST dialect)."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import httpx

from ..config import Settings
from ..errors import NOT_FOUND_CODE, BackendError, NetworkError, RowNotFoundError

logger = logging.getLogger(__name__)

SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"

TokenProvider = Callable[[], str | None]


def _format_value(value: object) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def _parse_content_range(header: str | None) -> int:
    """Return the total from a ``Content-Range: 0-9/42`` style header."""

    if not header or "/" not in header:
        raise BackendError("Missing row count in response")
    total = header.rsplit("/", 1)[1].strip()
    if total == "*":
        raise BackendError("Backend did not report an exact row count")
    try:
        return int(total)
    except ValueError as exc:
        raise BackendError(f"Malformed row count {total!r}") from exc


def _decode_json(response: httpx.Response, table: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise BackendError(
            f"Unexpected non-JSON response for {table}", status=response.status_code
        ) from exc


class BackendClient:
    """Thin wrapper around the hosted table API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        token_provider: TokenProvider | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._token_provider = token_provider

    def table(self, name: str) -> "TableQuery":
        """Start a query against the table called ``name``."""

        return TableQuery(self, name)

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        anon_key = self._settings.supabase_anon_key or ""
        token = self._token_provider() if self._token_provider else None
        headers = {
            "apikey": anon_key,
            "Authorization": f"Bearer {token or anon_key}",
            "User-Agent": f"{self._settings.app_name} (storefront)",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Sequence[tuple[str, str]] = (),
        headers: Mapping[str, str] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send a request for ``table`` and translate failures into errors."""

        try:
            response = await self._client.request(
                method,
                f"/{table}",
                params=list(params),
                headers=self._headers(headers),
                json=json,
            )
        except httpx.HTTPError as exc:
            logger.info(
                "Transient error talking to the backend (%s) for %s %s",
                exc.__class__.__name__,
                method,
                table,
            )
            raise NetworkError(f"Unable to reach the backend: {exc}") from exc

        if response.status_code >= 400:
            raise self._error_from(response)
        return response

    @staticmethod
    def _error_from(response: httpx.Response) -> BackendError:
        payload: dict[str, Any] = {}
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                payload = data

        code = payload.get("code")
        message = (
            payload.get("message")
            or payload.get("error")
            or response.text
            or response.reason_phrase
            or f"HTTP {response.status_code}"
        )
        error_cls = RowNotFoundError if code == NOT_FOUND_CODE else BackendError
        return error_cls(
            str(message),
            status=response.status_code,
            code=str(code) if code is not None else None,
            details=payload.get("details"),
        )


class TableQuery:
    """Chainable query against one table; finish with an awaited verb."""

    def __init__(self, backend: BackendClient, table: str):
        self._backend = backend
        self._table = table
        self._columns = "*"
        self._filters: list[tuple[str, str]] = []
        self._order: list[str] = []
        self._limit: int | None = None

    def select(self, columns: str = "*") -> "TableQuery":
        self._columns = ",".join(part.strip() for part in columns.split(","))
        return self

    def eq(self, column: str, value: object) -> "TableQuery":
        self._filters.append((column, _format_value(value)))
        return self

    def order(self, column: str, *, descending: bool = False) -> "TableQuery":
        self._order.append(f"{column}.{'desc' if descending else 'asc'}")
        return self

    def limit(self, count: int) -> "TableQuery":
        self._limit = count
        return self

    def _read_params(self) -> list[tuple[str, str]]:
        params = [("select", self._columns), *self._filters]
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        return params

    def _require_filters(self, verb: str) -> None:
        if not self._filters:
            raise ValueError(f"Refusing to {verb} every row of {self._table}")

    async def fetch(self) -> list[dict[str, Any]]:
        """Return every matching row."""

        response = await self._backend.request(
            "GET", self._table, params=self._read_params()
        )
        data = _decode_json(response, self._table)
        if not isinstance(data, list):
            raise BackendError(
                f"Unexpected response structure for {self._table}",
                status=response.status_code,
            )
        return data

    async def fetch_one(self) -> dict[str, Any]:
        """Return exactly one row; raises :class:`RowNotFoundError` when none match."""

        response = await self._backend.request(
            "GET",
            self._table,
            params=self._read_params(),
            headers={"Accept": SINGLE_OBJECT_MEDIA_TYPE},
        )
        data = _decode_json(response, self._table)
        if not isinstance(data, dict):
            raise BackendError(
                f"Unexpected response structure for {self._table}",
                status=response.status_code,
            )
        return data

    async def count(self) -> int:
        """Return the exact number of matching rows without fetching them."""

        response = await self._backend.request(
            "HEAD",
            self._table,
            params=[("select", self._columns), *self._filters],
            headers={"Prefer": "count=exact"},
        )
        return _parse_content_range(response.headers.get("content-range"))

    async def insert(self, rows: Sequence[Mapping[str, Any]]) -> None:
        await self._backend.request(
            "POST",
            self._table,
            headers={"Prefer": "return=minimal"},
            json=[dict(row) for row in rows],
        )

    async def update(self, values: Mapping[str, Any]) -> None:
        self._require_filters("update")
        await self._backend.request(
            "PATCH",
            self._table,
            params=self._filters,
            headers={"Prefer": "return=minimal"},
            json=dict(values),
        )

    async def delete(self) -> None:
        self._require_filters("delete")
        await self._backend.request(
            "DELETE",
            self._table,
            params=self._filters,
            headers={"Prefer": "return=minimal"},
        )
