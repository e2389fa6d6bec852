# SPDX-License-Identifier: MIT
"""REST adapter for the origin platform."""

import asyncio
from typing import Any

import aiohttp

from ..config import OriginConfig
from ..exceptions import NotFoundError, OriginError, RateLimitError, TransientOriginError
from ..logging_config import get_detail_logger, get_status_logger
from ..models import ListQuery
from ..retry_utils import async_retry_with_backoff
from .protocols import RateLimitPredicate


detail_logger = get_detail_logger()
status_logger = get_status_logger()


class HttpOriginAdapter:
    """Origin adapter speaking JSON over HTTP.

    Expected resource layout below ``base_url``:

    - ``GET    /<records_path>``          list (``offset``, ``limit``, filters)
    - ``GET    /<records_path>/count``    ``{"count": N}``
    - ``GET    /<records_path>/<id>``     one record
    - ``POST   /<records_path>``          create
    - ``PATCH  /<records_path>/<id>``     update
    - ``DELETE /<records_path>/<id>``     delete

    Record bodies may be wrapped in ``{"data": ...}``.
    """

    def __init__(
        self,
        config: OriginConfig | None = None,
        rate_limit_predicate: RateLimitPredicate | None = None,
    ) -> None:
        self.config = config or OriginConfig()
        self.rate_limit_predicate = rate_limit_predicate or RateLimitPredicate(
            self.config.rate_limit_status_codes, self.config.rate_limit_markers
        )
        self.headers = {"Accept": "application/json"}
        if self.config.api_token:
            self.headers["Authorization"] = f"Bearer {self.config.api_token}"
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpOriginAdapter":
        """Async context manager entry."""
        self._ensure_session()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
        return self.session

    def _url(self, *parts: str) -> str:
        base = self.config.base_url.rstrip("/")
        path = "/".join(part.strip("/") for part in (self.config.records_path, *parts))
        return f"{base}/{path}"

    @staticmethod
    def _query_params(query: ListQuery) -> dict[str, str]:
        params: dict[str, str] = {}
        if query.group_id is not None:
            params["group_id"] = query.group_id
        if query.created_since is not None:
            params["created_since"] = query.created_since.isoformat()
        if query.modified_since is not None:
            params["modified_since"] = query.modified_since.isoformat()
        if query.id_only:
            params["fields"] = "id"
        return params

    def _raise_for_status(
        self, status: int, body: str, retry_after: str | None, record_id: str | None
    ) -> None:
        """Translate an error response into the origin exception taxonomy."""
        if self.rate_limit_predicate(status, body):
            seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
            raise RateLimitError(retry_after=seconds, record_id=record_id)
        if status == 404:
            raise NotFoundError(f"Record not found at origin: {record_id}", record_id)
        if status >= 500:
            raise TransientOriginError(
                f"Origin error: HTTP {status}. Response: {body[:200]}", record_id
            )
        raise OriginError(f"Origin error: HTTP {status}. Response: {body[:200]}", record_id)

    @async_retry_with_backoff(
        max_retries=2,
        initial_delay=1.0,
        max_delay=10.0,
        exponential_base=2.0,
        exceptions=(TransientOriginError,),
    )
    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        record_id: str | None = None,
    ) -> Any:
        """Perform one request, retrying transient failures.

        Raises:
            RateLimitError: When the rate-limit predicate matches
            NotFoundError: On HTTP 404
            TransientOriginError: On network errors, timeouts and HTTP 5xx
            OriginError: On any other error response
        """
        session = self._ensure_session()
        try:
            async with session.request(method, url, params=params, json=json_body) as response:
                if response.status < 400:
                    if response.status == 204 or response.content_length == 0:
                        return None
                    return await response.json()

                body = await response.text()
                self._raise_for_status(
                    response.status, body, response.headers.get("Retry-After"), record_id
                )
        except asyncio.TimeoutError as e:
            raise TransientOriginError(f"Origin request timed out: {method} {url}", record_id) from e
        except aiohttp.ClientError as e:
            raise TransientOriginError(f"Origin request failed: {e}", record_id) from e

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def _list_page(self, query: ListQuery, offset: int) -> list[dict[str, Any]]:
        params = self._query_params(query)
        params["offset"] = str(offset)
        params["limit"] = str(query.limit)
        body = await self._request("GET", self._url(), params=params)
        page = self._unwrap(body)
        if not isinstance(page, list):
            raise OriginError(f"Unexpected list response from origin: {type(page).__name__}")
        return page

    async def list_records(self, query: ListQuery) -> list[dict[str, Any]]:
        if not query.fetch_all:
            return await self._list_page(query, query.offset)

        records: list[dict[str, Any]] = []
        offset = query.offset
        for _ in range(self.config.max_pages):
            page = await self._list_page(query, offset)
            records.extend(page)
            if len(page) < query.limit:
                break
            offset += query.limit
        else:
            status_logger.warning(
                f"Stopped listing after {self.config.max_pages} pages; results may be incomplete"
            )

        detail_logger.debug(f"Listed {len(records)} records from origin")
        return records

    async def get_record(self, record_id: str) -> dict[str, Any]:
        body = await self._request("GET", self._url(record_id), record_id=record_id)
        record = self._unwrap(body)
        if not record:
            raise NotFoundError(f"Record not found at origin: {record_id}", record_id)
        return dict(record)

    async def create_record(self, data: dict[str, Any]) -> dict[str, Any]:
        body = await self._request("POST", self._url(), json_body=data)
        return dict(self._unwrap(body) or {})

    async def update_record(self, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "PATCH", self._url(record_id), json_body=data, record_id=record_id
        )
        return dict(self._unwrap(body) or {})

    async def delete_record(self, record_id: str) -> None:
        await self._request("DELETE", self._url(record_id), record_id=record_id)

    async def count_records(self, query: ListQuery | None = None) -> int:
        params = self._query_params(query) if query else {}
        body = await self._request("GET", self._url("count"), params=params)
        try:
            return int(body["count"] if isinstance(body, dict) else body)
        except (KeyError, TypeError, ValueError) as e:
            raise OriginError(f"Unexpected count response from origin: {body!r}") from e
