"""
Open5e content provider client.

Fetches provider-native JSON records page by page over httpx, following the
`next` links until the collection is exhausted. Transport errors, 429 and 5xx
answers are retried with exponential backoff (tenacity); any other non-2xx
answer or a body that is not a page object is a fetch failure. A collection is
only returned once every page has been read.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from srd_engine.config import Settings, get_settings
from srd_engine.domain.errors import TransientProviderError, UpstreamFetchError
from srd_engine.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class ContentProvider(Protocol):
    """
    Source of provider-native records, addressed by endpoint path.
    """

    async def fetch_records(self, path: str) -> List[Dict[str, Any]]:
        """
        Return every record of the endpoint, or raise UpstreamFetchError.
        """
        ...

    async def aclose(self) -> None:
        ...


@dataclass(frozen=True)
class ProviderPage:
    results: List[Any]
    next_url: Optional[str]
    count: Optional[int] = None


def _parse_page(body: Any, url: str) -> ProviderPage:
    if not isinstance(body, dict) or not isinstance(body.get("results"), list):
        raise UpstreamFetchError(f"GET {url} returned a malformed page (no 'results' list)")
    next_url = body.get("next")
    if next_url is not None and not isinstance(next_url, str):
        raise UpstreamFetchError(f"GET {url} returned a malformed 'next' link")
    count = body.get("count")
    return ProviderPage(
        results=body["results"],
        next_url=next_url or None,
        count=count if isinstance(count, int) else None,
    )


class Open5eClient:
    """
    Paginated reader for the Open5e REST API.

    Parameters default to the corresponding settings; `transport` lets tests
    plug in an httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        page_delay_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.provider_base_url).rstrip("/") + "/"
        self.page_size = page_size or settings.provider_page_size
        self.max_pages = max_pages or settings.provider_max_pages
        self.timeout_seconds = timeout_seconds or settings.provider_timeout_seconds
        self.page_delay_seconds = (
            settings.provider_page_delay_seconds if page_delay_seconds is None else page_delay_seconds
        )
        self.retry_attempts = retry_attempts or settings.provider_retry_attempts
        self.retry_backoff_seconds = (
            settings.provider_retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )
        self.requests_made = 0
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            headers={"Accept": "application/json"},
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Open5eClient":
        return cls(
            base_url=settings.provider_base_url,
            page_size=settings.provider_page_size,
            max_pages=settings.provider_max_pages,
            timeout_seconds=settings.provider_timeout_seconds,
            page_delay_seconds=settings.provider_page_delay_seconds,
            retry_attempts=settings.provider_retry_attempts,
            retry_backoff_seconds=settings.provider_retry_backoff_seconds,
        )

    async def __aenter__(self) -> "Open5eClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(
                multiplier=self.retry_backoff_seconds, min=self.retry_backoff_seconds, max=10
            ),
            retry=retry_if_exception_type((httpx.TransportError, TransientProviderError)),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                self.requests_made += 1
                response = await self._client.get(url, params=params)
                if response.status_code == 429 or response.status_code >= 500:
                    raise TransientProviderError(
                        f"GET {response.url} returned HTTP {response.status_code}",
                        response.status_code,
                    )
                return response
        # Exhausted retries re-raise above; reaching here means no attempt ran.
        raise UpstreamFetchError(f"GET {url} was not attempted")

    async def fetch_page(self, url: str, params: Optional[Dict[str, Any]] = None) -> ProviderPage:
        """
        Fetch and validate one page.

        Raises
        ------
        UpstreamFetchError
            On transport failure, timeout, non-2xx status or malformed body.
        """
        try:
            response = await self._get(url, params)
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"GET {url} failed: {type(exc).__name__}: {exc}") from exc
        if not response.is_success:
            raise UpstreamFetchError(f"GET {response.url} returned HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamFetchError(f"GET {response.url} returned a non-JSON body") from exc
        return _parse_page(body, str(response.url))

    async def fetch_records(self, path: str) -> List[Dict[str, Any]]:
        """
        Read every page of an endpoint (e.g. "spells") and return the records.

        Raises
        ------
        UpstreamFetchError
            If any page fails, or if the page guard is hit while a `next`
            link is still pending.
        """
        url: Optional[str] = f"{path.strip('/')}/"
        params: Optional[Dict[str, Any]] = {"limit": self.page_size}
        records: List[Dict[str, Any]] = []
        pages = 0
        while url:
            if pages >= self.max_pages:
                raise UpstreamFetchError(
                    f"{path}: still paginating after {self.max_pages} pages; "
                    "refusing to return a truncated collection"
                )
            page = await self.fetch_page(url, params=params)
            records.extend(page.results)
            pages += 1
            url = page.next_url
            # `next` links already carry the query string.
            params = None
            if url and self.page_delay_seconds:
                await asyncio.sleep(self.page_delay_seconds)

        log.info(
            f"[FETCH COMPLETE] {path}",
            extra={"endpoint": path, "pages": pages, "records": len(records)},
        )
        return records


__all__ = ["ContentProvider", "Open5eClient", "ProviderPage"]
