from __future__ import annotations

from typing import Callable, List

import httpx
import pytest

from srd_engine.domain.errors import TransientProviderError, UpstreamFetchError
from srd_engine.infrastructure.open5e import ContentProvider, Open5eClient

BASE_URL = "https://open5e.test/v1"


def _client(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> Open5eClient:
    options = dict(
        base_url=BASE_URL,
        page_size=2,
        max_pages=5,
        timeout_seconds=5,
        page_delay_seconds=0,
        retry_attempts=3,
        retry_backoff_seconds=0,
    )
    options.update(overrides)
    return Open5eClient(transport=httpx.MockTransport(handler), **options)


def _paged_handler(pages: List[List[dict]], seen: List[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        index = int(request.url.params.get("page", "1")) - 1
        has_next = index + 1 < len(pages)
        return httpx.Response(
            200,
            json={
                "count": sum(len(p) for p in pages),
                "next": f"{BASE_URL}/spells/?limit=2&page={index + 2}" if has_next else None,
                "results": pages[index],
            },
        )

    return handler


@pytest.mark.asyncio
async def test_fetch_records_follows_next_links_to_completion() -> None:
    seen: List[httpx.Request] = []
    pages = [[{"slug": "a"}, {"slug": "b"}], [{"slug": "c"}, {"slug": "d"}], [{"slug": "e"}]]

    async with _client(_paged_handler(pages, seen)) as client:
        records = await client.fetch_records("spells")

    assert [r["slug"] for r in records] == ["a", "b", "c", "d", "e"]
    assert len(seen) == 3
    assert seen[0].url.path == "/v1/spells/"
    assert seen[0].url.params["limit"] == "2"
    assert seen[2].url.params["page"] == "3"


def test_client_satisfies_provider_protocol() -> None:
    client = _client(lambda request: httpx.Response(200, json={"results": []}))
    assert isinstance(client, ContentProvider)


@pytest.mark.asyncio
async def test_non_success_status_is_a_fetch_failure_without_retry() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(404, json={"detail": "Not found."})

    async with _client(handler) as client:
        with pytest.raises(UpstreamFetchError, match="HTTP 404"):
            await client.fetch_records("spells")

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_succeed() -> None:
    statuses = iter([503, 429, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json={"next": None, "results": [{"slug": "fireball"}]})

    async with _client(handler) as client:
        records = await client.fetch_records("spells")
        assert client.requests_made == 3

    assert records == [{"slug": "fireball"}]


@pytest.mark.asyncio
async def test_single_attempt_client_returns_first_response() -> None:
    pages = [[{"slug": "goblin"}]]
    seen: List[httpx.Request] = []

    async with _client(_paged_handler(pages, seen), retry_attempts=1) as client:
        records = await client.fetch_records("monsters")
        assert client.requests_made == 1

    assert records == [{"slug": "goblin"}]


@pytest.mark.asyncio
async def test_persistent_server_errors_exhaust_retries() -> None:
    async with _client(lambda request: httpx.Response(502), retry_attempts=2) as client:
        with pytest.raises(TransientProviderError) as excinfo:
            await client.fetch_records("monsters")
        assert client.requests_made == 2

    assert excinfo.value.status_code == 502
    assert isinstance(excinfo.value, UpstreamFetchError)


@pytest.mark.asyncio
async def test_transport_errors_are_retried_and_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(UpstreamFetchError, match="ConnectError"):
            await client.fetch_records("races")
        assert client.requests_made == 3


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json=[{"slug": "a"}]),
        httpx.Response(200, json={"next": None}),
        httpx.Response(200, json={"next": 3, "results": []}),
    ],
)
@pytest.mark.asyncio
async def test_malformed_bodies_are_fetch_failures(response: httpx.Response) -> None:
    async with _client(lambda request: response) as client:
        with pytest.raises(UpstreamFetchError):
            await client.fetch_records("spells")


@pytest.mark.asyncio
async def test_page_guard_refuses_truncated_collections() -> None:
    def endless(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        return httpx.Response(
            200,
            json={"next": f"{BASE_URL}/spells/?limit=2&page={page + 1}", "results": [{"slug": str(page)}]},
        )

    async with _client(endless, max_pages=3) as client:
        with pytest.raises(UpstreamFetchError, match="after 3 pages"):
            await client.fetch_records("spells")
        assert client.requests_made == 3


@pytest.mark.asyncio
async def test_failure_on_a_later_page_returns_nothing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("page") == "2":
            return httpx.Response(500)
        return httpx.Response(
            200, json={"next": f"{BASE_URL}/spells/?limit=2&page=2", "results": [{"slug": "a"}]}
        )

    async with _client(handler, retry_attempts=1) as client:
        with pytest.raises(UpstreamFetchError):
            await client.fetch_records("spells")


def test_from_settings_uses_provider_settings(test_settings) -> None:
    client = Open5eClient.from_settings(test_settings)

    assert client.base_url == "https://open5e.test/v1/"
    assert client.page_size == 2
    assert client.page_delay_seconds == 0
