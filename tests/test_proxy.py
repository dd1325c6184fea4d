import httpx
import pytest

from filterpro.errors import ExternalFetchError
from filterpro.services.proxy import proxy_options
from tests.conftest import insert_datasource, rest_datasource


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr("filterpro.http_client.RETRY_BACKOFF_FACTOR", 0)


async def test_proxy_fills_templates_and_applies_response_path(db, sync_engine):
    await insert_datasource(db, rest_datasource(config={
        "baseUrl": "https://api.example.com/cities",
        "queryParams": {"country": "{{country}}", "state": "{{state}}"},
        "auth": {"type": "apikey", "apiKey": "k"},
        "responsePath": "results",
    }))
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={"results": [{"value": "rio"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        options = await proxy_options(sync_engine, "products", {"country": "BR"}, client=client)

    assert options == [{"value": "rio"}]
    assert seen == {"params": {"country": "BR"}, "key": "k"}


async def test_proxy_missing_path_returns_empty_list(db, sync_engine):
    await insert_datasource(db, rest_datasource(config={"baseUrl": "https://api.example.com", "responsePath": "x"}))
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))) as client:
        assert await proxy_options(sync_engine, "products", client=client) == []


async def test_proxy_upstream_failure(db, sync_engine):
    await insert_datasource(db, rest_datasource())
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401))) as client:
        with pytest.raises(ExternalFetchError):
            await proxy_options(sync_engine, "products", client=client)
