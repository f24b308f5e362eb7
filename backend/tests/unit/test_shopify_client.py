import httpx
import pytest

from app.core.errors import FatalJobError, TransientExternalError
from app.services.shopify import ShopifyAdminClient


def _client(handler, sleeps, max_attempts=3):
    return ShopifyAdminClient(
        "acme.myshopify.com",
        "shpat_token",
        api_version="2025-04",
        max_attempts=max_attempts,
        backoff_seconds=0.5,
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
    )


def test_rate_limited_calls_are_retried_with_retry_after():
    sleeps = []
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(201, json={"page": {"id": 7, "title": "About", "handle": "about"}}),
        ]
    )
    seen = []

    def handler(request):
        seen.append(request)
        return next(responses)

    with _client(handler, sleeps) as client:
        page = client.create_page("About", "<p>hi</p>")

    assert page["id"] == 7
    assert sleeps == [2.0]
    assert seen[0].headers["X-Shopify-Access-Token"] == "shpat_token"
    assert seen[0].url.path == "/admin/api/2025-04/pages.json"


def test_server_errors_back_off_exponentially_then_give_up():
    sleeps = []

    with _client(lambda _req: httpx.Response(503), sleeps) as client:
        with pytest.raises(TransientExternalError):
            client.create_product("Candle", "<p>x</p>", ["a", "b"])

    assert sleeps == [0.5, 1.0]


def test_client_errors_are_not_retried():
    sleeps = []
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(422, json={"errors": {"title": ["can't be blank"]}})

    with _client(handler, sleeps) as client:
        with pytest.raises(FatalJobError):
            client.create_page("", "")

    assert len(calls) == 1
    assert sleeps == []


def test_main_theme_and_menu_lookups():
    def handler(request):
        if request.url.path.endswith("/themes.json"):
            return httpx.Response(200, json={"themes": [{"id": 1, "role": "unpublished"}, {"id": 2, "role": "main"}]})
        return httpx.Response(200, json={"navigation": [{"id": 9, "handle": "footer"}]})

    with _client(handler, []) as client:
        assert client.main_theme()["id"] == 2
        assert client.main_menu() is None
