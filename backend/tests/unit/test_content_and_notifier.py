import httpx
import pytest

from app.core.errors import FatalJobError, TransientExternalError
from app.services.content import GenerationInput, HttpContentGenerator, TemplateContentGenerator
from app.services.notifier import WebhookNotifier


def _input(**options) -> GenerationInput:
    creation_options = {
        "create_about_page": True,
        "create_contact_page": False,
        "create_legal_pages": True,
        "create_example_products": True,
        "number_of_products": 3,
        "create_blog_with_posts": False,
        "setup_basic_nav": True,
    }
    creation_options.update(options)
    return GenerationInput(
        store_name="Acme Candles",
        brand_description="Hand-poured soy candles.",
        target_audience="Gift shoppers",
        brand_personality="Warm",
        product_type_description="Scented candle",
        creation_options=creation_options,
    )


def _generator(handler, sleeps=None) -> HttpContentGenerator:
    return HttpContentGenerator(
        "https://content.example.com/generate",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_attempts=2,
        backoff_seconds=0.5,
        sleep=(sleeps if sleeps is not None else []).append,
    )


def test_template_generator_honours_creation_options():
    content = TemplateContentGenerator().generate(_input(), "co-1")

    assert content.about_page.title == "About Acme Candles"
    assert content.contact_page is None
    assert len(content.legal_pages) == 2
    assert "[Business Name]" in content.legal_pages[0].html_content
    assert len(content.example_products) == 3
    assert content.blog_posts == []


def test_http_generator_parses_camel_case_payload():
    payload = {
        "aboutPage": {"title": "About", "htmlContent": "<p>us</p>"},
        "exampleProducts": [{"title": "Candle", "descriptionHtml": "<p>wax</p>", "tags": ["soy"]}],
    }
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=payload)

    content = _generator(handler).generate(_input(), "co-1")

    assert content.about_page.html_content == "<p>us</p>"
    assert content.example_products[0].tags == ["soy"]
    assert b'"entityId"' in requests[0].content


def test_http_generator_error_classes():
    with pytest.raises(TransientExternalError):
        _generator(lambda _req: httpx.Response(503)).generate(_input(), "co-1")
    with pytest.raises(FatalJobError):
        _generator(lambda _req: httpx.Response(400)).generate(_input(), "co-1")
    with pytest.raises(FatalJobError):
        _generator(lambda _req: httpx.Response(200, json={"aboutPage": {"title": 1}})).generate(_input(), "co-1")


def test_http_generator_waits_out_rate_limit_before_retrying():
    responses = [
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.Response(200, json={"aboutPage": {"title": "About", "htmlContent": "<p>us</p>"}}),
    ]
    calls = []
    sleeps = []

    def handler(request):
        calls.append(request)
        return responses[len(calls) - 1]

    content = _generator(handler, sleeps).generate(_input(), "co-1")

    assert content.about_page.title == "About"
    assert len(calls) == 2
    assert sleeps == [3.0]


def test_http_generator_gives_up_after_bounded_attempts():
    calls = []
    sleeps = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(TransientExternalError, match="after 2 attempts"):
        _generator(handler, sleeps).generate(_input(), "co-1")

    assert len(calls) == 2
    assert sleeps == [0.5]


def test_webhook_failures_are_not_raised(caplog):
    notifier = WebhookNotifier(http_client=httpx.Client(transport=httpx.MockTransport(lambda _req: httpx.Response(500))))

    delivered = notifier.notify("https://hooks.example.com/x", {"jobId": "j-1", "status": "completed"})

    assert delivered is False
    assert "Failed to deliver completed webhook for job j-1" in caplog.text
    assert notifier.notify(None, {"jobId": "j-1"}) is False
