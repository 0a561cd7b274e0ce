"""Tests for retry classification and the reader fetch/fallback chain."""

from __future__ import annotations

import asyncio
import random

import httpx

from feed_crawler.config import ExtractConfig, FetchConfig
from feed_crawler.core.errors import FetchError, classify_status, is_retryable, retry_delay
from feed_crawler.fetch.extractor import clean_scraped_text, extract_text
from feed_crawler.fetch.fetcher import (
    ContentFetcher,
    build_reader_url,
    check_reader_health,
    fetch_reader_content,
    is_error_content,
    scrape_page,
    should_use_reader,
)

ARTICLE_URL = "https://example.com/post/1"
READER_HOST = "r.jina.ai"


class _Sleeper:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _fetcher(handler, max_retries: int = 3, max_content_bytes: int = 1_000_000) -> tuple[ContentFetcher, _Sleeper, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    sleeper = _Sleeper()
    fetcher = ContentFetcher(
        FetchConfig(max_retries=max_retries, max_content_bytes=max_content_bytes),
        ExtractConfig(),
        client=client,
        sleep=sleeper,
        rng=random.Random(7),
    )
    return fetcher, sleeper, requests


def _reader_calls(requests: list[httpx.Request]) -> int:
    return sum(1 for r in requests if r.url.host == READER_HOST)


def test_rate_limit_is_retryable_with_sixty_second_delay():
    err = classify_status(429, ARTICLE_URL)
    assert is_retryable(err)
    assert retry_delay(err, 0) == 60.0
    assert retry_delay(err, 1) == 120.0


def test_client_errors_are_not_retryable():
    assert not is_retryable(classify_status(404, ARTICLE_URL))
    assert not is_retryable(classify_status(403, ARTICLE_URL))
    assert retry_delay(FetchError(404, ARTICLE_URL), 0) == 10.0


def test_server_and_network_delays_fall_in_jitter_window():
    rng = random.Random(1)
    for code in (0, 408, 500, 503):
        err = classify_status(code, ARTICLE_URL)
        assert is_retryable(err)
        assert 5.0 <= retry_delay(err, 0, rng) <= 30.0
        assert 10.0 <= retry_delay(err, 1, rng) <= 60.0


def test_classify_status_messages():
    assert "Timeout" in str(classify_status(408, ARTICLE_URL))
    assert "Network error" in str(classify_status(0, ARTICLE_URL))
    assert str(classify_status(500, ARTICLE_URL, "boom")) == "boom"


def test_build_reader_url_strips_scheme():
    prefix = "https://r.jina.ai/http://"
    assert build_reader_url(prefix, "https://a.com/x") == "https://r.jina.ai/http://a.com/x"
    assert build_reader_url(prefix, "http://a.com/x", "text") == "https://r.jina.ai/http://a.com/x?format=text"


def test_should_use_reader_requires_opt_in_and_text_type():
    assert should_use_reader("blog", True)
    assert not should_use_reader("blog", False)
    assert not should_use_reader("podcast", True)


def test_is_error_content_markers():
    assert is_error_content("Jina AI reader error: could not render")
    assert is_error_content("Please enable JavaScript to view this page")
    assert is_error_content("Checking your browser... Ray ID: 12345")
    assert not is_error_content("A normal article body about Ray ID tracking. " * 40)


def test_reader_success_returns_markdown():
    fetcher, sleeper, requests = _fetcher(lambda r: httpx.Response(200, text="# Title\n\nBody"))

    result = asyncio.run(fetcher.fetch(ARTICLE_URL, "rss body"))

    assert result.ok
    assert result.origin == "reader"
    assert result.content_format == "markdown"
    assert result.attempts == 1
    assert sleeper.delays == []
    assert str(requests[0].url) == "https://r.jina.ai/http://example.com/post/1"


def test_not_found_stops_after_one_attempt_and_uses_rss():
    fetcher, sleeper, requests = _fetcher(lambda r: httpx.Response(404, text="missing"))

    result = asyncio.run(fetcher.fetch(ARTICLE_URL, "<p>From the feed</p>"))

    assert result.origin == "rss"
    assert result.content == "<p>From the feed</p>"
    assert result.content_format == "html"
    assert result.attempts == 1
    assert result.error.status_code == 404
    assert sleeper.delays == []
    assert _reader_calls(requests) == 1


def test_rate_limit_retries_then_succeeds():
    responses = iter([httpx.Response(429), httpx.Response(200, text="Recovered body")])
    fetcher, sleeper, _ = _fetcher(lambda r: next(responses))

    result = asyncio.run(fetcher.fetch(ARTICLE_URL))

    assert result.origin == "reader"
    assert result.attempts == 2
    assert sleeper.delays == [60.0]


def test_server_errors_exhaust_retries_then_scrape():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == READER_HOST:
            return httpx.Response(503)
        return httpx.Response(
            200,
            text="<html><body><nav>menu</nav><article><p>Scraped   article text</p></article></body></html>",
        )

    fetcher, sleeper, requests = _fetcher(handler, max_retries=2)

    result = asyncio.run(fetcher.fetch(ARTICLE_URL, ""))

    assert result.origin == "scrape"
    assert result.content == "Scraped article text"
    assert result.content_format == "text"
    assert result.attempts == 3
    assert len(sleeper.delays) == 2
    assert _reader_calls(requests) == 3


def test_timeouts_are_classified_and_everything_failing_yields_none():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == READER_HOST:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(500)

    fetcher, sleeper, _ = _fetcher(handler, max_retries=1)

    result = asyncio.run(fetcher.fetch(ARTICLE_URL, "   "))

    assert not result.ok
    assert result.origin == "none"
    assert result.error.status_code == 408
    assert len(sleeper.delays) == 1


def test_reader_error_page_is_not_retried():
    fetcher, sleeper, _ = _fetcher(lambda r: httpx.Response(200, text="Please enable JavaScript"), max_retries=3)

    result = asyncio.run(fetcher.fetch(ARTICLE_URL, "feed text"))

    assert result.origin == "rss"
    assert result.attempts == 1
    assert sleeper.delays == []


def test_oversized_reader_response_is_not_retried():
    fetcher, sleeper, _ = _fetcher(lambda r: httpx.Response(200, text="x" * 2000), max_content_bytes=1000)

    result = asyncio.run(fetcher.fetch(ARTICLE_URL, "feed text"))

    assert result.origin == "rss"
    assert result.attempts == 1
    assert result.error.status_code == 413
    assert "Content too large: 2000 bytes (max 1000)" in str(result.error)
    assert not is_retryable(result.error)
    assert sleeper.delays == []


async def _chunks(count: int, size: int):
    for _ in range(count):
        yield b"a" * size


def test_streamed_body_over_the_cap_is_rejected_without_content_length():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=_chunks(3, 600))))
    cfg = FetchConfig(max_content_bytes=1000)

    result = asyncio.run(fetch_reader_content(ARTICLE_URL, cfg, client=client))
    scraped = asyncio.run(scrape_page(ARTICLE_URL, cfg, client=client))

    assert result.error.status_code == 413
    assert scraped == ""


def test_body_within_the_cap_is_read():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=_chunks(2, 400))))

    result = asyncio.run(fetch_reader_content(ARTICLE_URL, FetchConfig(max_content_bytes=1000), client=client))

    assert result.error is None
    assert result.text == "a" * 800


def test_check_reader_health():
    healthy = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    down = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(502)))

    assert asyncio.run(check_reader_health("https://r.jina.ai/http://", client=healthy))
    assert not asyncio.run(check_reader_health("https://r.jina.ai/http://", client=down))


def test_extract_text_drops_boilerplate_and_caps_length():
    html = "<html><head><script>var x = 1;</script></head><body><footer>f</footer><p>Body &amp; more</p></body></html>"
    assert extract_text(html) == "Body & more"
    assert extract_text("", "bs4") is None
    assert clean_scraped_text("a   b\n\nc", max_chars=3) == "a b"
