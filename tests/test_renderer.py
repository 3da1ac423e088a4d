from __future__ import annotations

import asyncio
import os

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from storewatch.capture.renderer import (
    DEFAULT_HEADERS,
    CaptureRequest,
    PlaywrightRenderService,
    RenderService,
    build_capture_request,
)
from storewatch.config import WatchConfig
from storewatch.errors import CaptureError


def test_capture_request_follows_config() -> None:
    config = WatchConfig(capture_timeout_seconds=30, capture_settle_seconds=2, viewport_width=1440, user_agent="ua/1")

    request = build_capture_request(config, "https://shop.example.com")

    assert request.url == "https://shop.example.com"
    assert request.timeout_seconds == 30
    assert request.settle_seconds == 2
    assert request.viewport_width == 1440
    assert request.viewport_height == 800
    assert request.user_agent == "ua/1"
    assert request.extra_headers == DEFAULT_HEADERS
    assert "cookie" in request.hide_css


def test_capture_request_headers_are_not_shared() -> None:
    first = CaptureRequest(url="https://a.example.test")
    second = CaptureRequest(url="https://b.example.test")

    first.extra_headers["X-Extra"] = "1"

    assert "X-Extra" not in second.extra_headers


@pytest.mark.asyncio
async def test_base_render_service_has_no_backend() -> None:
    async with RenderService() as service:
        with pytest.raises(NotImplementedError):
            await service.capture(CaptureRequest(url="https://shop.example.com"))


@pytest.mark.asyncio
async def test_stopping_unstarted_playwright_service_is_noop() -> None:
    service = PlaywrightRenderService()

    await service.stop()

    assert service.browser is None
    assert service.playwright is None


@pytest.mark.live
@pytest.mark.skipif(not os.getenv("STOREWATCH_LIVE_TESTS"), reason="needs a local Chromium and network access")
@pytest.mark.asyncio
async def test_live_capture_returns_png() -> None:
    service = PlaywrightRenderService()
    try:
        data = await service.capture(CaptureRequest(url="https://example.com", settle_seconds=0))
    finally:
        await service.stop()

    assert data.startswith(b"\x89PNG")


class FakeRoute:
    def __init__(self, resource_type: str) -> None:
        self.request = type("Req", (), {"resource_type": resource_type})()
        self.outcome: str | None = None

    async def abort(self) -> None:
        self.outcome = "aborted"

    async def continue_(self) -> None:
        self.outcome = "continued"


class FakePage:
    def __init__(self, goto_error: Exception | None = None, hang: bool = False) -> None:
        self.goto_error = goto_error
        self.hang = hang
        self.route_handler = None
        self.styles: list[str] = []
        self.goto_calls: list[tuple] = []

    async def route(self, pattern: str, handler) -> None:
        self.route_handler = handler

    async def goto(self, url: str, wait_until: str, timeout: float) -> None:
        self.goto_calls.append((url, wait_until, timeout))
        if self.hang:
            await asyncio.Event().wait()
        if self.goto_error is not None:
            raise self.goto_error

    async def add_style_tag(self, content: str) -> None:
        self.styles.append(content)

    async def screenshot(self, full_page: bool, type: str) -> bytes:
        assert full_page is True
        return b"\x89PNG fake"


class FakeContext:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.closed = False

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.contexts: list[FakeContext] = []
        self.context_options: list[dict] = []

    def is_connected(self) -> bool:
        return True

    async def new_context(self, **kwargs) -> FakeContext:
        self.context_options.append(kwargs)
        context = FakeContext(self.page)
        self.contexts.append(context)
        return context


def _service(page: FakePage) -> tuple[PlaywrightRenderService, FakeBrowser]:
    service = PlaywrightRenderService()
    browser = FakeBrowser(page)
    service.browser = browser
    return service, browser


@pytest.mark.asyncio
async def test_capture_returns_screenshot_and_closes_context() -> None:
    page = FakePage()
    service, browser = _service(page)
    request = CaptureRequest(url="https://shop.example.com", timeout_seconds=30, settle_seconds=0, user_agent="ua/1")

    data = await service.capture(request)

    assert data == b"\x89PNG fake"
    assert page.goto_calls == [("https://shop.example.com", "networkidle", 30000)]
    assert page.styles == [request.hide_css]
    options = browser.context_options[0]
    assert options["viewport"] == {"width": 1280, "height": 800}
    assert options["user_agent"] == "ua/1"
    assert options["extra_http_headers"] == DEFAULT_HEADERS
    assert browser.contexts[0].closed is True


@pytest.mark.asyncio
@pytest.mark.parametrize("resource_type, outcome", [("font", "aborted"), ("media", "aborted"), ("document", "continued")])
async def test_capture_blocks_heavy_resources(resource_type: str, outcome: str) -> None:
    page = FakePage()
    service, _ = _service(page)
    await service.capture(CaptureRequest(url="https://shop.example.com", settle_seconds=0))

    route = FakeRoute(resource_type)
    await page.route_handler(route)

    assert route.outcome == outcome


@pytest.mark.asyncio
async def test_hanging_load_becomes_connectivity_timeout() -> None:
    page = FakePage(hang=True)
    service, browser = _service(page)

    with pytest.raises(CaptureError) as exc:
        await service.capture(CaptureRequest(url="https://shop.example.com", timeout_seconds=0.05, settle_seconds=0))

    assert exc.value.connectivity is True
    assert "0.05s" in str(exc.value)
    assert browser.contexts[0].closed is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, connectivity",
    [
        (PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://shop.example.com"), True),
        (PlaywrightError("net::ERR_CONNECTION_REFUSED at https://shop.example.com"), True),
        (PlaywrightTimeoutError("Page.goto: Timeout 45000ms exceeded."), True),
        (PlaywrightError("Page crashed"), False),
    ],
)
async def test_browser_errors_are_classified(error: Exception, connectivity: bool) -> None:
    page = FakePage(goto_error=error)
    service, browser = _service(page)

    with pytest.raises(CaptureError) as exc:
        await service.capture(CaptureRequest(url="https://shop.example.com", settle_seconds=0))

    assert exc.value.connectivity is connectivity
    assert browser.contexts[0].closed is True
