"""Full-page homepage capture using Playwright."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog
from playwright.async_api import Browser, Error as PlaywrightError, Route, TimeoutError as PlaywrightTimeoutError, async_playwright

from ..config import WatchConfig
from ..errors import CaptureError

logger = structlog.get_logger(__name__)


# Consent banners, chat widgets and popups vary between captures and drown real changes.
HIDE_OVERLAYS_CSS = """
[id*="cookie"], [class*="cookie"], [class*="gdpr"], [class*="consent"],
[class*="banner"], [class*="popup"], [class*="modal"], [class*="overlay"],
[class*="chat"], [id*="chat"], [id*="intercom"], [class*="widget"],
.cc-window, .cc-banner, .cc-revoke, iframe[src*="cookie"], iframe[src*="consent"],
[data-cookie], [data-gdpr], [data-consent], .modal-backdrop, .backdrop,
.newsletter-popup, .exit-intent, .notification-bar {
  display: none !important;
  visibility: hidden !important;
  opacity: 0 !important;
  pointer-events: none !important;
  height: 0 !important;
  max-height: 0 !important;
  overflow: hidden !important;
}
"""

DEFAULT_HEADERS = {
    "X-Storewatch-Monitor": "true",
    "X-Purpose": "Uptime monitoring with consent",
}


@dataclass(frozen=True)
class CaptureRequest:
    """Everything the render service needs to screenshot one homepage."""

    url: str
    timeout_seconds: float = 45.0
    settle_seconds: float = 5.0
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str | None = None
    blocked_resource_types: tuple[str, ...] = ("font", "media")
    hide_css: str | None = HIDE_OVERLAYS_CSS
    extra_headers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))


def build_capture_request(config: WatchConfig, url: str) -> CaptureRequest:
    return CaptureRequest(
        url=url,
        timeout_seconds=config.capture_timeout_seconds,
        settle_seconds=config.capture_settle_seconds,
        viewport_width=config.viewport_width,
        viewport_height=config.viewport_height,
        user_agent=config.user_agent,
    )


class RenderService:
    """Turns a capture request into PNG bytes; subclasses pick the browser backend."""

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self):
        """Acquire the backend connection."""

    async def stop(self):
        """Release the backend connection."""

    async def capture(self, request: CaptureRequest) -> bytes:
        raise NotImplementedError


class PlaywrightRenderService(RenderService):
    """Screenshots homepages in a local Chromium or a remote CDP browser."""

    def __init__(self, ws_endpoint: str | None = None, headless: bool = True):
        self.ws_endpoint = ws_endpoint
        self.headless = headless
        self.playwright: Any = None
        self.browser: Browser | None = None

    async def start(self):
        """Launch or connect to the browser."""
        if self.browser is not None and self.browser.is_connected():
            return

        if self.playwright is None:
            self.playwright = await async_playwright().start()

        if self.ws_endpoint:
            logger.info("Connecting to remote browser")
            self.browser = await self.playwright.chromium.connect_over_cdp(self.ws_endpoint)
        else:
            logger.info("Launching local browser", headless=self.headless)
            self.browser = await self.playwright.chromium.launch(headless=self.headless)

    async def stop(self):
        """Close the browser and the Playwright driver."""
        browser, self.browser = self.browser, None
        pw, self.playwright = self.playwright, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close failed", error=str(e))
        if pw is not None:
            await pw.stop()
        logger.info("Render service stopped")

    async def capture(self, request: CaptureRequest) -> bytes:
        """Take a full-page PNG screenshot of ``request.url``."""
        try:
            await self.start()
        except PlaywrightError as e:
            raise CaptureError(f"Browser unavailable: {e}", connectivity=False) from e

        context = await self.browser.new_context(
            viewport={"width": request.viewport_width, "height": request.viewport_height},
            user_agent=request.user_agent,
            extra_http_headers=request.extra_headers,
            ignore_https_errors=True,
        )
        bound = request.timeout_seconds + request.settle_seconds
        try:
            page = await context.new_page()
            if request.blocked_resource_types:
                blocked = set(request.blocked_resource_types)

                async def _filter(route: Route) -> None:
                    if route.request.resource_type in blocked:
                        await route.abort()
                    else:
                        await route.continue_()

                await page.route("**/*", _filter)

            return await asyncio.wait_for(self._load_and_screenshot(page, request), timeout=bound)
        except asyncio.TimeoutError as e:
            raise CaptureError(f"Capture timeout after {bound:g}s", connectivity=True) from e
        except PlaywrightTimeoutError as e:
            raise CaptureError(str(e), connectivity=True) from e
        except PlaywrightError as e:
            raise CaptureError(str(e)) from e
        finally:
            try:
                await context.close()
            except PlaywrightError:
                pass

    async def _load_and_screenshot(self, page, request: CaptureRequest) -> bytes:
        await page.goto(request.url, wait_until="networkidle", timeout=request.timeout_seconds * 1000)
        if request.hide_css:
            await page.add_style_tag(content=request.hide_css)
        if request.settle_seconds:
            await asyncio.sleep(request.settle_seconds)
        return await page.screenshot(full_page=True, type="png")
