"""Browser session — async context manager wrapping Playwright lifecycle."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from playwright.async_api import async_playwright

if TYPE_CHECKING:
    from types import TracebackType

    from playwright.async_api import Browser, BrowserContext, Page, Route

from reservebot.config import settings

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

# Chromium flags that cut startup and background work; images are off entirely
CHROMIUM_ARGS = [
    "--blink-settings=imagesEnabled=false",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-breakpad",
    "--disable-client-side-phishing-detection",
    "--disable-component-update",
    "--disable-default-apps",
    "--disable-features=TranslateUI",
    "--disable-hang-monitor",
    "--disable-ipc-flooding-protection",
    "--disable-popup-blocking",
    "--disable-prompt-on-repost",
    "--disable-renderer-backgrounding",
    "--disable-sync",
    "--metrics-recording-only",
    "--no-first-run",
    "--no-default-browser-check",
    "--no-pings",
    "--password-store=basic",
    "--use-mock-keychain",
    "--force-color-profile=srgb",
    "--hide-scrollbars",
    "--mute-audio",
]

# CSS is still needed: the availability signal is a computed background colour
BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font"})


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserSession:
    """Manages a Chromium browser for a single reservation run.

    Usage::

        async with BrowserSession() as session:
            page = await session.new_page()
            await page.goto("https://example.com")
    """

    def __init__(
        self,
        timeout_ms: int | None = None,
        headless: bool | None = None,
        stealth: bool | None = None,
    ) -> None:
        self._timeout_ms = timeout_ms or settings.browser_timeout_ms
        self._headless = settings.browser_headless if headless is None else headless
        self._stealth = settings.browser_stealth if stealth is None else stealth
        self._playwright = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    async def start(self) -> None:
        """Launch the browser and create a context with heavy resources blocked."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._headless,
            args=CHROMIUM_ARGS,
        )
        self._context = await self._browser.new_context(
            viewport=DEFAULT_VIEWPORT,
            ignore_https_errors=True,
            java_script_enabled=True,
        )
        self._context.set_default_timeout(self._timeout_ms)
        await self._context.route("**/*", _block_heavy_resources)

        if self._stealth:
            try:
                from playwright_stealth import Stealth

                await Stealth().apply_stealth_async(self._context)
                logger.info("Stealth evasions applied")
            except Exception:
                logger.warning(
                    "Failed to apply stealth evasions, continuing without", exc_info=True
                )

        logger.info(
            "Browser session started (headless=%s, timeout=%dms)", self._headless, self._timeout_ms
        )

    async def stop(self) -> None:
        """Close everything."""
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Browser session stopped")

    async def new_page(self) -> Page:
        """Create a new page in the browser context."""
        if self._context is None:
            msg = "Browser session not started — call start() or use as async context manager"
            raise RuntimeError(msg)
        return await self._context.new_page()

    async def __aenter__(self) -> BrowserSession:
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
