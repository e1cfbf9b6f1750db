"""LessonReservationDriver — Action Driver for the lesson reservation site.

The contested step is the lesson cell for the target date. Whether it is
still bookable is read from its computed background colour: the site paints
unavailable cells grey (``rgb(119, 119, 119)``).
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from reservebot.browser.session import BrowserSession
from reservebot.config import settings
from reservebot.scheduler.driver import ActionDriver
from reservebot.scheduler.models import AttemptOutcome

if TYPE_CHECKING:
    from playwright.async_api import Page

    from reservebot.config import TaskDocument

logger = logging.getLogger(__name__)

UNAVAILABLE_RGB = (119, 119, 119)

# Selectors on the member site
LOGIN_USER_SELECTOR = "#UserName"
LOGIN_PASSWORD_SELECTOR = "#Password"
LOGIN_SUBMIT_SELECTOR = "#main > ul > li:nth-child(1) > input"
_PAGE_ROOT = (
    "body > div.atomsv-wrap.ui-page.ui-body-bbb.ui-page-active > div.ca.ui-content.ui-body-bbb"
)
MAIN_MENU_SELECTOR = f"{_PAGE_ROOT} > main"
LESSON_MENU_SELECTOR = (
    f"{_PAGE_ROOT} > main > div > div > div:nth-child(3) > div.atomsv-main-menu"
    " > div > ul > li:nth-child(1) > a > span"
)
RESERVE_MENU_SELECTOR = f"{_PAGE_ROOT} > p:nth-child(1) > a > span > span.ui-btn-text"
STORE_SELECT_SELECTOR = "#TmpoCd"
CONFIRM_PAGE_SELECTOR = "#confirmsubmit > span"
FINAL_SUBMIT_SELECTOR = "#confirmsubmit"

SCHEDULE_READY_JS = "() => typeof window.scheduleNext !== 'undefined'"
NEXT_WEEK_JS = "() => { if (typeof window.scheduleNext === 'function') { window.scheduleNext(); } }"
BACKGROUND_COLOUR_JS = "el => window.getComputedStyle(el).backgroundColor"

# Per-call timeouts (ms)
PAGE_LOAD_TIMEOUT_MS = 30000
NAV_TIMEOUT_MS = 15000
STEP_TIMEOUT_MS = 10000
PROBE_TIMEOUT_MS = 5000
COMMIT_SETTLE_SECONDS = 2.0

_RGB_RE = re.compile(r"\d+")


def normalize_rgb(value: str) -> str:
    """Turn ``rgb(r, g, b)`` into ``rgba(r, g, b, 1)``; other values pass through."""
    value = value.strip()
    if value.startswith("rgb(") and not value.startswith("rgba("):
        parts = _RGB_RE.findall(value)
        if len(parts) >= 3:
            return f"rgba({parts[0]}, {parts[1]}, {parts[2]}, 1)"
    return value


def is_unavailable_colour(value: str) -> bool:
    """True when a computed background colour marks the lesson as taken."""
    parts = tuple(int(p) for p in _RGB_RE.findall(normalize_rgb(value))[:3])
    return parts == UNAVAILABLE_RGB


class LessonReservationDriver(ActionDriver):
    """Books one lesson seat through a Playwright-controlled browser.

    Args:
        document: Task document with login, store, and lesson selectors.
        session: Browser session to use (a new one by default).
        login_url: Override for the member-site login page.
    """

    def __init__(
        self,
        document: TaskDocument,
        session: BrowserSession | None = None,
        login_url: str | None = None,
    ) -> None:
        self._document = document
        self._session = session or BrowserSession()
        self._login_url = login_url or settings.site_login_url
        self._page: Page | None = None
        self._armed = False
        self.last_colour: str | None = None

    def _require_page(self) -> Page:
        if self._page is None:
            msg = "Driver not set up — call setup() first"
            raise RuntimeError(msg)
        return self._page

    # -- ActionDriver ----------------------------------------------------------

    async def setup(self) -> None:
        """Log in and open the lesson schedule for the configured store."""
        await self._session.start()
        page = await self._session.new_page()
        self._page = page

        await page.goto(
            self._login_url, wait_until="domcontentloaded", timeout=PAGE_LOAD_TIMEOUT_MS
        )
        await page.wait_for_selector(LOGIN_USER_SELECTOR, state="visible", timeout=STEP_TIMEOUT_MS)
        await page.fill(LOGIN_USER_SELECTOR, self._document.login.id)
        await page.fill(LOGIN_PASSWORD_SELECTOR, self._document.login.password)
        await page.click(LOGIN_SUBMIT_SELECTOR)
        await page.wait_for_selector(MAIN_MENU_SELECTOR, state="visible", timeout=NAV_TIMEOUT_MS)
        logger.info("Logged in as %s", self._document.login.id)

        await page.evaluate("() => window.scrollTo(0, 500)")
        await self._click_when_visible(LESSON_MENU_SELECTOR)
        await self._click_when_visible(RESERVE_MENU_SELECTOR)

        store_select = page.locator(STORE_SELECT_SELECTOR)
        await store_select.wait_for(state="visible", timeout=STEP_TIMEOUT_MS)
        await store_select.select_option(index=self._document.store.selected_store_index)
        await page.wait_for_function(SCHEDULE_READY_JS, timeout=NAV_TIMEOUT_MS)

        await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
        await asyncio.sleep(0.1)
        logger.info("Schedule ready for store #%d", self._document.store.selected_store_index)

    async def probe(self) -> AttemptOutcome:
        page = self._require_page()
        started = time.monotonic()
        lesson_clicked = False
        try:
            if not self._armed:
                await page.evaluate(NEXT_WEEK_JS)
                self._armed = True

            lesson = page.locator(self._document.lesson.date_selector)
            await lesson.wait_for(state="visible", timeout=PROBE_TIMEOUT_MS)
            colour = normalize_rgb(await lesson.evaluate(BACKGROUND_COLOUR_JS))
            self.last_colour = colour
            logger.info("Lesson background colour: %s", colour)
            if is_unavailable_colour(colour):
                return AttemptOutcome.CONTESTED

            await lesson.click(timeout=PROBE_TIMEOUT_MS)
            lesson_clicked = True
            logger.info("Lesson selected (+%.3fs)", time.monotonic() - started)
            await self._click_when_visible(self._document.lesson.location_selector)
            logger.info("Seat selected (+%.3fs)", time.monotonic() - started)
            await self._click_when_visible(CONFIRM_PAGE_SELECTOR)
            logger.info("Confirmation page reached (+%.3fs)", time.monotonic() - started)
        except PlaywrightTimeoutError as exc:
            # Once the lesson is clicked the page has moved on; only a full reset recovers
            if lesson_clicked:
                logger.warning("Timed out after selecting the lesson: %s", exc)
                return AttemptOutcome.FATAL_FAILURE
            return AttemptOutcome.TRANSIENT_FAILURE
        except PlaywrightError as exc:
            logger.warning("Unexpected browser error during probe: %s", exc)
            return AttemptOutcome.FATAL_FAILURE
        return AttemptOutcome.ACQUIRED

    async def reset_view(self) -> None:
        """Reload the schedule and move to the target week again."""
        page = self._require_page()
        await page.reload(wait_until="domcontentloaded", timeout=STEP_TIMEOUT_MS)
        await page.wait_for_function(SCHEDULE_READY_JS, timeout=STEP_TIMEOUT_MS)
        await page.evaluate(NEXT_WEEK_JS)
        self._armed = True

    async def commit_final(self) -> None:
        await self._click_when_visible(FINAL_SUBMIT_SELECTOR)
        await asyncio.sleep(COMMIT_SETTLE_SECONDS)

    async def teardown(self) -> None:
        self._page = None
        self._armed = False
        try:
            await self._session.stop()
        except Exception:
            logger.warning("Browser did not close cleanly", exc_info=True)

    # -- Internal --------------------------------------------------------------

    async def _click_when_visible(self, selector: str) -> None:
        locator = self._require_page().locator(selector)
        await locator.wait_for(state="visible", timeout=STEP_TIMEOUT_MS)
        await locator.click(timeout=STEP_TIMEOUT_MS)
