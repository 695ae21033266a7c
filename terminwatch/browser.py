"""
Playwright-based browser session for the booking site.

Browser-Modul auf Playwright-Basis:
- eine langlebige Session pro Engine, wird zwischen Zyklen wiederverwendet
- Selektor-Ketten: primärer Selektor plus Fallbacks, jeweils mit eigenem Timeout
- Playwright-Fehler werden in die Fehlertaxonomie der Engine übersetzt
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Dict, Mapping, Optional, Sequence, TypeVar

from playwright.async_api import Browser, BrowserContext, ElementHandle, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import BrowserFatalError, StructuralError, TransientPageError
from .site import DEFAULT_USER_AGENT, SELECTOR_CHAINS, Step
from .utils import async_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fragments of Playwright error messages meaning the session itself is gone
_CLOSED_MARKERS = (
    "target closed",
    "has been closed",
    "browser closed",
    "connection closed",
    "browser has disconnected",
)

BROWSER_MAX_LIFETIME = 3600  # seconds


def is_session_lost(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CLOSED_MARKERS)


class BrowserSession:
    """
    One headless Chromium with a single page.

    The session survives recoverable errors and is lazily recreated when it
    is found unusable (crash, closed page) or older than an hour.
    """

    def __init__(self, *, headless: bool = True) -> None:
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._startup_ts: Optional[datetime] = None
        self._user_agent: Optional[str] = None

    @property
    def page(self) -> Page:
        if not self._page:
            raise BrowserFatalError("Browser not initialised")
        return self._page

    @property
    def is_usable(self) -> bool:
        if not self._browser or not self._page:
            return False
        try:
            return self._browser.is_connected() and not self._page.is_closed()
        except PlaywrightError:
            return False

    async def ensure(self, user_agent: str = DEFAULT_USER_AGENT) -> None:
        """Make sure a usable session exists; raises BrowserFatalError otherwise."""
        now = datetime.now(timezone.utc)
        if self._browser and self._startup_ts:
            lifetime = (now - self._startup_ts).total_seconds()
            if lifetime > BROWSER_MAX_LIFETIME:
                logger.info("Restarting browser after %.0f seconds", lifetime)
                await self.close()
            elif user_agent != self._user_agent:
                logger.info("User agent changed, restarting browser")
                await self.close()

        if self.is_usable:
            return
        if self._browser or self._playwright:
            logger.warning("Browser session is not usable, reinitialising")
            await self.close()

        try:
            await self._start(user_agent)
        except PlaywrightError as e:
            await self.close()
            raise BrowserFatalError(f"Could not start browser: {e}") from e

    @async_retry(attempts=3, base_delay=2, max_delay=10, exceptions=(PlaywrightError,))
    async def _start(self, user_agent: str) -> None:
        logger.info("Starting Playwright browser (headless=%s)", self.headless)
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                "--no-sandbox",
                "--disable-setuid-sandbox",
                "--disable-dev-shm-usage",
                "--disable-gpu",
            ],
        )
        self._context = await self._browser.new_context(
            viewport={"width": 1920, "height": 1080},
            user_agent=user_agent,
            locale="de-DE",
        )
        self._page = await self._context.new_page()
        self._user_agent = user_agent
        self._startup_ts = datetime.now(timezone.utc)

    async def close(self) -> None:
        """Close browser and Playwright; never raises."""
        logger.info("Closing Playwright browser")
        for closer in (
            self._page.close if self._page else None,
            self._context.close if self._context else None,
            self._browser.close if self._browser else None,
            self._playwright.stop if self._playwright else None,
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:  # noqa: BLE001
                logger.debug("Ignoring error while closing browser: %s", e)

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._startup_ts = None

    async def screenshot(self, path: Path) -> Path:
        """Capture screenshot of current page."""
        path.parent.mkdir(parents=True, exist_ok=True)
        await self.page.screenshot(path=str(path), full_page=True)
        return path


class PageLocator:
    """
    Step-oriented access to the page.

    ``locate(step)`` walks the selector chain of a step, giving each selector
    its own timeout, and raises StructuralError naming the step once the chain
    is exhausted.
    """

    def __init__(
        self,
        page: Page,
        *,
        attempt_timeout_ms: int = 10000,
        settle_delay_ms: int = 800,
        chains: Optional[Mapping[Step, Sequence[str]]] = None,
    ) -> None:
        self.page = page
        self.attempt_timeout_ms = attempt_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self.chains = chains or SELECTOR_CHAINS

    def selectors(self, step: Step, **params: str) -> list[str]:
        return [sel.format(**params) for sel in self.chains[step]]

    async def goto(self, url: str, *, timeout_ms: int = 30000) -> None:
        try:
            resp = await self.page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TransientPageError(f"Loading {url} timed out after {timeout_ms} ms", step="load") from e
        except PlaywrightError as e:
            raise self._translate(e, "load") from e
        if resp and resp.status >= 400:
            raise TransientPageError(f"{url} returned HTTP {resp.status}", step="load")

    async def locate(self, step: Step, *, timeout_ms: Optional[int] = None, **params: str) -> ElementHandle:
        timeout = timeout_ms or self.attempt_timeout_ms
        selectors = self.selectors(step, **params)
        for index, sel in enumerate(selectors):
            try:
                element = await self.page.wait_for_selector(sel, timeout=timeout, state="attached")
            except PlaywrightTimeoutError:
                logger.debug("Selector %s for %s timed out", sel, step.value)
                continue
            except PlaywrightError as e:
                if is_session_lost(e):
                    raise BrowserFatalError(str(e)) from e
                logger.debug("Selector %s for %s failed: %s", sel, step.value, e)
                continue
            if element is None:
                continue
            if index:
                logger.info("Step %s matched fallback selector %s", step.value, sel)
            return element
        raise StructuralError(step=step.value, selectors=tuple(selectors))

    async def query(self, step: Step, **params: str) -> Optional[ElementHandle]:
        """Immediate lookup without waiting; None when nothing matches."""
        for sel in self.selectors(step, **params):
            element = await self.guard(step, self.page.query_selector(sel))
            if element is not None:
                return element
        return None

    async def text(self, step: Step, **params: str) -> str:
        element = await self.locate(step, **params)
        value = await self.guard(step, element.inner_text())
        return (value or "").strip()

    async def click(self, step: Step, **params: str) -> None:
        element = await self.locate(step, **params)
        await self.guard(step, element.click(timeout=self.attempt_timeout_ms))

    async def settle(self) -> None:
        if self.settle_delay_ms > 0:
            await asyncio.sleep(self.settle_delay_ms / 1000)

    async def guard(self, step: Step, awaitable: Awaitable[T]) -> T:
        """Await a raw Playwright call, translating its errors."""
        try:
            return await awaitable
        except PlaywrightError as e:
            raise self._translate(e, step.value) from e

    @staticmethod
    def _translate(exc: PlaywrightError, step: str) -> Exception:
        if isinstance(exc, PlaywrightTimeoutError):
            return TransientPageError(f"Step {step} timed out: {exc}", step=step)
        if is_session_lost(exc):
            return BrowserFatalError(str(exc))
        return TransientPageError(f"Step {step} failed: {exc}", step=step)


async def option_list(locator: PageLocator, select: ElementHandle) -> list[Dict[str, Any]]:
    """Non-empty <option> values of a select element."""
    options = await locator.guard(
        Step.LOCATION,
        select.eval_on_selector_all(
            "option",
            "opts => opts.map(o => ({value: o.value, label: (o.textContent || '').trim()}))",
        ),
    )
    return [o for o in options or [] if o.get("value")]


__all__ = ["BrowserSession", "PageLocator", "option_list", "is_session_lost"]
