"""
Shared fixtures and in-memory fakes for the Playwright page surface.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from terminwatch.browser import PageLocator
from terminwatch.detector import ChangeDetector
from terminwatch.errors import BrowserFatalError
from terminwatch.models import CheckResult, CycleError, CycleOutcome
from terminwatch.monitor import MonitorEngine
from terminwatch.site import MONTH_NAMES
from terminwatch.store import ConfigStore


CELL_RE = re.compile(r'^td\[data-value="(\d{4}/\d{2}/\d{2})"\]$')


class FakeElement:
    def __init__(
        self,
        text: str | Callable[[], str] = "",
        attrs: Optional[Dict[str, str]] = None,
        *,
        checked: bool = False,
        sticky: bool = True,
        options: Optional[List[Dict[str, str]]] = None,
        info: Any = None,
        on_click: Optional[Callable[[], None]] = None,
    ) -> None:
        self._text = text
        self.attrs = attrs or {}
        self.checked = checked
        self.sticky = sticky
        self.options = options or []
        self.info = info
        self.on_click = on_click
        self.clicks = 0
        self.selected: Optional[str] = None

    async def inner_text(self) -> str:
        return self._text() if callable(self._text) else self._text

    async def get_attribute(self, name: str) -> Optional[str]:
        return self.attrs.get(name)

    async def is_checked(self) -> bool:
        return self.checked

    async def click(self, timeout: Optional[float] = None) -> None:
        self.clicks += 1
        if self.sticky:
            self.checked = not self.checked
        if self.on_click:
            self.on_click()

    async def eval_on_selector_all(self, selector: str, script: str) -> List[Dict[str, str]]:
        return list(self.options)

    async def select_option(self, value: Optional[str] = None) -> List[str]:
        self.selected = value
        return [value] if value else []

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if isinstance(self.info, Exception):
            raise self.info
        return self.info


class FakeResponse:
    def __init__(self, status: int = 200) -> None:
        self.status = status


class FakeBookingPage:
    """
    Minimal stand-in for the booking site.

    Shows one calendar month at a time; next/previous buttons move it. Date
    cells exist only for the displayed month.
    """

    def __init__(
        self,
        year: int = 2025,
        month: int = 3,
        *,
        available: Iterable[str] = (),
        disabled: Iterable[str] = (),
        services: Iterable[str] = ("neuzulassung", "umschreibung"),
        locations: Optional[List[Dict[str, str]]] = None,
        missing: Iterable[str] = (),
        status: int = 200,
    ) -> None:
        self.year = year
        self.month = month
        self.available = set(available)
        self.disabled = set(disabled)
        self.status = status
        self.clicks: List[str] = []
        self.goto_calls: List[str] = []
        self.missing = set(missing)
        self.cell_info: Dict[str, Any] = {}

        self.location = FakeElement(
            options=locations
            if locations is not None
            else [
                {"value": "", "label": "Bitte wählen"},
                {"value": "wetzlar", "label": "Wetzlar"},
                {"value": "dillenburg", "label": "Dillenburg"},
            ]
        )
        self.service_controls = {key: FakeElement(attrs={"role": "checkbox"}) for key in services}
        self.elements: Dict[str, FakeElement] = {
            "form#appointment-form": FakeElement(),
            "select#location": self.location,
            'button[type="submit"]': FakeElement(sticky=False),
            ".dx-calendar-caption-button .dx-button-text": FakeElement(text=self.caption),
            ".dx-calendar-navigator-next-month": FakeElement(sticky=False, on_click=self._next),
            ".dx-calendar-navigator-previous-month": FakeElement(sticky=False, on_click=self._previous),
        }
        for key, control in self.service_controls.items():
            self.elements[f'[data-service="{key}"] [role="checkbox"]'] = control

    def caption(self) -> str:
        return f"{MONTH_NAMES[self.month]} {self.year}"

    def _next(self) -> None:
        self.clicks.append("next")
        self.year, self.month = (self.year + 1, 1) if self.month == 12 else (self.year, self.month + 1)

    def _previous(self) -> None:
        self.clicks.append("previous")
        self.year, self.month = (self.year - 1, 12) if self.month == 1 else (self.year, self.month - 1)

    def _lookup(self, selector: str) -> Optional[FakeElement]:
        if selector in self.missing:
            return None
        match = CELL_RE.match(selector)
        if match:
            date = match.group(1)
            year, month, _ = (int(p) for p in date.split("/"))
            if (year, month) != (self.year, self.month):
                return None
            classes = ["dx-calendar-cell"]
            if date in self.available:
                classes.append("bg-success")
            if date in self.disabled:
                classes.append("disabled-date")
            return FakeElement(attrs={"class": " ".join(classes)}, info=self.cell_info.get(date))
        return self.elements.get(selector)

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None) -> FakeResponse:
        self.goto_calls.append(url)
        return FakeResponse(self.status)

    async def wait_for_selector(
        self, selector: str, timeout: Optional[float] = None, state: Optional[str] = None
    ) -> FakeElement:
        element = self._lookup(selector)
        if element is None:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return element

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        return self._lookup(selector)

    def is_closed(self) -> bool:
        return False


class FakeSession:
    def __init__(self, page: FakeBookingPage, *, fail: bool = False) -> None:
        self._page = page
        self.fail = fail
        self.ensure_calls = 0
        self.closed = 0
        self.screenshots: List[Path] = []

    @property
    def page(self) -> FakeBookingPage:
        return self._page

    @property
    def is_usable(self) -> bool:
        return not self.fail

    async def ensure(self, user_agent: str = "") -> None:
        self.ensure_calls += 1
        if self.fail:
            raise BrowserFatalError("Target page, context or browser has been closed")

    async def close(self) -> None:
        self.closed += 1

    async def screenshot(self, path: Path) -> Path:
        self.screenshots.append(path)
        return path


class FakeNavigator:
    """Navigator double: reports configured availability for every date."""

    def __init__(self) -> None:
        self.availability: Dict[str, bool] = {}
        self.error: Optional[CycleError] = None
        self.release: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.calls = 0
        self.seen_dates: List[List[str]] = []
        self.ensure_calls = 0
        self.fail_ensure = False
        self.ensure_release: Optional[asyncio.Event] = None
        self.ensuring = False
        self.cycle_during_ensure = False
        self.closed = False

    async def ensure_session(self, user_agent: str = "") -> None:
        self.ensure_calls += 1
        self.ensuring = True
        try:
            if self.ensure_release is not None:
                await self.ensure_release.wait()
        finally:
            self.ensuring = False
        if self.fail_ensure:
            raise BrowserFatalError("Could not start browser: executable missing")

    async def run_cycle(self, watched_dates, services, location, *, url, user_agent="", options=None) -> CycleOutcome:
        self.calls += 1
        self.cycle_during_ensure = self.cycle_during_ensure or self.ensuring
        dates = list(watched_dates)
        self.seen_dates.append(dates)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        return CycleOutcome(
            results=[CheckResult(date=d, available=self.availability.get(d, False)) for d in dates],
            error=self.error,
        )

    async def close(self) -> None:
        self.closed = True


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def booking_page() -> FakeBookingPage:
    return FakeBookingPage()


@pytest.fixture
def locator(booking_page: FakeBookingPage) -> PageLocator:
    return PageLocator(booking_page, attempt_timeout_ms=10, settle_delay_ms=0)  # type: ignore[arg-type]


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "config" / "settings.json")


@pytest.fixture
def fake_navigator() -> FakeNavigator:
    return FakeNavigator()


@pytest.fixture
def engine(store: ConfigStore, fake_navigator: FakeNavigator) -> MonitorEngine:
    return MonitorEngine(store, fake_navigator, ChangeDetector())  # type: ignore[arg-type]
