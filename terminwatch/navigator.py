"""
Navigator: drives one full check cycle against the booking site.

Ablauf: Seite laden -> Leistungen wählen -> Standort wählen -> Absenden ->
Kalender bereit -> pro überwachtem Datum Monat ansteuern und Zelle prüfen.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import logging
from pathlib import Path
from typing import Iterable, Optional

from playwright.async_api import Error as PlaywrightError

from .browser import BrowserSession, PageLocator, is_session_lost, option_list
from .errors import (
    BrowserFatalError,
    NavigationLimitExceeded,
    PageError,
    StructuralError,
    TransientPageError,
)
from .models import CycleError, CycleOutcome, LocationSelection, ServiceSelection, split_date
from .paging import MAX_PAGING_STEPS, CalendarPager, DateProbe
from .site import DEFAULT_USER_AGENT, Step
from .store import BrowserOptions

logger = logging.getLogger(__name__)


class NavigatorState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    AWAITING_FORM = "awaiting_form"
    SERVICES_SELECTED = "services_selected"
    LOCATION_SUBMITTED = "location_submitted"
    CALENDAR_READY = "calendar_ready"
    PROBING = "probing"
    ERROR = "error"


class Navigator:
    """
    Owns the browser session and walks the booking flow.

    A cycle never raises for page problems: the outcome carries the results
    gathered so far plus the error. The session is kept for the next cycle
    unless it turned out to be unusable.
    """

    def __init__(
        self,
        session: BrowserSession,
        *,
        screenshots_dir: Optional[Path] = None,
        max_paging_steps: int = MAX_PAGING_STEPS,
    ) -> None:
        self.session = session
        self.screenshots_dir = screenshots_dir
        self.max_paging_steps = max_paging_steps
        self.state = NavigatorState.IDLE

    def _enter(self, state: NavigatorState) -> None:
        logger.debug("Navigator %s -> %s", self.state.value, state.value)
        self.state = state

    async def ensure_session(self, user_agent: str = DEFAULT_USER_AGENT) -> None:
        await self.session.ensure(user_agent)

    async def close(self) -> None:
        await self.session.close()
        self.state = NavigatorState.IDLE

    async def run_cycle(
        self,
        watched_dates: Iterable[str],
        services: ServiceSelection,
        location: LocationSelection,
        *,
        url: str,
        user_agent: str = DEFAULT_USER_AGENT,
        options: Optional[BrowserOptions] = None,
    ) -> CycleOutcome:
        options = options or BrowserOptions()
        dates = list(watched_dates)
        outcome = CycleOutcome()
        if not dates:
            logger.info("No watched dates, skipping site visit")
            return outcome

        try:
            self._enter(NavigatorState.LOADING)
            await self.session.ensure(user_agent)
            locator = PageLocator(
                self.session.page,
                attempt_timeout_ms=options.selector_timeout_ms,
                settle_delay_ms=options.settle_delay_ms,
            )
            await locator.goto(url, timeout_ms=options.timeout_ms)

            self._enter(NavigatorState.AWAITING_FORM)
            await locator.locate(Step.BOOKING_FORM, timeout_ms=options.timeout_ms)
            outcome.warnings.extend(await self.select_services(locator, services))
            self._enter(NavigatorState.SERVICES_SELECTED)

            warning = await self.select_location(locator, location)
            if warning:
                outcome.warnings.append(warning)
            await locator.click(Step.SUBMIT)
            self._enter(NavigatorState.LOCATION_SUBMITTED)

            await locator.locate(Step.CALENDAR_CAPTION, timeout_ms=options.timeout_ms)
            self._enter(NavigatorState.CALENDAR_READY)
            logger.info("Calendar loaded")

            self._enter(NavigatorState.PROBING)
            await self._probe_all(locator, dates, outcome)
            self._enter(NavigatorState.IDLE)
        except BrowserFatalError as e:
            logger.error("Browser session lost: %s", e)
            self._fail(outcome, e)
            await self.session.close()
        except StructuralError as e:
            logger.error("Page structure mismatch: %s", e)
            self._fail(outcome, e)
            await self._debug_screenshot(e.step or "unknown")
        except PageError as e:
            logger.error("Check cycle aborted: %s", e)
            self._fail(outcome, e)
        except PlaywrightError as e:
            if is_session_lost(e):
                logger.error("Browser session lost: %s", e)
                self._fail(outcome, BrowserFatalError(str(e)))
                await self.session.close()
            else:
                logger.error("Check cycle aborted by browser error: %s", e)
                self._fail(outcome, TransientPageError(str(e), step=self.state.value))

        available = sum(1 for r in outcome.results if r.available)
        logger.info(
            "Check cycle finished: %s/%s dates available%s",
            available,
            len(outcome.results),
            f" (error: {outcome.error.kind})" if outcome.error else "",
        )
        return outcome

    def _fail(self, outcome: CycleOutcome, exc: PageError) -> None:
        outcome.error = CycleError.from_exception(exc)
        if outcome.error.step is None:
            outcome.error.step = self.state.value
        self._enter(NavigatorState.ERROR)

    async def _probe_all(self, locator: PageLocator, dates: list[str], outcome: CycleOutcome) -> None:
        pager = CalendarPager(locator, self.max_paging_steps)
        probe = DateProbe(locator)
        for index, date in enumerate(dates):
            year, month, _ = split_date(date)
            try:
                await pager.go_to(year, month)
            except NavigationLimitExceeded as e:
                # only this date is lost, the rest of the cycle goes on
                logger.warning("Skipping %s: %s", date, e)
                outcome.date_errors.append(CycleError.from_exception(e, date=date))
                continue
            outcome.results.append(await probe.probe(date))
            if index < len(dates) - 1:
                await locator.settle()

    async def select_services(self, locator: PageLocator, services: ServiceSelection) -> list[str]:
        """
        Activate every enabled service and read the control back.

        Problems here are warnings: the cycle continues with whatever the
        form accepted.
        """
        warnings: list[str] = []
        for key in services.enabled():
            try:
                control = await locator.locate(Step.SERVICE, key=key)
                if not await locator.guard(Step.SERVICE, control.is_checked()):
                    await locator.guard(Step.SERVICE, control.click(timeout=locator.attempt_timeout_ms))
                    await locator.settle()
                if not await locator.guard(Step.SERVICE, control.is_checked()):
                    warnings.append(f"Service {key} did not stay selected")
            except (StructuralError, TransientPageError) as e:
                warnings.append(f"Service {key} could not be selected: {e}")
        for warning in warnings:
            logger.warning(warning)
        return warnings

    async def select_location(self, locator: PageLocator, location: LocationSelection) -> Optional[str]:
        """
        Pick the configured location, or the first offered one.

        Returns a warning text when the fallback was used.
        """
        select = await locator.locate(Step.LOCATION)
        options = await option_list(locator, select)
        if not options:
            raise StructuralError(step=Step.LOCATION.value, selectors=("option[value]",))

        warning: Optional[str] = None
        values = [o["value"] for o in options]
        if location.value and location.value in values:
            chosen = location.value
        else:
            chosen = options[0]["value"]
            wanted = location.name or location.value or "<none>"
            warning = f"Location {wanted} not offered, using {options[0].get('label') or chosen}"
            logger.warning(warning)

        await locator.guard(Step.LOCATION, select.select_option(value=chosen))
        await locator.settle()
        return warning

    async def _debug_screenshot(self, step: str) -> None:
        if not self.screenshots_dir or not self.session.is_usable:
            return
        path = self.screenshots_dir / f"structure_{step}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.png"
        try:
            await self.session.screenshot(path)
            logger.warning("Screenshot of unexpected page saved: %s", path)
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not save screenshot: %s", e)


__all__ = ["Navigator", "NavigatorState"]
