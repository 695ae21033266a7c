"""
Calendar paging and per-date availability probe.

Kalender-Navigation (Monat für Monat) und Auswertung einer Tageszelle.
"""

from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import ElementHandle

from .browser import PageLocator
from .errors import NavigationLimitExceeded, StructuralError
from .models import AppointmentInfo, CheckResult
from .site import (
    APPOINTMENT_TIME_SELECTOR,
    APPOINTMENT_TYPE_SELECTOR,
    AVAILABLE_CLASS,
    DISABLED_CLASS,
    MONTHS,
    Step,
)

logger = logging.getLogger(__name__)


MAX_PAGING_STEPS = 24

_INFO_SCRIPT = """
(el, selectors) => {
    const timeEl = el.querySelector(selectors[0]);
    const typeEl = el.querySelector(selectors[1]);
    return {
        time: timeEl ? timeEl.textContent.trim() : null,
        type: typeEl ? typeEl.textContent.trim() : null,
    };
}
"""


def parse_caption(text: str) -> tuple[int, int]:
    """
    "August 2025" -> (2025, 8).

    Raises StructuralError when the caption does not look like "<Monat> <Jahr>".
    """
    parts = text.split()
    if len(parts) != 2 or parts[0] not in MONTHS or not parts[1].isdigit():
        raise StructuralError(step=Step.CALENDAR_CAPTION.value, selectors=(f"caption text {text!r}",))
    return int(parts[1]), MONTHS[parts[0]]


def month_ordinal(year: int, month: int) -> int:
    return year * 12 + month


class CalendarPager:
    """Brings the calendar to a given (year, month), one month per click."""

    def __init__(self, locator: PageLocator, max_steps: int = MAX_PAGING_STEPS) -> None:
        self.locator = locator
        self.max_steps = max_steps

    async def current(self) -> tuple[int, int]:
        return parse_caption(await self.locator.text(Step.CALENDAR_CAPTION))

    async def go_to(self, year: int, month: int) -> int:
        """Navigate to the target month; returns the number of clicks used."""
        target = month_ordinal(year, month)
        steps = 0
        while True:
            cur_year, cur_month = await self.current()
            delta = target - month_ordinal(cur_year, cur_month)
            if delta == 0:
                if steps:
                    logger.debug("Reached %02d/%s after %s steps", month, year, steps)
                return steps
            if steps >= self.max_steps:
                raise NavigationLimitExceeded(target=f"{month:02d}/{year}", steps=steps)

            direction = Step.NEXT_MONTH if delta > 0 else Step.PREVIOUS_MONTH
            logger.debug("Paging %s from %02d/%s", direction.value, cur_month, cur_year)
            await self.locator.click(direction)
            steps += 1
            await self.locator.settle()


class DateProbe:
    """Reads one calendar cell; the calendar must already show its month."""

    def __init__(self, locator: PageLocator) -> None:
        self.locator = locator

    async def probe(self, date: str) -> CheckResult:
        cell = await self.locator.query(Step.DATE_CELL, date=date)
        if cell is None:
            logger.warning("Date %s not found in calendar", date)
            return CheckResult(date=date, available=False, reason="not found")

        classes = await self.locator.guard(Step.DATE_CELL, cell.get_attribute("class")) or ""
        tokens = classes.split()
        # a green cell can still be disabled
        available = AVAILABLE_CLASS in tokens and DISABLED_CLASS not in tokens

        metadata: Optional[AppointmentInfo] = None
        if available:
            metadata = await self.extract_info(cell)

        result = CheckResult(date=date, available=available, classes=classes, metadata=metadata)
        logger.info("%s - available: %s", result.display_date, "yes" if available else "no")
        return result

    async def extract_info(self, cell: ElementHandle) -> AppointmentInfo:
        """Best effort; any failure yields the placeholder values."""
        try:
            info = await cell.evaluate(_INFO_SCRIPT, [APPOINTMENT_TIME_SELECTOR, APPOINTMENT_TYPE_SELECTOR])
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not read appointment details: %s", e)
            return AppointmentInfo()
        info = info or {}
        defaults = AppointmentInfo()
        return AppointmentInfo(
            time=info.get("time") or defaults.time,
            type=info.get("type") or defaults.type,
        )


__all__ = ["CalendarPager", "DateProbe", "parse_caption", "month_ordinal", "MAX_PAGING_STEPS"]
