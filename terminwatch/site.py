"""
Markup knowledge about the booking site (DevExtreme-based KFZ appointment form).

Each step has a primary selector followed by fallbacks, tried in order.
When the site changes its markup, this is the only file that should need edits.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple


DEFAULT_TARGET_URL = "https://termine-kfz.lahn-dill-kreis.de/"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)


class Step(str, Enum):
    BOOKING_FORM = "booking_form"
    SERVICE = "service"
    LOCATION = "location"
    SUBMIT = "submit"
    CALENDAR_CAPTION = "calendar_caption"
    PREVIOUS_MONTH = "previous_month"
    NEXT_MONTH = "next_month"
    DATE_CELL = "date_cell"


# {key} / {date} placeholders are filled by the locator
SELECTOR_CHAINS: Dict[Step, Tuple[str, ...]] = {
    Step.BOOKING_FORM: (
        "form#appointment-form",
        'form[name="terminForm"]',
        ".dx-form",
        "main form",
    ),
    Step.SERVICE: (
        '[data-service="{key}"] [role="checkbox"]',
        'input[type="checkbox"][name="services[{key}]"]',
        'input[type="checkbox"][value="{key}"]',
    ),
    Step.LOCATION: (
        "select#location",
        'select[name="location"]',
        'select[formcontrolname="location"]',
        ".location-select select",
    ),
    Step.SUBMIT: (
        'button[type="submit"]',
        'button:has-text("Weiter")',
        'input[type="submit"]',
        '.dx-button:has-text("Weiter")',
    ),
    Step.CALENDAR_CAPTION: (
        ".dx-calendar-caption-button .dx-button-text",
        ".dx-calendar-caption-button",
        ".dx-calendar-caption",
    ),
    Step.PREVIOUS_MONTH: (
        ".dx-calendar-navigator-previous-month",
        '[aria-label="Vorheriger Monat"]',
        '[aria-label="Previous month"]',
    ),
    Step.NEXT_MONTH: (
        ".dx-calendar-navigator-next-month",
        '[aria-label="Nächster Monat"]',
        '[aria-label="Next month"]',
    ),
    Step.DATE_CELL: ('td[data-value="{date}"]',),
}

# Service keys the booking form offers, with their visible label
SERVICE_CATALOG: Dict[str, str] = {
    "neuzulassung": "Neuzulassung",
    "umschreibung": "Umschreibung",
    "wiederzulassung": "Wiederzulassung",
    "ausserbetriebsetzung": "Außerbetriebsetzung",
    "kennzeichen": "Wunschkennzeichen / Kennzeichenwechsel",
    "adressaenderung": "Adressänderung",
}

AVAILABLE_CLASS = "bg-success"
DISABLED_CLASS = "disabled-date"
APPOINTMENT_TIME_SELECTOR = ".appointment-time"
APPOINTMENT_TYPE_SELECTOR = ".appointment-type"

MONTHS = {
    "Januar": 1,
    "Februar": 2,
    "März": 3,
    "April": 4,
    "Mai": 5,
    "Juni": 6,
    "Juli": 7,
    "August": 8,
    "September": 9,
    "Oktober": 10,
    "November": 11,
    "Dezember": 12,
}
MONTH_NAMES = {number: name for name, number in MONTHS.items()}


__all__ = [
    "DEFAULT_TARGET_URL",
    "DEFAULT_USER_AGENT",
    "Step",
    "SELECTOR_CHAINS",
    "SERVICE_CATALOG",
    "AVAILABLE_CLASS",
    "DISABLED_CLASS",
    "APPOINTMENT_TIME_SELECTOR",
    "APPOINTMENT_TYPE_SELECTOR",
    "MONTHS",
    "MONTH_NAMES",
]
