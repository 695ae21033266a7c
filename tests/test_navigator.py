from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeBookingPage, FakeSession

from terminwatch.models import LocationSelection, ServiceSelection
from terminwatch.navigator import Navigator, NavigatorState
from terminwatch.store import BrowserOptions


OPTIONS = BrowserOptions(timeout_ms=1000, selector_timeout_ms=100, settle_delay_ms=0)
URL = "https://termine.example.test/"


def _navigator(page: FakeBookingPage, tmp_path: Path | None = None, **kwargs) -> tuple[Navigator, FakeSession]:
    session = FakeSession(page, **kwargs)
    return Navigator(session, screenshots_dir=tmp_path), session  # type: ignore[arg-type]


async def _run(navigator: Navigator, dates: list[str], *, services=None, location=None):
    return await navigator.run_cycle(
        dates,
        services or ServiceSelection(services={"neuzulassung": True}),
        location or LocationSelection(value="dillenburg", name="Dillenburg"),
        url=URL,
        options=OPTIONS,
    )


@pytest.mark.asyncio
async def test_full_cycle_probes_every_date() -> None:
    page = FakeBookingPage(2025, 3, available=["2025/03/14", "2025/05/02"], disabled=["2025/05/02"])
    navigator, session = _navigator(page)

    outcome = await _run(navigator, ["2025/03/14", "2025/05/02", "2025/04/10"])

    assert outcome.error is None
    assert outcome.warnings == []
    assert [(r.date, r.available) for r in outcome.results] == [
        ("2025/03/14", True),
        ("2025/05/02", False),
        ("2025/04/10", False),
    ]
    assert page.goto_calls == [URL]
    assert page.location.selected == "dillenburg"
    assert page.service_controls["neuzulassung"].checked is True
    assert page.service_controls["umschreibung"].checked is False
    assert page.clicks == ["next", "next", "previous"]
    assert navigator.state is NavigatorState.IDLE
    assert session.closed == 0


@pytest.mark.asyncio
async def test_already_selected_service_is_not_toggled() -> None:
    page = FakeBookingPage()
    page.service_controls["neuzulassung"].checked = True
    navigator, _ = _navigator(page)

    outcome = await _run(navigator, ["2025/03/14"])

    assert page.service_controls["neuzulassung"].clicks == 0
    assert outcome.warnings == []


@pytest.mark.asyncio
async def test_unknown_location_falls_back_to_first_option() -> None:
    page = FakeBookingPage()
    navigator, _ = _navigator(page)

    outcome = await _run(navigator, ["2025/03/14"], location=LocationSelection(value="herborn", name="Herborn"))

    assert outcome.error is None
    assert page.location.selected == "wetzlar"
    assert len(outcome.warnings) == 1
    assert "Herborn" in outcome.warnings[0]
    assert "Wetzlar" in outcome.warnings[0]


@pytest.mark.asyncio
async def test_location_without_options_is_structural_error() -> None:
    page = FakeBookingPage(locations=[{"value": "", "label": "Bitte wählen"}])
    navigator, _ = _navigator(page)

    outcome = await _run(navigator, ["2025/03/14"])

    assert outcome.error is not None
    assert outcome.error.kind == "StructuralError"
    assert outcome.error.step == "location"


@pytest.mark.asyncio
async def test_service_problems_are_warnings_not_errors() -> None:
    page = FakeBookingPage(services=["umschreibung"])
    page.service_controls["umschreibung"].sticky = False
    navigator, _ = _navigator(page)

    outcome = await _run(
        navigator,
        ["2025/03/14"],
        services=ServiceSelection(services={"neuzulassung": True, "umschreibung": True, "kennzeichen": False}),
    )

    assert outcome.error is None
    assert len(outcome.results) == 1
    assert len(outcome.warnings) == 2
    assert "neuzulassung" in outcome.warnings[0]
    assert "umschreibung did not stay selected" in outcome.warnings[1]


@pytest.mark.asyncio
async def test_missing_form_aborts_cycle_with_structural_error(tmp_path: Path) -> None:
    page = FakeBookingPage(missing=["form#appointment-form", 'form[name="terminForm"]', ".dx-form", "main form"])
    navigator, session = _navigator(page, tmp_path)

    outcome = await _run(navigator, ["2025/03/14"])

    assert outcome.results == []
    assert outcome.error is not None
    assert outcome.error.kind == "StructuralError"
    assert outcome.error.step == "booking_form"
    assert navigator.state is NavigatorState.ERROR
    # session is kept for the next cycle
    assert session.closed == 0
    assert len(session.screenshots) == 1


@pytest.mark.asyncio
async def test_fallback_selector_is_used() -> None:
    page = FakeBookingPage()
    page.elements['button:has-text("Weiter")'] = page.elements.pop('button[type="submit"]')
    navigator, _ = _navigator(page)

    outcome = await _run(navigator, ["2025/03/14"])

    assert outcome.error is None
    assert len(outcome.results) == 1


@pytest.mark.asyncio
async def test_paging_limit_skips_only_that_date() -> None:
    page = FakeBookingPage(2025, 3, available=["2025/04/01"])
    navigator, _ = _navigator(page)

    outcome = await _run(navigator, ["2028/01/10", "2025/04/01"])

    assert outcome.error is None
    assert [r.date for r in outcome.results] == ["2025/04/01"]
    assert outcome.results[0].available is True
    assert len(outcome.date_errors) == 1
    assert outcome.date_errors[0].kind == "NavigationLimitExceeded"
    assert outcome.date_errors[0].date == "2028/01/10"


@pytest.mark.asyncio
async def test_http_error_is_transient() -> None:
    page = FakeBookingPage(status=503)
    navigator, _ = _navigator(page)

    outcome = await _run(navigator, ["2025/03/14"])

    assert outcome.error is not None
    assert outcome.error.kind == "TransientPageError"
    assert outcome.error.step == "load"


@pytest.mark.asyncio
async def test_dead_session_is_closed_for_lazy_restart() -> None:
    page = FakeBookingPage()
    navigator, session = _navigator(page, fail=True)

    outcome = await _run(navigator, ["2025/03/14"])

    assert outcome.error is not None
    assert outcome.error.kind == "BrowserFatalError"
    assert session.closed == 1
    assert page.goto_calls == []


@pytest.mark.asyncio
async def test_no_dates_skips_site_visit() -> None:
    page = FakeBookingPage()
    navigator, session = _navigator(page)

    outcome = await _run(navigator, [])

    assert outcome.results == []
    assert outcome.error is None
    assert session.ensure_calls == 0
