"""
Monitoring engine: interval scheduler around the Navigator.

Überwachung im Hintergrund:
- fester Takt, Zyklen überlappen nie (Tick wird übersprungen)
- Ergebnisse laufen durch den ChangeDetector
- Ereignisse gehen an registrierte Abonnenten
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .browser import BrowserSession
from .config import Settings
from .detector import ChangeDetector
from .errors import AlreadyActive, BrowserFatalError, MonitorBusy, NotActive
from .models import (
    AppointmentEvent,
    CheckResult,
    CycleError,
    CycleOutcome,
    EngineEvent,
    EngineEventKind,
    MonitoringStatus,
    validate_date,
    validate_interval,
)
from .navigator import Navigator
from .store import ConfigStore

logger = logging.getLogger(__name__)


EventCallback = Callable[[EngineEvent], Awaitable[None]]

SHUTDOWN_DRAIN_TIMEOUT = 60


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    INITIALIZING = "initializing"
    WAITING = "waiting"
    CHECKING = "checking"


class MonitorEngine:
    """
    One engine per browser session.

    All mutation happens on the event loop: either inside a cycle or in the
    explicit boundary calls below. ``_busy`` is set before any await so two
    cycles can never run at once.
    """

    def __init__(self, store: ConfigStore, navigator: Navigator, detector: ChangeDetector) -> None:
        self.store = store
        self.navigator = navigator
        self.detector = detector
        self._state = SchedulerState.STOPPED
        self._status = MonitoringStatus(target_url=store.get_website_url())
        self._timer_task: Optional[asyncio.Task[None]] = None
        self._cycle_task: Optional[asyncio.Task[CycleOutcome]] = None
        self._bootstrap_task: Optional[asyncio.Task[None]] = None
        # bumped by every start() and stop(); only the latest start arms the timer
        self._generation = 0
        self._busy = False
        self._watched = set(store.get_monitored_dates())
        self._results: Dict[str, CheckResult] = {}
        self._subscribers: List[EventCallback] = []

    # region events
    def subscribe(self, callback: EventCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def _publish(self, event: EngineEvent) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(event)
            except Exception as e:  # noqa: BLE001
                logger.warning("Event subscriber failed on %s: %s", event.kind.value, e)

    async def _publish_error(self, error: CycleError) -> None:
        await self._publish(EngineEvent(kind=EngineEventKind.ERROR, error=error))

    # endregion

    # region state
    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._busy

    async def _set_state(self, state: SchedulerState) -> None:
        if state is self._state:
            return
        logger.info("Monitoring state %s -> %s", self._state.value, state.value)
        self._state = state
        self._status.is_active = state is not SchedulerState.STOPPED
        self._status.is_initializing = state is SchedulerState.INITIALIZING
        self._status.is_currently_checking = state is SchedulerState.CHECKING
        await self._publish(EngineEvent(kind=EngineEventKind.STATUS_CHANGE, status=self.get_status()))

    def get_status(self) -> MonitoringStatus:
        status = self._status.model_copy()
        status.target_url = self.store.get_website_url()
        return status

    # endregion

    async def start(self, interval_minutes: int, interval_seconds: int) -> None:
        period = validate_interval(interval_minutes, interval_seconds)
        if self._state is not SchedulerState.STOPPED:
            raise AlreadyActive(f"Monitoring is already {self._state.value}")

        self._generation += 1
        generation = self._generation
        self._status.interval_minutes = interval_minutes
        self._status.interval_seconds = interval_seconds

        # a running cycle brings up the session itself; otherwise the
        # bootstrap holds the busy flag so no cycle touches the half-built browser
        if self._cycle_task is None and self._bootstrap_task is None:
            self._busy = True
            self._bootstrap_task = asyncio.create_task(self._bootstrap(), name="terminwatch-bootstrap")
        bootstrap = self._bootstrap_task
        await self._set_state(SchedulerState.INITIALIZING)

        if bootstrap is not None:
            try:
                await asyncio.shield(bootstrap)
            except BrowserFatalError as e:
                logger.error("Browser bootstrap failed: %s", e)
                if generation == self._generation:
                    self._status.last_error = str(e)
                    await self._set_state(SchedulerState.STOPPED)
                    await self._publish_error(CycleError.from_exception(e))
                raise

        if generation != self._generation:
            # stop() or a newer start() arrived while the browser was starting
            return
        await self._set_state(SchedulerState.CHECKING if self._cycle_task else SchedulerState.WAITING)
        self._timer_task = asyncio.create_task(self._timer_loop(period), name="terminwatch-timer")
        logger.info("Monitoring started (interval %sm %ss)", interval_minutes, interval_seconds)

    async def _bootstrap(self) -> None:
        try:
            await self.navigator.ensure_session(self.store.get_user_agent())
        finally:
            self._busy = False
            self._bootstrap_task = None

    async def stop(self) -> None:
        """
        Stop scheduling. A running cycle is not cancelled: it finishes and its
        results are still processed, but no further tick fires.
        """
        if self._state is SchedulerState.STOPPED:
            raise NotActive("Monitoring is not running")
        self._generation += 1
        if self._timer_task:
            self._timer_task.cancel()
            self._timer_task = None
        await self._set_state(SchedulerState.STOPPED)
        logger.info("Monitoring stopped")

    async def check_now(self) -> List[CheckResult]:
        """Run one cycle outside the timer; raises MonitorBusy if one is running."""
        task = self._launch_cycle("manual")
        # the cycle survives cancellation of the caller
        outcome = await asyncio.shield(task)
        return list(outcome.results)

    async def _timer_loop(self, period: int) -> None:
        while True:
            await asyncio.sleep(period)
            if self._state is SchedulerState.STOPPED:
                return
            try:
                self._launch_cycle("timer")
            except MonitorBusy:
                logger.info("Previous check still running, skipping tick")

    def _launch_cycle(self, trigger: str) -> asyncio.Task[CycleOutcome]:
        if self._bootstrap_task is not None:
            raise MonitorBusy("The browser is still starting")
        if self._busy:
            raise MonitorBusy("A check is already running")
        self._busy = True
        task = asyncio.create_task(self._cycle(trigger), name=f"terminwatch-cycle-{trigger}")
        task.add_done_callback(_log_cycle_failure)
        self._cycle_task = task
        return task

    async def _cycle(self, trigger: str) -> CycleOutcome:
        try:
            if self._state is SchedulerState.WAITING:
                await self._set_state(SchedulerState.CHECKING)
            dates = sorted(self._watched)
            logger.info("Starting check (%s) for %s date(s)", trigger, len(dates))
            try:
                outcome = await self.navigator.run_cycle(
                    dates,
                    self.store.get_service_selection(),
                    self.store.get_selected_location(),
                    url=self.store.get_website_url(),
                    user_agent=self.store.get_user_agent(),
                    options=self.store.get_browser_options(),
                )
            except Exception as e:  # noqa: BLE001
                logger.exception("Unexpected error in check cycle: %s", e)
                outcome = CycleOutcome(error=CycleError.from_exception(e))
            await self._apply(outcome)
            return outcome
        finally:
            self._busy = False
            self._cycle_task = None
            if self._state is SchedulerState.CHECKING:
                await self._set_state(SchedulerState.WAITING)

    async def _apply(self, outcome: CycleOutcome) -> None:
        # dates removed while the cycle ran are ignored
        results = [r for r in outcome.results if r.date in self._watched]
        for result in results:
            self._results[result.date] = result
        events = self.detector.process(results)

        self._status.last_check_time = datetime.now(timezone.utc)
        self._status.checks_count += 1
        self._status.last_error = outcome.error.message if outcome.error else None

        for event in events:
            await self._publish(EngineEvent(kind=EngineEventKind.APPOINTMENT, appointment=event))
        for error in outcome.date_errors:
            await self._publish_error(error)
        if outcome.error:
            await self._publish_error(outcome.error)

    # region watched dates
    def add_date(self, date: str) -> bool:
        """Persist and watch a date; False when it was already watched."""
        date = validate_date(date)
        added = self.store.add_watched_date(date)
        self._watched = set(self.store.get_monitored_dates())
        return added

    def remove_date(self, date: str) -> bool:
        removed = self.store.remove_watched_date(date)
        self._watched = set(self.store.get_monitored_dates())
        if removed:
            self._results.pop(date, None)
            self.detector.forget(date)
        return removed

    def get_watched_dates(self) -> List[str]:
        return sorted(self._watched)

    # endregion

    def get_results(self) -> List[CheckResult]:
        return [self._results[d] for d in sorted(self._watched) if d in self._results]

    def get_found_appointments(self) -> List[str]:
        return [r.date for r in self.get_results() if r.available]

    def get_event_history(self) -> List[AppointmentEvent]:
        return self.detector.history()

    async def shutdown(self) -> None:
        """Stop, let a running cycle drain, close the browser."""
        if self._state is not SchedulerState.STOPPED:
            await self.stop()
        for task in (self._bootstrap_task, self._cycle_task):
            if task is None or task.done():
                continue
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=SHUTDOWN_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("%s did not finish within %ss", task.get_name(), SHUTDOWN_DRAIN_TIMEOUT)
            except Exception as e:  # noqa: BLE001
                logger.warning("%s failed during shutdown: %s", task.get_name(), e)
        await self.navigator.close()


def _log_cycle_failure(task: asyncio.Task[CycleOutcome]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Check cycle %s crashed: %s", task.get_name(), exc, exc_info=exc)


def build_engine(settings: Settings, store: ConfigStore) -> MonitorEngine:
    """Wire session, navigator and detector from process settings."""
    session = BrowserSession(headless=settings.engine.headless)
    navigator = Navigator(
        session,
        screenshots_dir=settings.logging.logs_dir if settings.engine.debug_screenshots else None,
    )
    detector = ChangeDetector(capacity=settings.engine.history_capacity)
    return MonitorEngine(store, navigator, detector)


__all__ = ["MonitorEngine", "SchedulerState", "EventCallback", "build_engine"]
