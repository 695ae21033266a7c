"""
Availability change detection.

Compares each cycle's results with the previous snapshot and turns the
differences into appointment events. Keeps a bounded newest-first history.
"""

from __future__ import annotations

from collections import deque
import logging
from typing import Deque, Dict, Iterable, List, NamedTuple, Optional

from .models import AppointmentEvent, CheckResult, EventType, display_date

logger = logging.getLogger(__name__)


DEFAULT_HISTORY_CAPACITY = 50


class SnapshotEntry(NamedTuple):
    is_available: bool
    display_date: str


def _message(event_type: EventType, result: CheckResult) -> str:
    shown = display_date(result.date)
    if event_type is EventType.UNAVAILABLE:
        return f"Appointment on {shown} is no longer available"
    text = f"Appointment available on {shown}"
    if result.metadata and result.metadata.time != "Not specified":
        text += f" at {result.metadata.time}"
    if event_type is EventType.NEW_AVAILABLE:
        text += " (already free at first check)"
    return text


class ChangeDetector:
    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self.capacity = capacity
        self._snapshot: Dict[str, SnapshotEntry] = {}
        # appendleft + maxlen: newest first, oldest falls off the end
        self._history: Deque[AppointmentEvent] = deque(maxlen=capacity)

    @property
    def snapshot(self) -> Dict[str, SnapshotEntry]:
        return dict(self._snapshot)

    def process(self, results: Iterable[CheckResult]) -> List[AppointmentEvent]:
        """
        Diff results against the baseline and return the new events.

        Dates missing from ``results`` keep their previous baseline entry.
        """
        latest = {r.date: r for r in results}
        events: List[AppointmentEvent] = []
        snapshot = dict(self._snapshot)

        for date, result in latest.items():
            previous: Optional[SnapshotEntry] = self._snapshot.get(date)
            event_type: Optional[EventType] = None
            if previous is None:
                if result.available:
                    event_type = EventType.NEW_AVAILABLE
            elif not previous.is_available and result.available:
                event_type = EventType.AVAILABLE
            elif previous.is_available and not result.available:
                event_type = EventType.UNAVAILABLE

            if event_type is not None:
                events.append(
                    AppointmentEvent(
                        type=event_type,
                        date=date,
                        message=_message(event_type, result),
                        metadata=result.metadata,
                    )
                )
            snapshot[date] = SnapshotEntry(result.available, display_date(date))

        self._snapshot = snapshot
        for event in events:
            self.record(event)
        if events:
            logger.info("Detected %s availability change(s)", len(events))
        return events

    def record(self, event: AppointmentEvent) -> None:
        self._history.appendleft(event)

    def history(self) -> List[AppointmentEvent]:
        return list(self._history)

    def forget(self, date: str) -> None:
        """Drop the baseline of a date that is no longer watched."""
        self._snapshot.pop(date, None)


__all__ = ["ChangeDetector", "SnapshotEntry", "DEFAULT_HISTORY_CAPACITY"]
