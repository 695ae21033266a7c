"""
Exception taxonomy of the monitoring engine.

Control errors are raised at the engine boundary. Page errors are raised
inside a cycle and are turned into error events, never into crashes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence


class MonitorError(Exception):
    """Base class for everything the engine raises."""


class ConfigurationError(MonitorError):
    """Invalid interval, malformed date or unknown selection."""


class AlreadyActive(MonitorError):
    """start() called while the scheduler is not stopped."""


class NotActive(MonitorError):
    """Operation requires an active scheduler."""


class MonitorBusy(MonitorError):
    """A cycle is already running on this engine."""


class PageError(MonitorError):
    """Failure while interacting with the target site."""

    step: Optional[str] = None


class TransientPageError(PageError):
    def __init__(self, message: str, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step


@dataclass(eq=False)
class StructuralError(PageError):
    """Primary selector and all fallbacks for a step were exhausted."""

    step: Optional[str] = None
    selectors: Sequence[str] = field(default_factory=tuple)

    def __str__(self) -> str:
        return f"No element found for step '{self.step}' (tried {len(self.selectors)} selectors)"


@dataclass(eq=False)
class NavigationLimitExceeded(PageError):
    """Calendar paging did not reach the target month within the step bound."""

    target: str = ""
    steps: int = 0
    step: Optional[str] = "calendar_paging"

    def __str__(self) -> str:
        return f"Could not reach {self.target} within {self.steps} calendar steps"


class BrowserFatalError(PageError):
    """Browser session crashed or became unusable."""

    def __init__(self, message: str = "Browser session is not usable") -> None:
        super().__init__(message)
        self.step = "session"


__all__ = [
    "MonitorError",
    "ConfigurationError",
    "AlreadyActive",
    "NotActive",
    "MonitorBusy",
    "PageError",
    "TransientPageError",
    "StructuralError",
    "NavigationLimitExceeded",
    "BrowserFatalError",
]
