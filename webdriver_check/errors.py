"""Exception types for driver sessions.

Single source of truth for lifecycle error kinds.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from .models.session import StartupAttempt


class WebDriverCheckError(RuntimeError):
    """Base class for errors raised by this package."""


class StartupErrorKind(str, Enum):
    ALL_STRATEGIES_FAILED = "all_strategies_failed"
    SESSION_ACTIVE = "session_active"


class SessionErrorKind(str, Enum):
    CONNECTION_LOST = "connection_lost"
    NOT_RUNNING = "not_running"
    NAVIGATION_FAILED = "navigation_failed"


class StartupError(WebDriverCheckError):
    """Raised when no startup strategy produced a responsive driver."""

    def __init__(
        self,
        kind: StartupErrorKind,
        message: str = "",
        attempts: Sequence[StartupAttempt] | None = None,
    ) -> None:
        self.kind = kind
        self.attempts = list(attempts or [])
        details = [message or kind.value]
        for attempt in self.attempts:
            details.append(f"  {attempt.strategy}: {attempt.reason}")
        super().__init__("\n".join(details))


class SessionError(WebDriverCheckError):
    """Raised when an operation on a started session fails."""

    def __init__(self, kind: SessionErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value)


class DriverLaunchError(WebDriverCheckError):
    """A single startup strategy failed. Only surfaces in attempt history.

    ``process`` is set when a driver was spawned and must still be stopped.
    """

    def __init__(self, message: str, process: Any = None) -> None:
        self.process = process
        super().__init__(message)


class CleanupWarning(UserWarning):
    """A resource could not be released cleanly. Recorded, never raised."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        self.message = message
        super().__init__(f"{step}: {message}")


__all__ = [
    "CleanupWarning",
    "DriverLaunchError",
    "SessionError",
    "SessionErrorKind",
    "StartupError",
    "StartupErrorKind",
    "WebDriverCheckError",
]
