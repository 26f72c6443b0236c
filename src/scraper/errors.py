"""Failure taxonomy for a scrape attempt.

Stage-level failures are raised as ``ScrapeError`` subclasses and bubble up to the
retry controller, which is the only place they are classified. Field-level misses
never raise; they degrade to defaults inside the extraction engine.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    NAVIGATION_EXHAUSTED = "NavigationExhausted"
    BOT_CHECK_TRIGGERED = "BotCheckTriggered"
    TIMEOUT_EXCEEDED = "TimeoutExceeded"
    SESSION_FAILURE = "SessionFailure"
    INTERNAL = "InternalError"


TRANSIENT_ERROR_KINDS = frozenset(
    {
        ErrorKind.NAVIGATION_EXHAUSTED,
        ErrorKind.TIMEOUT_EXCEEDED,
        ErrorKind.SESSION_FAILURE,
    }
)


class ScrapeError(RuntimeError):
    kind: ErrorKind = ErrorKind.INTERNAL


class NavigationExhausted(ScrapeError):
    kind = ErrorKind.NAVIGATION_EXHAUSTED


class BotCheckTriggered(ScrapeError):
    kind = ErrorKind.BOT_CHECK_TRIGGERED


class TimeoutExceeded(ScrapeError):
    kind = ErrorKind.TIMEOUT_EXCEEDED


class SessionFailure(ScrapeError):
    kind = ErrorKind.SESSION_FAILURE


__all__ = [
    "ErrorKind",
    "TRANSIENT_ERROR_KINDS",
    "ScrapeError",
    "NavigationExhausted",
    "BotCheckTriggered",
    "TimeoutExceeded",
    "SessionFailure",
]
