import asyncio
import random

import pytest

from src.models.review import ScrapeResult
from src.scraper.errors import (
    BotCheckTriggered,
    ErrorKind,
    NavigationExhausted,
    SessionFailure,
    TimeoutExceeded,
)
from src.scraper.retry import RetryController, classify_error, compute_backoff_seconds
from tests.fakes import RecordingSleep, no_sleep

PLACE_ID = "ChIJN1t_tDeuEmsRUsoyG83frY4"


class ScriptedAttempts:
    """Orchestrator factory that plays back one outcome per attempt."""

    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.attempts = 0

    def __call__(self):
        return self

    async def run(self, place_id: str) -> ScrapeResult:
        outcome = self.outcomes[min(self.attempts, len(self.outcomes) - 1)]
        self.attempts += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _ok(place_id: str = PLACE_ID) -> ScrapeResult:
    return ScrapeResult.completed(place_id=place_id, place_name="Somewhere", reviews=[])


def _controller(attempts: ScriptedAttempts, **kwargs) -> RetryController:
    kwargs.setdefault("sleep", no_sleep)
    kwargs.setdefault("rng", random.Random(5))
    return RetryController(attempts, **kwargs)


def test_transient_failures_exhaust_after_max_retries_plus_one_attempts() -> None:
    attempts = ScriptedAttempts([NavigationExhausted("Navigation failed: all URLs")])
    sleep = RecordingSleep()
    controller = _controller(attempts, max_retries=3, base_delay_ms=2000, sleep=sleep)

    result, state = asyncio.run(controller.scrape_with_state(PLACE_ID))

    assert attempts.attempts == 4
    assert result.success is False
    assert result.error_kind == ErrorKind.NAVIGATION_EXHAUSTED
    assert result.retry_count == 3
    assert result.reviews == []
    assert sleep.delays == [2.0, 4.0, 8.0]
    assert state.delays == [2.0, 4.0, 8.0]
    assert state.last_error_kind == ErrorKind.NAVIGATION_EXHAUSTED


def test_bot_check_is_not_retried() -> None:
    attempts = ScriptedAttempts([BotCheckTriggered("Bot check detected: captcha form present.")])
    sleep = RecordingSleep()

    result = asyncio.run(_controller(attempts, sleep=sleep).scrape(PLACE_ID))

    assert attempts.attempts == 1
    assert result.error_kind == ErrorKind.BOT_CHECK_TRIGGERED
    assert result.retry_count == 0
    assert sleep.delays == []


def test_success_after_transient_failure_reports_retry_count() -> None:
    attempts = ScriptedAttempts([SessionFailure("Browser launch failed"), _ok()])

    result = asyncio.run(_controller(attempts).scrape(PLACE_ID))

    assert attempts.attempts == 2
    assert result.success is True
    assert result.retry_count == 1


def test_unexpected_errors_are_fatal_internal_failures() -> None:
    attempts = ScriptedAttempts([KeyError("REVIEW_CARDS")])

    result = asyncio.run(_controller(attempts).scrape(PLACE_ID))

    assert attempts.attempts == 1
    assert result.error_kind == ErrorKind.INTERNAL
    assert result.success is False


def test_zero_retries_means_single_attempt() -> None:
    attempts = ScriptedAttempts([TimeoutExceeded("Timeout 60000ms exceeded")])

    result = asyncio.run(_controller(attempts, max_retries=0).scrape(PLACE_ID))

    assert attempts.attempts == 1
    assert result.retry_count == 0
    assert result.error_kind == ErrorKind.TIMEOUT_EXCEEDED


@pytest.mark.parametrize(
    "error, expected",
    [
        (BotCheckTriggered("unusual traffic"), (ErrorKind.BOT_CHECK_TRIGGERED, False)),
        (NavigationExhausted("Navigation failed"), (ErrorKind.NAVIGATION_EXHAUSTED, True)),
        (TimeoutExceeded("too slow"), (ErrorKind.TIMEOUT_EXCEEDED, True)),
        (RuntimeError("Timeout 30000ms exceeded."), (ErrorKind.TIMEOUT_EXCEEDED, True)),
        (RuntimeError("net::ERR_NAME_NOT_RESOLVED at https://www.google.com"), (ErrorKind.SESSION_FAILURE, True)),
        (RuntimeError("Target page, context or browser has been closed"), (ErrorKind.SESSION_FAILURE, True)),
        (ValueError("bad selector"), (ErrorKind.INTERNAL, False)),
    ],
)
def test_classify_error(error: BaseException, expected: tuple) -> None:
    assert classify_error(error) == expected


def test_backoff_doubles_per_attempt() -> None:
    assert [compute_backoff_seconds(n, 2.0) for n in range(4)] == [2.0, 4.0, 8.0, 16.0]


def test_scrape_many_runs_sequentially_with_pause_between_places() -> None:
    attempts = ScriptedAttempts([_ok()])
    sleep = RecordingSleep()
    controller = _controller(attempts, sleep=sleep, batch_min_delay_ms=3000, batch_max_delay_ms=8000)

    results = asyncio.run(controller.scrape_many([PLACE_ID, "0x89c25a31:0x6a1e8a7c", "ChIJabcdefghijklmnop"]))

    assert len(results) == 3
    assert all(result.success for result in results)
    assert len(sleep.delays) == 2
    assert all(3.0 <= delay <= 8.0 for delay in sleep.delays)


class PerPlaceAttempts:
    def __init__(self, outcomes: dict[str, list]) -> None:
        self.outcomes = {place_id: list(items) for place_id, items in outcomes.items()}

    def __call__(self):
        return self

    async def run(self, place_id: str) -> ScrapeResult:
        await asyncio.sleep(0)
        outcome = self.outcomes[place_id].pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def test_concurrent_scrapes_keep_separate_retry_state() -> None:
    flaky, steady = PLACE_ID, "0x89c259a61c75684f:0x79d31adb123348d2"
    attempts = PerPlaceAttempts(
        {
            flaky: [SessionFailure("Target closed"), _ok(flaky)],
            steady: [_ok(steady)],
        }
    )
    controller = _controller(attempts, base_delay_ms=2000)

    async def scenario():
        return await asyncio.gather(controller.scrape_with_state(flaky), controller.scrape_with_state(steady))

    (flaky_result, flaky_state), (steady_result, steady_state) = asyncio.run(scenario())

    assert flaky_result.retry_count == 1
    assert flaky_state.delays == [2.0]
    assert flaky_state.last_error_kind == ErrorKind.SESSION_FAILURE
    assert steady_result.retry_count == 0
    assert steady_state.delays == []
    assert steady_state.last_error_kind is None
