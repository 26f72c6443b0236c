from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from src.models.review import ScrapeResult
from src.scraper.errors import TRANSIENT_ERROR_KINDS, BotCheckTriggered, ErrorKind, ScrapeError
from src.scraper.orchestrator import ScrapeOrchestrator

LOGGER = logging.getLogger("scraper.retry")

# Lower-cased fragments of error messages worth a fresh session.
TRANSIENT_MESSAGE_INDICATORS: tuple[tuple[str, ErrorKind], ...] = (
    ("timeout", ErrorKind.TIMEOUT_EXCEEDED),
    ("navigation failed", ErrorKind.NAVIGATION_EXHAUSTED),
    ("net::err", ErrorKind.SESSION_FAILURE),
    ("protocol error", ErrorKind.SESSION_FAILURE),
    ("target closed", ErrorKind.SESSION_FAILURE),
    ("has been closed", ErrorKind.SESSION_FAILURE),
    ("connection refused", ErrorKind.SESSION_FAILURE),
    ("connection closed", ErrorKind.SESSION_FAILURE),
)


@dataclass
class RetryState:
    attempt_number: int = 0
    last_error_kind: ErrorKind | None = None
    delays: list[float] = field(default_factory=list)


def classify_error(error: BaseException) -> tuple[ErrorKind, bool]:
    """Return ``(kind, transient)`` for a failed attempt."""

    if isinstance(error, BotCheckTriggered):
        return ErrorKind.BOT_CHECK_TRIGGERED, False

    if isinstance(error, ScrapeError) and error.kind is not ErrorKind.INTERNAL:
        return error.kind, error.kind in TRANSIENT_ERROR_KINDS

    message = str(error).lower()
    for indicator, kind in TRANSIENT_MESSAGE_INDICATORS:
        if indicator in message:
            return kind, True

    return ErrorKind.INTERNAL, False


def compute_backoff_seconds(attempt_number: int, base_delay_s: float) -> float:
    return float((2 ** max(0, attempt_number)) * base_delay_s)


class RetryController:
    """Run whole scrape attempts until one succeeds, fails fatally or retries run out.

    Each attempt gets a brand new orchestrator and therefore a fresh browser
    session. ``scrape`` never raises a scrape failure; it is encoded in the result.
    """

    def __init__(
        self,
        orchestrator_factory: Callable[[], ScrapeOrchestrator],
        *,
        max_retries: int = 3,
        base_delay_ms: int = 2000,
        batch_min_delay_ms: int = 3000,
        batch_max_delay_ms: int = 8000,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self.max_retries = max(0, max_retries)
        self._base_delay_s = max(0, base_delay_ms) / 1000
        self._batch_min_delay_ms = max(0, batch_min_delay_ms)
        self._batch_max_delay_ms = max(self._batch_min_delay_ms, batch_max_delay_ms)
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def scrape(self, place_id: str) -> ScrapeResult:
        result, _ = await self.scrape_with_state(place_id)
        return result

    async def scrape_with_state(self, place_id: str) -> tuple[ScrapeResult, RetryState]:
        """Like ``scrape`` but also returns the retry bookkeeping of this call.

        The state is local to the call, so concurrent scrapes sharing one
        controller never see each other's attempts.
        """

        state = RetryState()

        while True:
            suffix = f" (retry {state.attempt_number})" if state.attempt_number else ""
            LOGGER.info("Starting scrape for place_id %s%s", place_id, suffix)
            try:
                result = await self._orchestrator_factory().run(place_id)
            except Exception as exc:  # noqa: BLE001
                kind, transient = classify_error(exc)
                state.last_error_kind = kind
                LOGGER.error(
                    "Scrape attempt %s for %s failed (%s, transient=%s): %s",
                    state.attempt_number + 1,
                    place_id,
                    kind.value,
                    transient,
                    exc,
                )

                if not transient or state.attempt_number >= self.max_retries:
                    failed = ScrapeResult.failed(
                        place_id=place_id,
                        error_kind=kind,
                        error=str(exc),
                        retry_count=state.attempt_number,
                    )
                    return failed, state

                delay = compute_backoff_seconds(state.attempt_number, self._base_delay_s)
                state.delays.append(delay)
                LOGGER.info(
                    "Retrying in %.1fs... Attempt %s of %s",
                    delay,
                    state.attempt_number + 1,
                    self.max_retries,
                )
                await self._sleep(delay)
                state.attempt_number += 1
                continue

            return result.with_retry_count(state.attempt_number), state

    async def scrape_many(self, place_ids: Iterable[str]) -> list[ScrapeResult]:
        """Scrape places one after another with a random pause between them."""

        targets = list(place_ids)
        results: list[ScrapeResult] = []

        for idx, place_id in enumerate(targets):
            LOGGER.info("Processing place %s/%s: %s", idx + 1, len(targets), place_id)
            results.append(await self.scrape(place_id))

            if idx < len(targets) - 1:
                delay_ms = self._rng.randint(self._batch_min_delay_ms, self._batch_max_delay_ms)
                LOGGER.info("Waiting %.1fs before next request...", delay_ms / 1000)
                await self._sleep(delay_ms / 1000)

        return results
