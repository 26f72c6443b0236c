from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from playwright.async_api import Page

LOGGER = logging.getLogger("scraper.pagination")

STOP_CONVERGED = "converged"
STOP_CAP_REACHED = "cap_reached"
STOP_ROUND_LIMIT = "round_limit"

_SCROLL_TO_BOTTOM_JS = """
(selectors) => {
    for (const selector of selectors) {
        const node = document.querySelector(selector);
        if (node && node.scrollHeight > node.clientHeight) {
            node.scrollTo(0, node.scrollHeight);
            return {
                found: true,
                selector: selector,
                scroll_height: Math.round(node.scrollHeight)
            };
        }
    }

    const root = document.scrollingElement || document.documentElement;
    root.scrollTo(0, root.scrollHeight);
    return {
        found: false,
        selector: null,
        scroll_height: Math.round(root.scrollHeight)
    };
}
"""


@dataclass(frozen=True)
class PaginationOutcome:
    rounds: int
    item_count: int
    stop_reason: str

    def as_dict(self) -> dict[str, Any]:
        return {"rounds": self.rounds, "item_count": self.item_count, "stop_reason": self.stop_reason}


async def scroll_to_bottom(page: Page, container_selectors: Sequence[str]) -> dict[str, Any]:
    """Scroll the first scrollable reviews container, or the document if none matches."""

    metrics = await page.evaluate(_SCROLL_TO_BOTTOM_JS, list(container_selectors))
    return dict(metrics or {})


class PaginationEngine:
    """Keep triggering lazy loading until the visible item count stops growing.

    The loop is bounded three ways: ``stable_rounds`` consecutive rounds without
    growth, ``max_items`` visible items, or ``max_rounds`` rounds in total.
    """

    def __init__(
        self,
        *,
        max_rounds: int = 15,
        stable_rounds: int = 5,
        max_items: int = 100,
        min_settle_ms: int = 2000,
        max_settle_ms: int = 4000,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.max_rounds = max(1, max_rounds)
        self.stable_rounds = max(1, stable_rounds)
        self.max_items = max(1, max_items)
        self._min_settle_ms = max(0, min_settle_ms)
        self._max_settle_ms = max(self._min_settle_ms, max_settle_ms)
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def run(
        self,
        scroll: Callable[[], Awaitable[Any]],
        count: Callable[[], Awaitable[int]],
    ) -> PaginationOutcome:
        last_count = await count()
        if last_count >= self.max_items:
            LOGGER.info("Already %s items visible, no pagination needed.", last_count)
            return PaginationOutcome(rounds=0, item_count=last_count, stop_reason=STOP_CAP_REACHED)

        unchanged_rounds = 0
        for round_number in range(1, self.max_rounds + 1):
            await scroll()
            await self._sleep(self._rng.randint(self._min_settle_ms, self._max_settle_ms) / 1000)

            current_count = await count()
            LOGGER.debug("Items visible after scroll %s: %s", round_number, current_count)

            if current_count > last_count:
                unchanged_rounds = 0
            else:
                unchanged_rounds += 1
            last_count = max(last_count, current_count)

            if unchanged_rounds >= self.stable_rounds:
                LOGGER.info("No new items after %s rounds, stopping.", unchanged_rounds)
                return PaginationOutcome(round_number, last_count, STOP_CONVERGED)

            if last_count >= self.max_items:
                LOGGER.info("Reached maximum items limit: %s", self.max_items)
                return PaginationOutcome(round_number, last_count, STOP_CAP_REACHED)

        LOGGER.info("Round limit %s hit with %s items visible.", self.max_rounds, last_count)
        return PaginationOutcome(self.max_rounds, last_count, STOP_ROUND_LIMIT)
