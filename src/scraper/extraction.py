from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

from playwright.async_api import Error as PlaywrightError, Locator, Page

from src.models.review import ReviewRecord
from src.scraper.normalization import (
    UNKNOWN_DATE_TEXT,
    is_translation_boilerplate,
    normalize_relative_date,
    parse_rating,
    rating_from_width_style,
    review_fingerprint,
    utc_now,
)
from src.scraper.resolver import ElementResolver
from src.scraper.selectors import SELECTOR_PATTERNS

LOGGER = logging.getLogger("scraper.extraction")

DEFAULT_REVIEWER_NAME = "Anonymous"


@dataclass(frozen=True)
class RawReview:
    reviewer_name: str | None = None
    rating: float | None = None
    relative_date: str | None = None
    review_text: str | None = None


class ReviewExtractor:
    def __init__(
        self,
        resolver: ElementResolver | None = None,
        selectors: dict[str, tuple[str, ...]] | None = None,
        *,
        max_reviews: int = 100,
        translation_min_length: int = 30,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._resolver = resolver or ElementResolver()
        self._selectors = selectors or SELECTOR_PATTERNS
        self.max_reviews = max(1, max_reviews)
        self._translation_min_length = translation_min_length
        self._clock = clock
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def count_visible(self, page: Page) -> int:
        match = await self._review_cards(page)
        return match[1] if match is not None else 0

    async def expand_truncated(self, page: Page, max_clicks: int = 20) -> int:
        clicks = 0

        for selector in self._selectors["REVIEW_EXPAND"]:
            buttons = page.locator(selector)
            total = await buttons.count()
            if total == 0:
                continue

            for idx in range(total):
                if clicks >= max_clicks:
                    break
                try:
                    await buttons.nth(idx).click()
                except PlaywrightError:
                    continue
                clicks += 1
                await self._sleep(self._rng.randint(200, 500) / 1000)

            if clicks > 0:
                LOGGER.info("Expanded %s review texts", clicks)
                break

        return clicks

    async def extract(self, page: Page) -> list[ReviewRecord]:
        match = await self._review_cards(page)
        if match is None:
            LOGGER.info("No review cards present on the page.")
            return []

        cards, total = match
        raw_items: list[RawReview] = []
        for idx in range(total):
            raw_items.append(await self.read_card(cards.nth(idx)))

        records = self.build_records(raw_items)
        LOGGER.info("Extracted %s reviews from %s cards", len(records), total)
        return records

    async def read_card(self, card: Locator) -> RawReview:
        reviewer_name = await self._resolver.resolve_text(card, self._selectors["AUTHOR_NAME"])
        relative_date = await self._resolver.resolve_text(card, self._selectors["RELATIVE_TIME"])
        review_text = await self._resolver.resolve_text(card, self._selectors["REVIEW_TEXT"])

        rating = parse_rating(
            await self._resolver.resolve_attribute(
                card,
                self._selectors["RATING_LABEL"],
                "aria-label",
                predicate=lambda value: parse_rating(value) is not None,
            )
        )
        if rating is None:
            rating = rating_from_width_style(
                await self._resolver.resolve_attribute(
                    card,
                    self._selectors["RATING_WIDTH"],
                    "style",
                    predicate=lambda value: rating_from_width_style(value) is not None,
                )
            )

        return RawReview(
            reviewer_name=reviewer_name,
            rating=rating,
            relative_date=relative_date,
            review_text=review_text,
        )

    def build_records(self, raw_items: Iterable[RawReview]) -> list[ReviewRecord]:
        """Apply defaults, drop boilerplate and duplicates, normalize dates, cap length.

        DOM order is preserved, so the page's current sort carries through.
        """

        records: list[ReviewRecord] = []
        seen: set[tuple[str, float | None, str]] = set()
        now = self._clock()

        for item in raw_items:
            reviewer_name = item.reviewer_name or DEFAULT_REVIEWER_NAME
            review_text = item.review_text or ""
            relative_date = item.relative_date or UNKNOWN_DATE_TEXT

            if is_translation_boilerplate(review_text, self._translation_min_length):
                continue
            if not review_text and item.rating is None:
                continue

            key = review_fingerprint(reviewer_name, item.rating, review_text)
            if key in seen:
                continue
            seen.add(key)

            records.append(
                ReviewRecord(
                    reviewer_name=reviewer_name,
                    rating=item.rating,
                    relative_date=relative_date,
                    normalized_date=normalize_relative_date(relative_date, now=now),
                    review_text=review_text,
                    extracted_at=now,
                )
            )
            if len(records) >= self.max_reviews:
                break

        return records

    async def _review_cards(self, page: Page) -> tuple[Locator, int] | None:
        for selector in self._selectors["REVIEW_CARDS"]:
            cards = page.locator(selector)
            try:
                total = await cards.count()
            except PlaywrightError as exc:
                LOGGER.debug("Counting review cards with %r failed: %s", selector, exc)
                continue
            if total > 0:
                return cards, total
        return None
