from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from src.config import Settings, settings as default_settings
from src.models.review import ScrapeResult
from src.scraper.errors import TimeoutExceeded
from src.scraper.extraction import ReviewExtractor
from src.scraper.orchestrator import ProgressCallback, ScrapeOrchestrator
from src.scraper.pagination import PaginationEngine
from src.scraper.resolver import ElementResolver
from src.scraper.retry import RetryController
from src.scraper.selectors import load_selector_patterns
from src.scraper.session import SessionManager
from src.services.cache import ResponseCache

LOGGER = logging.getLogger("services.reviews")


def build_orchestrator(config: Settings, progress_callback: ProgressCallback | None = None) -> ScrapeOrchestrator:
    selectors = load_selector_patterns(config.scraper_selectors_file or None)
    resolver = ElementResolver()
    extractor = ReviewExtractor(resolver, selectors, max_reviews=config.scraper_max_reviews)
    session_manager = SessionManager(
        headless=config.scraper_headless,
        browser_channel=config.scraper_browser_channel,
        timeout_ms=config.scraper_timeout_ms,
        locale=config.scraper_locale,
        viewport={"width": config.scraper_viewport_width, "height": config.scraper_viewport_height},
        blocked_resource_types=config.scraper_blocked_resource_types,
        extra_chromium_args=config.scraper_extra_chromium_args,
        navigation_min_delay_ms=config.scraper_navigation_min_delay_ms,
        navigation_max_delay_ms=config.scraper_navigation_max_delay_ms,
        selectors=selectors,
        debug=config.scraper_debug,
        output_dir=config.scraper_output_dir,
    )
    paginator = PaginationEngine(
        max_rounds=config.scraper_scroll_max_rounds,
        stable_rounds=config.scraper_stable_rounds,
        max_items=config.scraper_max_reviews,
        min_settle_ms=config.scraper_settle_min_ms,
        max_settle_ms=config.scraper_settle_max_ms,
    )
    return ScrapeOrchestrator(
        session_manager,
        resolver=resolver,
        extractor=extractor,
        paginator=paginator,
        selectors=selectors,
        sort_by_newest=config.scraper_sort_by_newest,
        debug=config.scraper_debug,
        output_dir=config.scraper_output_dir,
        min_delay_ms=config.scraper_min_delay_ms,
        max_delay_ms=config.scraper_max_delay_ms,
        progress_callback=progress_callback,
    )


def build_retry_controller(config: Settings, progress_callback: ProgressCallback | None = None) -> RetryController:
    return RetryController(
        lambda: build_orchestrator(config, progress_callback),
        max_retries=config.scraper_max_retries,
        base_delay_ms=config.scraper_retry_base_delay_ms,
        batch_min_delay_ms=config.scraper_batch_min_delay_ms,
        batch_max_delay_ms=config.scraper_batch_max_delay_ms,
    )


class ReviewsService:
    """Cache-fronted access to the scraper with a per-request deadline."""

    def __init__(
        self,
        cache: ResponseCache | None = None,
        retry_controller: RetryController | None = None,
        *,
        config: Settings | None = None,
        request_timeout_s: float | None = None,
    ) -> None:
        config = config or default_settings
        self.cache = cache or ResponseCache(config.cache_ttl_seconds, max_entries=config.cache_max_entries)
        self._controller = retry_controller or build_retry_controller(config)
        timeout = config.request_timeout_seconds if request_timeout_s is None else request_timeout_s
        self._request_timeout_s = timeout if timeout and timeout > 0 else None

    async def scrape(self, place_id: str) -> ScrapeResult:
        return await self._controller.scrape(place_id)

    async def scrape_many(self, place_ids: Iterable[str]) -> list[ScrapeResult]:
        return await self._controller.scrape_many(place_ids)

    async def get_reviews(self, place_id: str, *, force: bool = False) -> tuple[ScrapeResult, bool]:
        """Return ``(result, cached)``.

        Raises ``TimeoutExceeded`` when the scrape does not finish before the
        request deadline; the in-flight scrape is cancelled and its browser
        session is still torn down.
        """

        if not force:
            cached = self.cache.get(place_id)
            if cached is not None:
                LOGGER.info("Serving cached results for place_id %s", place_id)
                return cached, True

        LOGGER.info("Scraping new data for place_id %s (force=%s)", place_id, force)
        try:
            result = await asyncio.wait_for(self._controller.scrape(place_id), timeout=self._request_timeout_s)
        except asyncio.TimeoutError as exc:
            raise TimeoutExceeded(
                f"Scraping took too long to complete (limit {self._request_timeout_s:.0f}s)."
            ) from exc

        if result.success and result.reviews:
            self.cache.set(place_id, result)
        return result, False

    async def prune_cache_periodically(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.cache.prune()
