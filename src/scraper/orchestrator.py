from __future__ import annotations

import asyncio
import inspect
import json
import logging
import random
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError, Locator, Page

from src.models.review import ScrapeResult
from src.scraper.errors import BotCheckTriggered
from src.scraper.extraction import ReviewExtractor
from src.scraper.normalization import clean_text, normalize_text
from src.scraper.pagination import PaginationEngine, scroll_to_bottom
from src.scraper.resolver import ElementResolver
from src.scraper.selectors import BOT_CHECK_TEXT_MARKERS, SELECTOR_PATTERNS
from src.scraper.session import BrowserSession, SessionManager, is_bot_check_url, is_maps_url

LOGGER = logging.getLogger("scraper.orchestrator")

UNKNOWN_PLACE_NAME = "Unknown Place"

ProgressCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


class ScrapeStage(str, Enum):
    INIT = "init"
    SESSION_LAUNCH = "session_launch"
    BOT_CHECK = "bot_check"
    NAVIGATE = "navigate"
    NAME_RESOLVE = "name_resolve"
    REVIEWS_VIEW_ACTIVATE = "reviews_view_activate"
    SORT_BY_NEWEST = "sort_by_newest"
    PAGINATE = "paginate"
    EXTRACT = "extract"
    FINALIZE = "finalize"
    TEARDOWN = "teardown"


class ScrapeOrchestrator:
    """Drive one browser session through a single scrape attempt.

    Stages run strictly in order. Bot-check and navigation failures raise and
    end the attempt; name, reviews view and sort stages degrade to defaults.
    Teardown always runs and releases the session, including on cancellation.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        *,
        resolver: ElementResolver | None = None,
        extractor: ReviewExtractor | None = None,
        paginator: PaginationEngine | None = None,
        selectors: dict[str, tuple[str, ...]] | None = None,
        sort_by_newest: bool = True,
        debug: bool = False,
        output_dir: str | Path = "output",
        min_delay_ms: int = 1000,
        max_delay_ms: int = 3000,
        ready_timeout_ms: int = 10000,
        progress_callback: ProgressCallback | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._sessions = session_manager
        self._selectors = selectors or SELECTOR_PATTERNS
        self._resolver = resolver or ElementResolver()
        self._extractor = extractor or ReviewExtractor(self._resolver, self._selectors)
        self._paginator = paginator or PaginationEngine(max_items=self._extractor.max_reviews)
        self._sort_by_newest = sort_by_newest
        self._debug = debug
        self._output_dir = Path(output_dir).expanduser()
        self._min_delay_ms = max(0, min_delay_ms)
        self._max_delay_ms = max(self._min_delay_ms, max_delay_ms)
        self._ready_timeout_ms = max(500, ready_timeout_ms)
        self._progress_callback = progress_callback
        self._rng = rng or random.Random()
        self._sleep = sleep

        self.stage = ScrapeStage.INIT
        self.stage_history: list[ScrapeStage] = []

    async def run(self, place_id: str) -> ScrapeResult:
        session: BrowserSession | None = None
        await self._enter(ScrapeStage.INIT, "Scrape attempt started.", {"place_id": place_id})

        try:
            await self._enter(ScrapeStage.SESSION_LAUNCH, "Launching browser session.")
            session = await self._sessions.launch()
            page = session.page

            await self._enter(ScrapeStage.BOT_CHECK, "Checking for anti-automation challenge.")
            await self._check_bot_challenge(page)

            await self._enter(ScrapeStage.NAVIGATE, "Navigating to place.")
            await self._sessions.navigate(session, place_id)
            await self._check_bot_challenge(page)
            await self._sessions.screenshot(session, f"navigation_{place_id}")

            await self._enter(ScrapeStage.NAME_RESOLVE, "Resolving place name.")
            place_name = await self._resolve_place_name(page)

            await self._enter(ScrapeStage.REVIEWS_VIEW_ACTIVATE, "Opening reviews view.")
            reviews_ready = await self._activate_reviews_view(page)
            await self._sessions.screenshot(session, f"reviews_section_{place_id}")

            sorted_by_newest = False
            if self._sort_by_newest:
                await self._enter(ScrapeStage.SORT_BY_NEWEST, "Sorting reviews by newest.")
                sorted_by_newest = await self._sort_reviews_by_newest(page)

            await self._enter(ScrapeStage.PAGINATE, "Loading more reviews.")
            outcome = await self._paginator.run(
                scroll=lambda: scroll_to_bottom(page, self._selectors["SCROLL_CONTAINER"]),
                count=lambda: self._extractor.count_visible(page),
            )

            await self._enter(ScrapeStage.EXTRACT, "Extracting reviews.", outcome.as_dict())
            await self._extractor.expand_truncated(page)
            reviews = await self._extractor.extract(page)

            await self._enter(ScrapeStage.FINALIZE, "Building result.", {"review_count": len(reviews)})
            result = ScrapeResult.completed(
                place_id=place_id,
                place_name=place_name,
                reviews=reviews,
                metadata={
                    "user_agent": session.user_agent,
                    "viewport": dict(session.viewport),
                    "url": page.url,
                    "reviews_view_ready": reviews_ready,
                    "sorted_by_newest": sorted_by_newest,
                    "pagination": outcome.as_dict(),
                },
            )
            self._save_debug_json(f"result_{place_id}", result)
            LOGGER.info("Scraped %s reviews for %s", result.review_count, place_name)
            return result
        finally:
            self._mark(ScrapeStage.TEARDOWN, "Releasing browser session.")
            await self._sessions.close(session)

    async def _check_bot_challenge(self, page: Page) -> None:
        if is_bot_check_url(page.url):
            raise BotCheckTriggered(f"Bot check detected: redirected to {page.url}")

        if await self._resolver.is_present(page, self._selectors["CAPTCHA_FORM"]):
            raise BotCheckTriggered("Bot check detected: captcha form present.")

        # Place pages render review text, which can mention any of the markers.
        if is_maps_url(page.url):
            return

        try:
            body_text = normalize_text(await page.locator("body").inner_text(timeout=5000))
        except PlaywrightError:
            return
        for marker in BOT_CHECK_TEXT_MARKERS:
            if marker in body_text:
                raise BotCheckTriggered(f"Bot check detected: page mentions {marker!r}.")

    async def _resolve_place_name(self, page: Page) -> str:
        name = await self._resolver.resolve_text(page, self._selectors["PLACE_NAME"])
        if name:
            LOGGER.info("Found place name: %s", name)
            return name

        try:
            title = clean_text(await page.title())
        except PlaywrightError as exc:
            LOGGER.warning("Could not read page title: %s", exc)
            title = None

        if title and "google maps" not in title.lower():
            name_from_title = clean_text(title.split(" - ")[0])
            if name_from_title:
                LOGGER.info("Found place name from page title: %s", name_from_title)
                return name_from_title

        LOGGER.warning("Could not find place name, using placeholder.")
        return UNKNOWN_PLACE_NAME

    async def _activate_reviews_view(self, page: Page) -> bool:
        tab = await self._resolver.resolve_all(
            page,
            self._selectors["REVIEWS_TAB"],
            predicate=lambda label: "review" in normalize_text(label),
        )
        if tab is None:
            LOGGER.info("No reviews tab found, checking if reviews are already visible.")
        else:
            try:
                await self._click(tab)
            except PlaywrightError as exc:
                LOGGER.warning("Clicking the reviews tab failed: %s", exc)

        for selector in self._selectors["REVIEWS_READY"]:
            try:
                await page.locator(selector).first.wait_for(state="attached", timeout=self._ready_timeout_ms)
            except PlaywrightError:
                continue
            LOGGER.info("Reviews loaded (found: %s)", selector)
            return True

        LOGGER.warning("Could not confirm reviews are loaded.")
        return False

    async def _sort_reviews_by_newest(self, page: Page) -> bool:
        sort_button = await self._resolver.resolve(page, self._selectors["SORT_BUTTON"])
        if sort_button is None:
            LOGGER.info("Sort control not found, using default order.")
            return False

        try:
            await self._click(sort_button)
            newest = await self._resolver.resolve(page, self._selectors["SORT_NEWEST_OPTION"])
            if newest is None:
                LOGGER.info("Newest option not found, using default order.")
                return False
            await self._click(newest)
        except PlaywrightError as exc:
            LOGGER.warning("Error sorting reviews: %s", exc)
            return False

        LOGGER.info("Sorted reviews by newest.")
        return True

    async def _click(self, locator: Locator) -> None:
        try:
            await locator.scroll_into_view_if_needed()
        except PlaywrightError:
            pass
        await locator.click()
        await self._sleep(self._rng.randint(self._min_delay_ms, self._max_delay_ms) / 1000)

    def _mark(self, stage: ScrapeStage, message: str) -> None:
        self.stage = stage
        self.stage_history.append(stage)
        LOGGER.debug("Stage %s: %s", stage.value, message)

    async def _enter(self, stage: ScrapeStage, message: str, data: dict[str, Any] | None = None) -> None:
        self._mark(stage, message)

        if self._progress_callback is None:
            return
        maybe_awaitable = self._progress_callback({"stage": stage.value, "message": message, "data": data or {}})
        if inspect.isawaitable(maybe_awaitable):
            await maybe_awaitable

    def _save_debug_json(self, name: str, result: ScrapeResult) -> None:
        if not self._debug:
            return

        path = self._output_dir / f"{name}_{int(datetime.now(timezone.utc).timestamp() * 1000)}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            LOGGER.error("Failed to save debug file %s: %s", path, exc)
            return
        LOGGER.debug("Saved debug file: %s", path)
