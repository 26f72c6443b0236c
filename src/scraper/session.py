from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence
from urllib.parse import urlsplit

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from src.scraper.errors import BotCheckTriggered, NavigationExhausted, SessionFailure
from src.scraper.selectors import SELECTOR_PATTERNS

LOGGER = logging.getLogger("scraper.session")

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/133.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/133.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:135.0) Gecko/20100101 Firefox/135.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/133.0.0.0 Safari/537.36",
)

PLACE_URL_TEMPLATES: tuple[str, ...] = (
    "https://www.google.com/maps/place/?q=place_id:{place_id}",
    "https://maps.google.com/maps?q=place_id:{place_id}",
    "https://www.google.com/maps/search/?api=1&query=place_id:{place_id}",
)

DEFAULT_BLOCKED_RESOURCE_TYPES: tuple[str, ...] = ("image", "stylesheet", "font", "media")

EXTRA_HTTP_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

CHROMIUM_ARGS: tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-notifications",
    "--disable-extensions",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-features=TranslateUI",
)

BOT_CHECK_PATH_MARKER = "/sorry/"


def is_maps_url(url: str | None) -> bool:
    """True for a Google Maps address, judged by host and path only.

    Query strings are ignored: the consent and /sorry/ interstitials carry the
    original Maps address in their ``continue`` parameter.
    """

    parts = urlsplit(url or "")
    labels = (parts.hostname or "").split(".")
    if "google" not in labels or labels[0] == "consent":
        return False
    return parts.path == "/maps" or parts.path.startswith("/maps/")


def is_bot_check_url(url: str | None) -> bool:
    return BOT_CHECK_PATH_MARKER in urlsplit(url or "").path


def is_consent_url(url: str | None) -> bool:
    return (urlsplit(url or "").hostname or "").startswith("consent.google.")


@dataclass
class BrowserSession:
    page: Page
    user_agent: str
    viewport: dict[str, int]
    playwright: Playwright | None = None
    browser: Browser | None = None
    context: BrowserContext | None = None
    closed: bool = False
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def url(self) -> str:
        return self.page.url


class SessionManager:
    def __init__(
        self,
        *,
        headless: bool = True,
        browser_channel: str | None = None,
        timeout_ms: int = 60000,
        locale: str = "en-US",
        viewport: dict[str, int] | None = None,
        user_agents: Sequence[str] = USER_AGENTS,
        blocked_resource_types: Sequence[str] = DEFAULT_BLOCKED_RESOURCE_TYPES,
        extra_chromium_args: Sequence[str] = (),
        url_templates: Sequence[str] = PLACE_URL_TEMPLATES,
        navigation_min_delay_ms: int = 2000,
        navigation_max_delay_ms: int = 4000,
        selectors: dict[str, tuple[str, ...]] | None = None,
        debug: bool = False,
        output_dir: str | Path = "output",
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not user_agents:
            raise ValueError("At least one user agent is required.")
        if not url_templates:
            raise ValueError("At least one navigation URL template is required.")

        self._headless = headless
        self._browser_channel = (browser_channel or "").strip() or None
        self._timeout_ms = max(1000, timeout_ms)
        self._locale = locale
        self._viewport = dict(viewport or {"width": 1920, "height": 1080})
        self._user_agents = tuple(user_agents)
        self._blocked_resource_types = frozenset(item.strip().lower() for item in blocked_resource_types if item)
        self._extra_chromium_args = tuple(extra_chromium_args)
        self._url_templates = tuple(url_templates)
        self._navigation_min_delay_ms = max(0, navigation_min_delay_ms)
        self._navigation_max_delay_ms = max(self._navigation_min_delay_ms, navigation_max_delay_ms)
        self._selectors = selectors or SELECTOR_PATTERNS
        self._debug = debug
        self._output_dir = Path(output_dir).expanduser()
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    async def launch(self) -> BrowserSession:
        user_agent = self._rng.choice(self._user_agents)
        playwright: Playwright | None = None
        browser: Browser | None = None
        context: BrowserContext | None = None

        LOGGER.info("Launching browser (headless=%s).", self._headless)
        try:
            playwright = await async_playwright().start()
            browser = await self._launch_browser(playwright)
            context = await browser.new_context(
                user_agent=user_agent,
                viewport=self._viewport,
                locale=self._locale,
                extra_http_headers=EXTRA_HTTP_HEADERS,
            )
            await context.add_init_script(
                "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
            )
            context.set_default_timeout(self._timeout_ms)
            context.set_default_navigation_timeout(self._timeout_ms)
            if self._blocked_resource_types:
                await context.route("**/*", self._route_request)
            page = await context.new_page()
        except PlaywrightError as exc:
            await self._release(context, browser, playwright)
            raise SessionFailure(f"Browser launch failed: {exc}") from exc

        LOGGER.info("Browser launched with user agent %r.", user_agent)
        return BrowserSession(
            page=page,
            user_agent=user_agent,
            viewport=dict(self._viewport),
            playwright=playwright,
            browser=browser,
            context=context,
        )

    async def navigate(self, session: BrowserSession, place_id: str) -> bool:
        page = session.page
        LOGGER.info("Navigating to place %s.", place_id)

        for template in self._url_templates:
            url = template.format(place_id=place_id)
            try:
                LOGGER.debug("Trying URL %s", url)
                await page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
                await self._random_delay(self._navigation_min_delay_ms, self._navigation_max_delay_ms)
                if is_consent_url(page.url):
                    await self._dismiss_consent(page)
            except PlaywrightError as exc:
                LOGGER.warning("Navigation with %s failed: %s", url, exc)
                continue

            if is_bot_check_url(page.url):
                raise BotCheckTriggered(f"Bot check detected: redirected to {page.url}")

            if is_maps_url(page.url):
                LOGGER.info("Landed on Google Maps at %s", page.url)
                return True

            LOGGER.warning("Navigation with %s ended on unexpected address %s", url, page.url)

        raise NavigationExhausted(
            f"Navigation failed: none of {len(self._url_templates)} candidate URLs reached Google Maps."
        )

    async def screenshot(self, session: BrowserSession, name: str) -> Path | None:
        if not self._debug or session.closed:
            return None

        path = self._output_dir / f"{name}_{int(datetime.now(timezone.utc).timestamp() * 1000)}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await session.page.screenshot(path=str(path), full_page=True)
        except (PlaywrightError, OSError) as exc:
            LOGGER.error("Failed to take screenshot %s: %s", path, exc)
            return None

        LOGGER.debug("Screenshot saved: %s", path)
        return path

    async def close(self, session: BrowserSession | None) -> None:
        if session is None or session.closed:
            return
        session.closed = True
        await self._release(session.context, session.browser, session.playwright)
        LOGGER.info("Browser closed.")

    async def _launch_browser(self, playwright: Playwright) -> Browser:
        launch_options: dict[str, Any] = {
            "headless": self._headless,
            "args": [*CHROMIUM_ARGS, *self._extra_chromium_args],
            "timeout": self._timeout_ms,
        }
        if self._browser_channel:
            launch_options["channel"] = self._browser_channel

        try:
            return await playwright.chromium.launch(**launch_options)
        except PlaywrightError:
            if not self._browser_channel:
                raise
            # Fallback to bundled Chromium if requested browser channel is unavailable.
            launch_options.pop("channel", None)
            return await playwright.chromium.launch(**launch_options)

    async def _route_request(self, route: Route) -> None:
        if route.request.resource_type in self._blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()

    async def _dismiss_consent(self, page: Page) -> None:
        for selector in self._selectors["CONSENT_ACCEPT"]:
            button = page.locator(selector).first
            try:
                await button.wait_for(state="visible", timeout=2500)
                await button.click()
            except PlaywrightTimeoutError:
                continue
            LOGGER.info("Accepted Google consent interstitial.")
            await page.wait_for_load_state("domcontentloaded")
            await self._random_delay(self._navigation_min_delay_ms, self._navigation_max_delay_ms)
            return

    async def _release(
        self,
        context: BrowserContext | None,
        browser: Browser | None,
        playwright: Playwright | None,
    ) -> None:
        for label, closer in (
            ("context", context.close if context is not None else None),
            ("browser", browser.close if browser is not None else None),
            ("playwright", playwright.stop if playwright is not None else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except PlaywrightError as exc:
                LOGGER.warning("Ignoring error while closing %s: %s", label, exc)

    async def _random_delay(self, min_ms: int, max_ms: int) -> None:
        delay_ms = self._rng.randint(min_ms, max_ms)
        await self._sleep(delay_ms / 1000)
