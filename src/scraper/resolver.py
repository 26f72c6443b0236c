from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from playwright.async_api import Error as PlaywrightError, Locator, Page

from src.scraper.normalization import clean_text

LOGGER = logging.getLogger("scraper.resolver")

Root = Page | Locator


class ElementResolver:
    """Resolve a semantic target through an ordered list of candidate locators.

    Locators are evaluated in order and the first one producing non-empty content
    wins; there is no scoring across candidates. A miss returns ``None`` and is
    never an error, callers pick their own fallback value.
    """

    async def resolve(
        self,
        root: Root,
        locators: Sequence[str],
        *,
        predicate: Callable[[str], bool] | None = None,
    ) -> Locator | None:
        for selector in locators:
            candidate = root.locator(selector).first
            text = await self._text_from_locator(candidate)
            if not text:
                continue
            if predicate is not None and not predicate(text):
                continue
            return candidate
        return None

    async def resolve_all(
        self,
        root: Root,
        locators: Sequence[str],
        *,
        predicate: Callable[[str], bool] | None = None,
        limit: int = 10,
    ) -> Locator | None:
        """Like ``resolve`` but scans up to ``limit`` matches per locator."""

        for selector in locators:
            candidates = root.locator(selector)
            try:
                total = await candidates.count()
            except PlaywrightError:
                continue

            for idx in range(min(total, limit)):
                candidate = candidates.nth(idx)
                text = await self._text_from_locator(candidate)
                if not text:
                    continue
                if predicate is not None and not predicate(text):
                    continue
                return candidate
        return None

    async def resolve_text(self, root: Root, locators: Sequence[str]) -> str | None:
        match = await self.resolve(root, locators)
        if match is None:
            return None
        return await self._text_from_locator(match)

    async def resolve_attribute(
        self,
        root: Root,
        locators: Sequence[str],
        attribute: str,
        *,
        predicate: Callable[[str], bool] | None = None,
    ) -> str | None:
        for selector in locators:
            candidate = root.locator(selector).first
            try:
                if await candidate.count() <= 0:
                    continue
                value = clean_text(await candidate.get_attribute(attribute))
            except PlaywrightError as exc:
                LOGGER.debug("Attribute %s lookup failed for %r: %s", attribute, selector, exc)
                continue
            if not value:
                continue
            if predicate is not None and not predicate(value):
                continue
            return value
        return None

    async def is_present(self, root: Root, locators: Sequence[str]) -> bool:
        for selector in locators:
            try:
                if await root.locator(selector).count() > 0:
                    return True
            except PlaywrightError:
                continue
        return False

    async def label_of(self, locator: Locator) -> str:
        aria = None
        try:
            aria = await locator.get_attribute("aria-label")
        except PlaywrightError:
            pass
        text = await self._text_from_locator(locator)
        return " ".join(part for part in (clean_text(aria), text) if part)

    async def _text_from_locator(self, locator: Any) -> str | None:
        try:
            if await locator.count() <= 0:
                return None
        except PlaywrightError:
            return None

        text: str | None = None
        try:
            text = await locator.inner_text()
        except PlaywrightError:
            try:
                text = await locator.text_content()
            except PlaywrightError:
                text = None

        return clean_text(text)
