import asyncio
from datetime import datetime, timezone

from playwright.async_api import Error as PlaywrightError

from src.scraper.extraction import RawReview, ReviewExtractor
from src.scraper.normalization import UNKNOWN_DATE_MARKER
from tests.fakes import FakeNode, FakePage, no_sleep, review_card

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def _extractor(**kwargs) -> ReviewExtractor:
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    kwargs.setdefault("sleep", no_sleep)
    return ReviewExtractor(**kwargs)


def test_extract_reads_fields_and_normalizes_dates() -> None:
    page = FakePage(
        {
            "div.jftiEf[data-review-id]": [
                review_card("Ana", text="Lovely coffee and pastries", date="a day ago", rating_label="5 stars"),
                review_card("Luis", text="Good but noisy", date="2 weeks ago", rating_style="width: 80%"),
            ]
        }
    )

    records = asyncio.run(_extractor().extract(page))

    assert [record.reviewer_name for record in records] == ["Ana", "Luis"]
    assert records[0].rating == 5.0
    assert records[0].normalized_date == "2024-06-14T12:00:00Z"
    assert records[1].rating == 4.0
    assert records[1].normalized_date == "2024-06-01T12:00:00Z"
    assert all(record.extracted_at == FIXED_NOW for record in records)


def test_missing_fields_get_defaults() -> None:
    page = FakePage({"div.jftiEf[data-review-id]": [review_card(text="Nice terrace")]})

    records = asyncio.run(_extractor().extract(page))

    assert len(records) == 1
    record = records[0]
    assert record.reviewer_name == "Anonymous"
    assert record.rating is None
    assert record.relative_date == "Unknown date"
    assert record.normalized_date == "2024-06-15T12:00:00Z" + UNKNOWN_DATE_MARKER


def test_no_cards_yields_empty_list() -> None:
    assert asyncio.run(_extractor().extract(FakePage({}))) == []


def test_duplicates_by_author_rating_and_text_prefix_are_dropped() -> None:
    prefix = "The staff were very welcoming and"
    raw = [
        RawReview("Ana", 5.0, "a week ago", prefix + " the food was great"),
        RawReview("Ana", 5.0, "a week ago", prefix + " we will return"),
        RawReview("Ana", 4.0, "a week ago", prefix + " the food was great"),
    ]

    records = _extractor().build_records(raw)

    assert [record.rating for record in records] == [5.0, 4.0]
    assert len({record.dedup_key for record in records}) == len(records)


def test_translation_boilerplate_and_empty_items_are_skipped() -> None:
    raw = [
        RawReview("Ana", None, "a day ago", "Translated by Google"),
        RawReview("Ben", None, "a day ago", None),
        RawReview("Cai", 3.0, "a day ago", None),
    ]

    records = _extractor().build_records(raw)

    assert [record.reviewer_name for record in records] == ["Cai"]
    assert records[0].review_text == ""


def test_records_are_capped_in_dom_order() -> None:
    raw = [RawReview(f"Reviewer {idx}", 4.0, "a month ago", f"Review number {idx}") for idx in range(10)]

    records = _extractor(max_reviews=3).build_records(raw)

    assert [record.reviewer_name for record in records] == ["Reviewer 0", "Reviewer 1", "Reviewer 2"]


def test_count_visible_uses_first_matching_card_selector() -> None:
    page = FakePage(
        {
            "[data-review-id]": [FakeNode(), FakeNode(), FakeNode()],
            ".jftiEf": [FakeNode()],
        }
    )

    assert asyncio.run(_extractor().count_visible(page)) == 3


def test_expand_truncated_clicks_more_buttons_up_to_limit() -> None:
    buttons = [FakeNode("More") for _ in range(5)]
    page = FakePage({"button[jsaction*='review.expandReview']": buttons})

    clicks = asyncio.run(_extractor().expand_truncated(page, max_clicks=3))

    assert clicks == 3
    assert [button.clicks for button in buttons] == [1, 1, 1, 0, 0]


class DetachedLocator:
    async def count(self) -> int:
        raise PlaywrightError("Execution context was destroyed, most likely because of a navigation")


class DetachingPage(FakePage):
    """Page whose preferred card selector errors while the list re-renders."""

    def locator(self, selector: str):
        if selector == "div.jftiEf[data-review-id]":
            return DetachedLocator()
        return super().locator(selector)


def test_card_lookup_skips_selectors_that_error() -> None:
    page = DetachingPage(
        {
            "[data-review-id]": [
                review_card("Ana", text="Lovely coffee", rating_label="5 stars"),
                review_card("Luis", text="Good but noisy", rating_label="3 stars"),
            ]
        }
    )
    extractor = _extractor()

    assert asyncio.run(extractor.count_visible(page)) == 2
    assert [record.reviewer_name for record in asyncio.run(extractor.extract(page))] == ["Ana", "Luis"]


def test_count_visible_is_zero_when_every_selector_errors() -> None:
    class BrokenPage(FakePage):
        def locator(self, selector: str):
            return DetachedLocator()

    assert asyncio.run(_extractor().count_visible(BrokenPage())) == 0
