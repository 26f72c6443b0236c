import json
from pathlib import Path
from typing import Final, Mapping

# Ordered fallback chains per semantic target. The first locator that yields
# content wins, so order encodes observed reliability. Google Maps rotates its
# class names often; override any chain from a JSON file instead of editing code.
SELECTOR_PATTERNS: Final[dict[str, tuple[str, ...]]] = {
    # Anti-automation interstitials
    "CAPTCHA_FORM": (
        "form[action*='captcha']",
        "form#captcha-form",
        "div#recaptcha",
        "iframe[src*='recaptcha']",
    ),
    # Consent interstitial (consent.google.com)
    "CONSENT_ACCEPT": (
        "form[action*='consent'] button[aria-label*='Accept' i]",
        "button[aria-label*='Accept all' i]",
        "button:has-text('Accept all')",
        "button:has-text('Aceptar todo')",
    ),
    # Place header
    "PLACE_NAME": (
        "h1[data-attrid='title']",
        "h1.DUwDvf",
        "h1.qrShPb",
        "[data-attrid='title'] span",
        "h1 span",
        ".DUwDvf",
        ".OVnw0d .fontHeadlineLarge",
        ".fontHeadlineLarge",
    ),
    # Reviews view entrypoints
    "REVIEWS_TAB": (
        "button[role='tab'][aria-label*='review' i]",
        "button[data-tab-index='1']",
        "button[jsaction*='pane.rating.moreReviews']",
        "button[jsaction*='reviewChart.moreReviews']",
        "button[aria-label*='review' i]",
        "a[href*='reviews']",
        "div[role='tab']:nth-child(2)",
        "div[role='tab']:nth-child(3)",
    ),
    "REVIEWS_READY": (
        "[data-review-id]",
        ".jftiEf",
        ".MyEned",
        ".wiI7pd",
        ".DU9Pgb",
    ),
    # Sorting
    "SORT_BUTTON": (
        "button[aria-label*='Sort reviews' i]",
        "button[data-value='Sort']",
        "button[jsaction*='sortBy']",
        "button[aria-label*='Sort' i]",
        ".kbBxb button",
        ".czM3lc button",
    ),
    "SORT_NEWEST_OPTION": (
        "div[role='menuitemradio']:has-text('Newest')",
        "div[role='menuitemradio'][data-index='1']",
        "div[role='menuitemradio']:nth-child(2)",
        "li[role='menuitemradio']:nth-child(2)",
    ),
    # Scrollable reviews pane, tried before falling back to the document
    "SCROLL_CONTAINER": (
        ".m6QErb[data-tab-index='1']",
        ".m6QErb[data-tab-index='2']",
        ".m6QErb.DxyBCb",
        ".DxyBCb",
        ".section-scrollbox",
        ".review-dialog-list",
    ),
    # Review cards and fields
    "REVIEW_CARDS": (
        "div.jftiEf[data-review-id]",
        "[data-review-id]",
        ".jftiEf",
        ".gws-localreviews__google-review",
        ".review-item",
        ".section-review",
    ),
    "REVIEW_EXPAND": (
        "button[jsaction*='review.expandReview']",
        "button[aria-label='See more']",
        "button[data-expandable-section]",
        ".review-more-link",
        ".wiI7pd button",
    ),
    "AUTHOR_NAME": (
        ".d4r55",
        ".TSUbDb",
        ".WNxzHc",
        ".review-author-name",
    ),
    "RATING_LABEL": (
        "span[role='img'][aria-label*='star' i]",
        ".kvMYJc",
        ".Fam1ne",
        ".review-rating",
    ),
    "RATING_WIDTH": (
        ".QJAzGd",
        "[style*='width:']",
    ),
    "RELATIVE_TIME": (
        ".rsqaWe",
        ".DU9Pgb",
        ".dehysf",
        ".review-publish-date",
    ),
    "REVIEW_TEXT": (
        ".wiI7pd",
        ".MyEned",
        ".review-full-text",
        ".section-review-text",
    ),
}

BOT_CHECK_TEXT_MARKERS: Final[tuple[str, ...]] = (
    "unusual traffic",
    "captcha",
    "verify you are human",
)


def load_selector_patterns(path: str | Path | None = None) -> dict[str, tuple[str, ...]]:
    """Return the selector catalog, replacing chains listed in an optional JSON file.

    The file maps a key (``"REVIEW_CARDS"``) to a list of selectors. Keys not in
    the file keep their built-in chain.
    """

    patterns = dict(SELECTOR_PATTERNS)
    if not path:
        return patterns

    raw = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    if not isinstance(raw, Mapping):
        raise ValueError(f"Selector file {path} must contain a JSON object.")

    for key, chain in raw.items():
        if isinstance(chain, str):
            chain = [chain]
        if not isinstance(chain, list) or not all(isinstance(item, str) for item in chain):
            raise ValueError(f"Selector chain '{key}' must be a string or a list of strings.")
        selectors = tuple(item.strip() for item in chain if item.strip())
        if not selectors:
            raise ValueError(f"Selector chain '{key}' is empty.")
        patterns[str(key).upper()] = selectors

    return patterns
