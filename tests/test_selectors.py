import json

import pytest

from src.scraper.selectors import SELECTOR_PATTERNS, load_selector_patterns


def test_builtin_catalog_is_returned_without_override_file() -> None:
    patterns = load_selector_patterns(None)

    assert patterns == SELECTOR_PATTERNS
    assert patterns is not SELECTOR_PATTERNS


def test_override_file_replaces_only_listed_chains(tmp_path) -> None:
    path = tmp_path / "selectors.json"
    path.write_text(json.dumps({"review_cards": ["div.review"], "AUTHOR_NAME": ".author"}), encoding="utf-8")

    patterns = load_selector_patterns(path)

    assert patterns["REVIEW_CARDS"] == ("div.review",)
    assert patterns["AUTHOR_NAME"] == (".author",)
    assert patterns["REVIEW_TEXT"] == SELECTOR_PATTERNS["REVIEW_TEXT"]


@pytest.mark.parametrize(
    "payload",
    [
        ["div.review"],
        {"REVIEW_CARDS": 3},
        {"REVIEW_CARDS": ["  "]},
    ],
)
def test_invalid_override_file_is_rejected(tmp_path, payload) -> None:
    path = tmp_path / "selectors.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(ValueError):
        load_selector_patterns(path)
