from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime, timezone
from typing import Callable

from dateutil.relativedelta import relativedelta

LOGGER = logging.getLogger("scraper.normalization")

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
UNKNOWN_DATE_TEXT = "Unknown date"
UNKNOWN_DATE_MARKER = " (unknown original date)"
TRANSLATION_NOTICE = "Translated by Google"
DEDUP_TEXT_PREFIX = 30

_RELATIVE_REGEX = re.compile(
    r"^(?P<amount>\d+|a|an|one)\s+(?P<unit>second|minute|hour|day|week|month|year)s?\s+ago$"
)
_NUMBER_REGEX = re.compile(r"(\d+(?:[.,]\d+)?)")
_WIDTH_REGEX = re.compile(r"width:\s*(\d+(?:\.\d+)?)%")

# Absolute formats seen on review cards, tried in order.
_ABSOLUTE_DATE_FORMATS = (
    "%B %Y",
    "%b %Y",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y-%m-%d",
    "%m-%d-%Y",
    "%d-%m-%Y",
)

_UNIT_DELTAS: dict[str, Callable[[int], relativedelta]] = {
    "second": lambda amount: relativedelta(seconds=amount),
    "minute": lambda amount: relativedelta(minutes=amount),
    "hour": lambda amount: relativedelta(hours=amount),
    "day": lambda amount: relativedelta(days=amount),
    "week": lambda amount: relativedelta(weeks=amount),
    "month": lambda amount: relativedelta(months=amount),
    "year": lambda amount: relativedelta(years=amount),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def normalize_relative_date(value: str | None, now: datetime | None = None) -> str:
    """Turn a card date label ("2 weeks ago", "March 2023", ISO) into an ISO timestamp.

    Never returns an empty value: missing input maps to ``now``, the literal
    ``Unknown date`` maps to ``now`` tagged with ``UNKNOWN_DATE_MARKER`` and any
    other unrecognised label is returned unchanged.
    """

    now = now or utc_now()
    raw = clean_text(value)
    if not raw:
        return format_timestamp(now)

    if raw == UNKNOWN_DATE_TEXT:
        return format_timestamp(now) + UNKNOWN_DATE_MARKER

    lowered = raw.lower()
    if lowered.startswith("edited "):
        lowered = lowered[len("edited ") :].strip()

    if lowered == "yesterday":
        return format_timestamp(now - relativedelta(days=1))
    if lowered in {"just now", "today"}:
        return format_timestamp(now)

    match = _RELATIVE_REGEX.match(lowered)
    if match:
        amount_token = match.group("amount")
        amount = int(amount_token) if amount_token.isdigit() else 1
        unit = match.group("unit")
        # Sub-day precision is not shown reliably, the scrape time is close enough.
        if unit in {"second", "minute", "hour"}:
            return format_timestamp(now)
        return format_timestamp(now - _UNIT_DELTAS[unit](amount))

    parsed = _parse_absolute_date(raw)
    if parsed is not None:
        return format_timestamp(parsed)

    LOGGER.warning("Could not parse review date %r, keeping raw text.", raw)
    return raw


def _parse_absolute_date(value: str) -> datetime | None:
    candidate = value.strip()
    iso_candidate = candidate[:-1] + "+00:00" if candidate.endswith("Z") else candidate
    try:
        return datetime.fromisoformat(iso_candidate)
    except ValueError:
        pass

    for pattern in _ABSOLUTE_DATE_FORMATS:
        try:
            return datetime.strptime(candidate, pattern).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_rating(value: str | None) -> float | None:
    if not value:
        return None

    match = _NUMBER_REGEX.search(normalize_text(value))
    if not match:
        return None

    try:
        rating = float(match.group(1).replace(",", "."))
    except ValueError:
        return None

    if 0.0 <= rating <= 5.0:
        return rating
    return None


def rating_from_width_style(style: str | None) -> float | None:
    """Convert a star bar encoded as ``width: 80%`` into a 5-point score."""

    if not style:
        return None

    match = _WIDTH_REGEX.search(style)
    if not match:
        return None

    percent = min(max(float(match.group(1)), 0.0), 100.0)
    return round(percent / 20, 1)


def clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", value).strip()
    return cleaned or None


def normalize_text(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    normalized = "".join(char for char in normalized if not unicodedata.combining(char))
    normalized = normalized.lower()
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return normalized


def review_fingerprint(reviewer_name: str, rating: float | None, review_text: str) -> tuple[str, float | None, str]:
    return (reviewer_name, rating, (review_text or "")[:DEDUP_TEXT_PREFIX])


def is_translation_boilerplate(review_text: str, min_length: int = 30) -> bool:
    return TRANSLATION_NOTICE in review_text and len(review_text) < min_length
