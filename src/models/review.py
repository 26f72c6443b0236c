from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.scraper.errors import ErrorKind
from src.scraper.normalization import review_fingerprint


class ReviewRecord(BaseModel):
    reviewer_name: str = "Anonymous"
    rating: float | None = Field(default=None, ge=0.0, le=5.0)
    relative_date: str = ""
    normalized_date: str = Field(min_length=1)
    review_text: str = ""
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def dedup_key(self) -> tuple[str, float | None, str]:
        return review_fingerprint(self.reviewer_name, self.rating, self.review_text)


class ScrapeResult(BaseModel):
    success: bool
    place_id: str
    place_name: str | None = None
    review_count: int = Field(default=0, ge=0)
    scrape_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reviews: list[ReviewRecord] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_kind: ErrorKind | None = None
    error: str | None = None
    retry_count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_consistency(self) -> ScrapeResult:
        if self.review_count != len(self.reviews):
            raise ValueError("review_count must match the number of reviews.")
        if not self.success and self.reviews:
            raise ValueError("A failed scrape cannot carry reviews.")
        return self

    @classmethod
    def completed(
        cls,
        *,
        place_id: str,
        place_name: str | None,
        reviews: list[ReviewRecord],
        metadata: dict[str, Any] | None = None,
        retry_count: int = 0,
    ) -> ScrapeResult:
        return cls(
            success=True,
            place_id=place_id,
            place_name=place_name,
            review_count=len(reviews),
            reviews=list(reviews),
            metadata=metadata or {},
            retry_count=retry_count,
        )

    @classmethod
    def failed(
        cls,
        *,
        place_id: str,
        error_kind: ErrorKind,
        error: str,
        retry_count: int = 0,
    ) -> ScrapeResult:
        return cls(
            success=False,
            place_id=place_id,
            error_kind=error_kind,
            error=error,
            retry_count=retry_count,
        )

    def with_retry_count(self, retry_count: int) -> ScrapeResult:
        return self.model_copy(update={"retry_count": retry_count})
