from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.config import settings
from src.routers.dependencies import get_reviews_service
from src.services.reviews_service import ReviewsService

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    environment: str
    cache_entries: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@router.get("/health", response_model=HealthResponse)
async def get_health(service: ReviewsService = Depends(get_reviews_service)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        environment=settings.app_env,
        cache_entries=len(service.cache),
    )
