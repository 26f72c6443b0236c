import re

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from src.models.review import ScrapeResult
from src.routers.dependencies import get_reviews_service
from src.scraper.errors import ErrorKind, TimeoutExceeded
from src.services.reviews_service import ReviewsService

router = APIRouter()

# "ChIJ..." place ids and "0x...:0x..." feature ids.
PLACE_ID_REGEX = re.compile(r"^(?:ChIJ[A-Za-z0-9_-]{10,80}|0x[0-9a-fA-F]{1,20}(?::0x[0-9a-fA-F]{1,20})?)$")

_FAILURE_STATUS = {
    ErrorKind.BOT_CHECK_TRIGGERED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.TIMEOUT_EXCEEDED: status.HTTP_504_GATEWAY_TIMEOUT,
}


def validate_place_id(place_id: str) -> str:
    value = (place_id or "").strip()
    if not value:
        raise ValueError("Missing required parameter: place_id")
    if not PLACE_ID_REGEX.match(value):
        raise ValueError("Invalid place_id format")
    return value


def _payload(result: ScrapeResult, cached: bool) -> dict:
    return {**result.model_dump(mode="json"), "cached": cached}


@router.get("/reviews", tags=["Reviews"])
async def get_reviews(
    place_id: str = Query(default=""),
    force: bool = Query(default=False),
    service: ReviewsService = Depends(get_reviews_service),
):
    try:
        normalized_place_id = validate_place_id(place_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        result, cached = await service.get_reviews(normalized_place_id, force=force)
    except TimeoutExceeded as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc

    if not result.success:
        status_code = _FAILURE_STATUS.get(result.error_kind, status.HTTP_502_BAD_GATEWAY)
        return JSONResponse(status_code=status_code, content=_payload(result, cached))

    return _payload(result, cached)


@router.get("/cache/stats", tags=["Cache"])
async def get_cache_stats(service: ReviewsService = Depends(get_reviews_service)) -> dict:
    return service.cache.stats()


@router.post("/cache/clear", tags=["Cache"])
async def clear_cache(service: ReviewsService = Depends(get_reviews_service)) -> dict:
    service.cache.clear()
    return {"success": True, "message": "Cache cleared"}


@router.delete("/cache/{place_id}", tags=["Cache"])
async def delete_cache_entry(place_id: str, service: ReviewsService = Depends(get_reviews_service)) -> dict:
    if not service.cache.delete(place_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No cached entry for {place_id}")
    return {"success": True, "place_id": place_id}
