import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import settings
from src.routers.health import router as health_router
from src.routers.reviews import router as reviews_router
from src.services.reviews_service import ReviewsService

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = ReviewsService(config=settings)
    app.state.reviews_service = service

    prune_task: asyncio.Task | None = None
    if settings.cache_prune_interval_seconds > 0:
        prune_task = asyncio.create_task(service.prune_cache_periodically(settings.cache_prune_interval_seconds))
    try:
        yield
    finally:
        if prune_task is not None:
            prune_task.cancel()
            with suppress(asyncio.CancelledError):
                await prune_task


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="API for scraping Google Maps reviews of a place by place id.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(reviews_router)
