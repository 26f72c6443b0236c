from fastapi import Request

from src.services.reviews_service import ReviewsService


def get_reviews_service(request: Request) -> ReviewsService:
    return request.app.state.reviews_service
