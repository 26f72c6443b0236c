from src.models.review import ReviewRecord, ScrapeResult

__all__ = ["ReviewRecord", "ScrapeResult"]
