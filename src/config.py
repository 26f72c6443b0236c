from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Place Reviews Scraper"
    app_env: str = "dev"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    scraper_headless: bool = True
    scraper_browser_channel: str = ""
    scraper_timeout_ms: int = 60000
    scraper_locale: str = "en-US"
    scraper_viewport_width: int = 1920
    scraper_viewport_height: int = 1080
    scraper_min_delay_ms: int = 1000
    scraper_max_delay_ms: int = 3000
    scraper_navigation_min_delay_ms: int = 2000
    scraper_navigation_max_delay_ms: int = 4000
    scraper_max_reviews: int = 100
    scraper_max_retries: int = 3
    scraper_retry_base_delay_ms: int = 2000
    scraper_scroll_max_rounds: int = 15
    scraper_stable_rounds: int = 5
    scraper_settle_min_ms: int = 2000
    scraper_settle_max_ms: int = 4000
    scraper_sort_by_newest: bool = True
    scraper_blocked_resource_types: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["image", "stylesheet", "font", "media"]
    )
    scraper_extra_chromium_args: Annotated[list[str], NoDecode] = Field(default_factory=list)
    scraper_selectors_file: str = ""
    scraper_debug: bool = False
    scraper_output_dir: str = "output"
    scraper_batch_min_delay_ms: int = 3000
    scraper_batch_max_delay_ms: int = 8000

    cache_ttl_seconds: int = 1800
    cache_max_entries: int = 1000
    cache_prune_interval_seconds: int = 300
    request_timeout_seconds: float = 300.0

    cors_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: object) -> object:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("scraper_extra_chromium_args", "scraper_blocked_resource_types", mode="before")
    @classmethod
    def parse_comma_separated(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
