import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Remote service
    api_base_url: str = Field(default="http://localhost:3001", alias="API_BASE_URL")
    public_api_key: str = Field(default="", alias="PUBLIC_API_KEY")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")

    # Retries
    max_retries: int = Field(default=3, alias="MAX_RETRIES")
    retry_base_delay: float = Field(default=1.0, alias="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=10.0, alias="RETRY_MAX_DELAY")

    # Response cache
    cache_default_ttl_seconds: int = Field(default=300, alias="CACHE_DEFAULT_TTL")
    cache_max_size: int = Field(default=100, alias="CACHE_MAX_SIZE")

    # Search
    search_page_size: int = Field(default=6, alias="SEARCH_PAGE_SIZE")
    search_debounce_ms: int = Field(default=500, alias="SEARCH_DEBOUNCE_MS")
    refresh_after_action_ms: int = Field(default=500, alias="REFRESH_AFTER_ACTION_MS")

    # Anti-forgery token
    csrf_refresh_margin_seconds: int = Field(default=600, alias="CSRF_REFRESH_MARGIN")

    # Feature flags
    enable_request_dedup: bool = Field(default=True, alias="ENABLE_REQUEST_DEDUP")
    enable_response_cache: bool = Field(default=True, alias="ENABLE_RESPONSE_CACHE")
    debug: bool = Field(default=False, alias="CLIENT_DEBUG")


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
