"""Centralized configuration for search-mirror using Pydantic Settings."""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings loaded from environment variables.

    Per-entity-type indexing options live in ``deployment_config``; this model
    only carries the defaults shared by every entity type.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",  # Ignore extra env vars not defined in model
    )

    # Backend settings
    search_backend_url: str = Field(
        default="http://127.0.0.1:9200",
        description="Base URL of the search backend, used when an entity type has no url of its own",
    )
    search_backend_timeout: float = Field(default=30.0, gt=0, description="Backend request timeout in seconds")
    search_backend_refresh: Literal["false", "true", "wait_for"] = Field(
        default="wait_for",
        # Existing documents are found through _search; "false" lets a quick
        # second write miss the first and index a duplicate.
        description="Refresh policy passed with every index write",
    )

    # Indexing defaults
    default_result_limit: int = Field(default=200, ge=1, description="Default number of search hits requested")
    reindex_page_size: int = Field(default=500, ge=1, description="Records read per page while re-indexing")

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")
    log_queries: bool = Field(default=False, description="Log every backend query as a curl command")

    @field_validator("search_backend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def get_log_level(self) -> str:
        """Return the log level in the upper-case form expected by ``logging``."""
        return self.log_level.upper()
