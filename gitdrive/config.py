"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    """GitDrive application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=list)

    # Backend repository
    github_api_url: str = "https://api.github.com"
    github_api_version: str = "2022-11-28"
    github_token: str | None = None
    repo_owner: str = ""
    repo_name: str = "my-personal-drive"
    branch: str | None = None
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Drive limits
    max_blob_bytes: int = Field(default=25 * MIB, ge=1)
    max_selection: int = Field(default=5, ge=1)
    download_delay_seconds: float = Field(default=0.5, ge=0)
    listing_cache_ttl_seconds: float = Field(default=0.0, ge=0)
    sentinel_name: str = Field(default=".gitkeep", min_length=1)
    storage_quota_bytes: int = Field(default=1024 * MIB, ge=1)
    recent_days: int = Field(default=7, ge=1)

    def validate_runtime_settings(self) -> None:
        """Validate settings that the drive cannot operate without."""
        violations: list[str] = []
        if "/" in self.sentinel_name or self.sentinel_name in {".", ".."}:
            violations.append("SENTINEL_NAME must be a single path segment")
        if not self.repo_name:
            violations.append("REPO_NAME must not be empty")
        if not self.debug and not self.repo_owner:
            violations.append("REPO_OWNER must be configured outside debug mode")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid drive configuration: {joined}")
