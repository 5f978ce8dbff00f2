"""Application configuration and constants."""

from typing import Dict, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_QUALITY = 85

# Business rules: the first pattern found in the image address wins.
DEFAULT_QUALITY_OVERRIDES: Dict[str, int] = {
    r"400X400\.jpg$": 68,
}

MAX_INPUT_SIZE_MB = 100
FETCH_TIMEOUT_SECONDS = 30
FETCH_CONNECT_TIMEOUT_SECONDS = 5

CACHE_MAX_AGE_SECONDS = 604800


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    public_img_path: str = "./public"

    fetch_timeout_seconds: int = FETCH_TIMEOUT_SECONDS
    fetch_connect_timeout_seconds: int = FETCH_CONNECT_TIMEOUT_SECONDS
    max_input_size_mb: int = MAX_INPUT_SIZE_MB

    compute_workers: Optional[int] = None
    smartcrop_interesting: Literal["centre", "attention"] = "centre"
    quality_overrides: Dict[str, int] = DEFAULT_QUALITY_OVERRIDES

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    s3_allowed_buckets: str = ""
    s3_endpoint_url: Optional[str] = None

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_cors_origins: str = "*"

    log_level: str = "INFO"
    log_format: str = "json"

    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 600
    rate_limit_per_hour: int = 10000

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if self.api_cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.api_cors_origins.split(",")]

    @property
    def s3_allowed_buckets_list(self) -> list[str]:
        """Parse allowed S3 buckets from comma-separated string."""
        if not self.s3_allowed_buckets:
            return []
        return [bucket.strip() for bucket in self.s3_allowed_buckets.split(",")]


settings = Settings()
