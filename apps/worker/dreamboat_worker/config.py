"""
Worker Configuration

Environment-based configuration for the generation worker.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    # Worker identity
    worker_id: str = "dreamboat-worker-1"

    # API connection
    api_url: str = "http://localhost:8000"
    api_prefix: str = "/api"
    worker_token: str = "change-me-worker"
    api_timeout_seconds: float = 30.0

    # Redis
    redis_url: str = "redis://localhost:6379"

    # MinIO / S3
    s3_endpoint: str = "localhost:9000"
    s3_access_key: str = "minioadmin"
    s3_secret_key: str = "minioadmin"
    s3_bucket: str = "dreamboat"
    s3_region: str = "us-east-1"
    s3_secure: bool = False

    # Image generation (Gemini)
    gemini_api_key: str = ""
    generation_model: str = "gemini-2.0-flash-exp"
    generation_timeout_seconds: float = 120.0
    max_reference_photos: int = 3
    output_jpeg_quality: int = 90

    # Polling
    poll_interval: float = 5.0  # seconds

    # Metrics
    metrics_port: int = 9090

    @property
    def callback_base_url(self) -> str:
        return f"{self.api_url.rstrip('/')}{self.api_prefix}/internal"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
