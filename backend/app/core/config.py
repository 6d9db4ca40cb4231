"""Application configuration using pydantic-settings."""
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENV: Literal["development", "production", "test"] = "development"
    DEBUG: bool = False
    PORT: int = Field(default=8000, ge=1, le=65535)

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"

    # CORS Configuration
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Security
    BLOCK_PRIVATE_NETWORKS: bool = Field(
        default=True,
        description="Block URLs pointing to private networks (SSRF protection)",
    )
    ALLOWED_URL_SCHEMES: str = Field(
        default="http,https",
        description="Comma-separated list of allowed URL schemes",
    )

    @field_validator("CORS_ORIGINS")
    @classmethod
    def parse_cors_origins(cls, v: str) -> str:
        """Ensure CORS_ORIGINS is properly formatted."""
        return v.strip()

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def allowed_schemes_list(self) -> list[str]:
        """Get allowed URL schemes as a list."""
        return [scheme.strip().lower() for scheme in self.ALLOWED_URL_SCHEMES.split(",") if scheme.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "production"

    # Catalog resolution
    FALLBACK_MAX_HEIGHT: int = Field(
        default=360,
        ge=0,
        le=4320,
        description="Query the secondary backend when the best primary height is at or below this",
    )
    SECONDARY_BACKEND_TIMEOUT_SECONDS: float = Field(
        default=45.0,
        gt=0,
        le=600,
        description="Abandon the secondary backend call after this many seconds",
    )
    SECONDARY_BACKEND_WORKERS: int = Field(default=4, ge=1, le=64)

    # Secondary results cache, keyed by content id
    FORMATS_CACHE_TTL_SECONDS: int = Field(
        default=600,
        ge=1,
        le=3600,
        description="TTL for cached secondary backend formats",
    )
    FORMATS_CACHE_MAXSIZE: int = Field(
        default=256,
        ge=1,
        le=4096,
        description="Max number of cached content ids",
    )

    # Primary backend (pytubefix)
    PYTUBE_CLIENT: str = Field(
        default="WEB",
        description="pytubefix client name (WEB, ANDROID, IOS, TV_EMBED, ...)",
    )

    # Secondary backend (yt-dlp)
    YTDLP_BINARY: str = "yt-dlp"
    YTDLP_SOCKET_TIMEOUT: int = Field(
        default=30,
        ge=1,
        le=300,
        description="yt-dlp --socket-timeout value in seconds",
    )
    YTDLP_RETRIES: int = Field(default=10, ge=0, le=50)
    YTDLP_USER_AGENT: str | None = Field(
        default=None,
        description="Custom user agent string for yt-dlp requests",
    )
    YTDLP_COOKIES_FROM_BROWSER: str | None = Field(
        default=None,
        description="Browser to extract cookies from (chrome, firefox, edge, etc.)",
    )
    YTDLP_PROXY: str | None = Field(
        default=None,
        description="HTTP/HTTPS/SOCKS proxy URL (e.g., http://proxy:8080)",
    )

    # Transcoding engine (ffmpeg)
    FFMPEG_BINARY: str = "ffmpeg"
    FFMPEG_DEBUG: bool = Field(
        default=False,
        description="Run ffmpeg with -loglevel debug and log its stderr",
    )
    FFMPEG_USER_AGENT: str = Field(
        default="Mozilla/5.0",
        description="User agent ffmpeg sends when opening direct source URLs",
    )
    FFMPEG_RW_TIMEOUT_SECONDS: int = Field(
        default=30,
        ge=1,
        le=600,
        description="ffmpeg -rw_timeout for direct source URLs",
    )
    AUDIO_CODEC: str = "aac"
    AUDIO_BITRATE: str = "192k"
    MP3_BITRATE: str = "192k"
    DOWNSCALE_PRESET: Literal[
        "ultrafast", "superfast", "veryfast", "faster", "fast", "medium"
    ] = "veryfast"
    STREAM_CHUNK_SIZE: int = Field(
        default=262144,
        ge=4096,
        le=16777216,
        description="Max bytes per chunk read from ffmpeg stdout",
    )

    # Delivery progress (SSE)
    PROGRESS_POLL_INTERVAL_SECONDS: float = Field(
        default=0.5,
        gt=0,
        le=10,
        description="How often the progress stream emits an event",
    )
    PROGRESS_RETENTION_SECONDS: int = Field(
        default=1800,
        ge=60,
        le=86400,
        description="How long finished delivery progress records are kept",
    )


# Global settings instance
settings = Settings()
