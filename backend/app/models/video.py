"""Pydantic models for catalog and delivery API contracts."""
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.catalog import FormatKind


class FormatsRequest(BaseModel):
    """Request model for resolving a video's quality catalog."""

    url: str = Field(
        ...,
        description="URL of the video to resolve",
        min_length=10,
        max_length=2048,
        examples=["https://www.youtube.com/watch?v=dQw4w9WgXcQ"],
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Basic URL validation."""
        v = v.strip()
        if not v:
            raise ValueError("URL cannot be empty")
        return v


class DownloadRequest(BaseModel):
    """Request model for delivering a video or its audio."""

    url: str = Field(
        ...,
        description="URL of the video to download",
        min_length=10,
        max_length=2048,
    )
    kind: Literal["video", "audio"] = Field(
        default="video",
        description="Deliver an MP4 video or an MP3 audio track",
    )
    quality: str = Field(
        default="best",
        description="Quality token from the catalog: 'best', 'itag_<id>', 'scale_<height>' or a bare format id",
        min_length=1,
        max_length=100,
        examples=["best", "itag_22", "scale_480"],
    )

    @field_validator("url", "quality")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Ensure fields are not empty after stripping."""
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be empty")
        return v


class LadderEntryModel(BaseModel):
    """One entry of the standardized video quality ladder."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Quality token to request this entry with")
    label: str = Field(..., description="Human-readable quality label (e.g. '720p', '480p (Downscale)')")
    target_height: int = Field(..., ge=0)
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)
    fps: float = Field(default=0, ge=0)
    bitrate: float = Field(default=0, ge=0)
    has_audio: bool
    container: str
    kind: FormatKind
    synthetic: bool = Field(..., description="True when served by downscaling a taller source")
    standardized: bool = Field(..., description="True when the height is on the standard ladder")
    quality_score: float
    approx_size_bytes: int = Field(default=0, ge=0)
    source_format_id: str | None = None


class AudioFormatModel(BaseModel):
    """A ranked audio-only format."""

    model_config = ConfigDict(from_attributes=True)

    format_id: str
    label: str
    container: str
    audio_bitrate: float = Field(default=0, ge=0, description="Audio bitrate in kbps")
    quality_score: float
    approx_size_bytes: int = Field(default=0, ge=0)


class MediaInfoResponse(BaseModel):
    """Metadata and the resolved quality catalog for a video."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "content_id": "dQw4w9WgXcQ",
                "title": "Example Video Title",
                "author": "Example Channel",
                "duration_seconds": 213,
                "view_count": 1000,
                "thumbnail_url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
                "video_formats": [
                    {
                        "id": "scale_480",
                        "label": "480p (Downscale)",
                        "target_height": 480,
                        "width": 854,
                        "height": 480,
                        "fps": 30,
                        "bitrate": 2500000,
                        "has_audio": True,
                        "container": "mp4",
                        "kind": "synthetic_downscale",
                        "synthetic": True,
                        "standardized": True,
                        "quality_score": 480,
                        "approx_size_bytes": 0,
                        "source_format_id": "137",
                    }
                ],
                "audio_formats": [
                    {
                        "format_id": "140",
                        "label": "128kbps",
                        "container": "mp4",
                        "audio_bitrate": 128,
                        "quality_score": 40,
                        "approx_size_bytes": 3400000,
                    }
                ],
            }
        },
    )

    content_id: str
    title: str = Field(..., min_length=1)
    author: str = ""
    duration_seconds: int | None = Field(default=None, ge=0)
    view_count: int | None = Field(default=None, ge=0)
    thumbnail_url: str | None = None
    video_formats: list[LadderEntryModel]
    audio_formats: list[AudioFormatModel]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    code: Literal[
        "INVALID_INPUT",
        "INVALID_URL",
        "SOURCE_UNAVAILABLE",
        "FORMAT_NOT_FOUND",
        "NO_VIABLE_SOURCE",
        "PIPELINE_FAILURE",
        "DELIVERY_NOT_FOUND",
        "INTERNAL_ERROR",
    ] = Field(
        ...,
        description="Stable error code for programmatic handling",
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        min_length=1,
    )

    class Config:
        """Pydantic config."""
        json_schema_extra = {
            "example": {
                "code": "FORMAT_NOT_FOUND",
                "message": "Format '999' not found in video formats",
            }
        }


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(
        default="healthy",
        description="Health status of the service",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
