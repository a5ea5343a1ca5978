"""
Pydantic models for yt-dlp data, the normalized video info and request/response schemas
"""

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

YOUTUBE_REQUEST_URL_RE = re.compile(r"^https://(www\.)?(youtube\.com|youtu\.be)/.+")


class CamelModel(BaseModel):
    """Response-facing model: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# yt-dlp DATA (transient, one request)
# ============================================================================


class StreamFormat(BaseModel):
    """One retrievable encoding of a video, as listed by `yt-dlp -j`."""

    model_config = ConfigDict(extra="ignore")

    format_id: str
    vcodec: Optional[str] = None
    acodec: Optional[str] = None
    ext: Optional[str] = None
    container: Optional[str] = None
    height: Optional[int] = None
    tbr: Optional[float] = None
    abr: Optional[float] = None
    fps: Optional[float] = None
    url: Optional[str] = None

    @field_validator("format_id", mode="before")
    @classmethod
    def _coerce_format_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("height", mode="before")
    @classmethod
    def _coerce_height(cls, v: Any) -> Optional[int]:
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @property
    def has_video(self) -> bool:
        return self.vcodec != "none"

    @property
    def has_audio(self) -> bool:
        return self.acodec != "none"

    @property
    def is_combined(self) -> bool:
        return self.has_video and self.has_audio


class VideoMetadata(BaseModel):
    """Raw metadata from `yt-dlp -j`, only the keys the service reads."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[Union[float, str]] = None
    uploader: Optional[str] = None
    uploader_id: Optional[str] = None
    channel: Optional[str] = None
    channel_id: Optional[str] = None
    view_count: Optional[int] = None
    upload_date: Optional[str] = None
    availability: Optional[str] = None
    is_live: Optional[bool] = None
    was_live: Optional[bool] = None
    thumbnail: Optional[str] = None
    thumbnails: List[Dict[str, Any]] = Field(default_factory=list)
    height: Optional[int] = None
    ext: Optional[str] = None
    format_id: Optional[str] = None
    vcodec: Optional[str] = None
    acodec: Optional[str] = None
    container: Optional[str] = None
    formats: List[StreamFormat] = Field(default_factory=list)

    @field_validator("formats", mode="before")
    @classmethod
    def _drop_unidentified_formats(cls, v: Any) -> Any:
        if not v:
            return []
        return [f for f in v if isinstance(f, dict) and f.get("format_id") is not None]


# ============================================================================
# NORMALIZED VIDEO INFO
# ============================================================================


class VideoAuthor(CamelModel):
    name: str
    channel_id: str = ""


class VideoInfo(CamelModel):
    """Normalized, header-safe video information"""

    id: str
    title: str
    description: str
    duration: int
    duration_formatted: str
    thumbnail: str = ""
    author: VideoAuthor
    view_count: int = 0
    upload_date: str
    quality: str
    format: str
    file_size: Optional[int] = None
    is_live: bool = False
    was_live: bool = False


class DownloadResult(BaseModel):
    """Downloaded payload plus everything the controller needs for headers"""

    success: bool = True
    video_info: VideoInfo
    payload: bytes = Field(repr=False)
    content_type: str
    filename: str


# ============================================================================
# API SCHEMAS
# ============================================================================


class DownloadRequest(BaseModel):
    """Request schema for /youtube/download and /youtube/info"""

    url: str = Field(..., description="YouTube video URL")
    only_strategy: Optional[int] = Field(
        None,
        ge=1,
        description="Run only this retrieval strategy (1-based). Use GET /youtube/strategies to list them.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"url": "https://youtu.be/iSunMBID7jw?si=Es6S3GiNVFC5Igbc"}
        }
    )

    @field_validator("url")
    @classmethod
    def _must_be_youtube(cls, v: str) -> str:
        v = v.strip()
        if not YOUTUBE_REQUEST_URL_RE.match(v):
            raise ValueError("The URL must be a valid YouTube link")
        return v


class ErrorResponse(CamelModel):
    status_code: int
    message: str
    error: str


class HealthResponse(CamelModel):
    """Response schema for /youtube/health"""

    status: str
    service: str
    version: str
    timestamp: str
    backend: str = "yt-dlp"
    yt_dlp_installed: bool
    yt_dlp_version: Optional[str] = None
    temp_dir_exists: bool = False
    uptime_seconds: float = 0.0
    error: Optional[str] = None


class DiagnosticChecks(CamelModel):
    yt_dlp_installed: bool
    temp_dir_exists: bool
    youtube_connectivity: bool
    version: Optional[str] = None


class DiagnosticDetails(CamelModel):
    temp_dir_path: Optional[str] = None
    connectivity_response_time: Optional[float] = None
    disk_usage_percent: Optional[float] = None
    errors: List[str] = Field(default_factory=list)


class DiagnosticResponse(CamelModel):
    """Response schema for /youtube/diagnostics"""

    overall: str
    checks: DiagnosticChecks
    details: DiagnosticDetails


class StrategyDescriptor(CamelModel):
    num: int
    name: str
    kind: str
