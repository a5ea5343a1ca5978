"""
Mapping of raw yt-dlp metadata to the response-facing VideoInfo
"""

import re
from datetime import datetime, timezone
from typing import Optional, Union

from .models import VideoAuthor, VideoInfo, VideoMetadata

HEADER_MAX_LENGTH = 200
FILENAME_MAX_LENGTH = 100

ISO_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")
CLOCK_DURATION_RE = re.compile(r"^(?:(\d+):)?(\d+):(\d+)$")
DIGITS_RE = re.compile(r"^\d+$")
UPLOAD_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


# ============================================================================
# DURATION
# ============================================================================


def parse_duration(value: Union[int, float, str, None]) -> int:
    """Seconds from a number, `PT#H#M#S`, `H:MM:SS` / `MM:SS` or digits; 0 otherwise."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)

    text = value.strip()
    if not text:
        return 0

    iso = ISO_DURATION_RE.search(text)
    if iso and any(iso.groups()):
        hours, minutes, seconds = (int(g or 0) for g in iso.groups())
        return hours * 3600 + minutes * 60 + seconds

    clock = CLOCK_DURATION_RE.match(text)
    if clock:
        hours = int(clock.group(1) or 0)
        return hours * 3600 + int(clock.group(2)) * 60 + int(clock.group(3))

    if DIGITS_RE.match(text):
        return int(text)

    return 0


def format_duration(seconds: int) -> str:
    """`H:MM:SS` when there are hours, `M:SS` otherwise."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


# ============================================================================
# SANITIZATION
# ============================================================================


def sanitize_for_header(text: Optional[str]) -> str:
    """Make free text safe for an HTTP header value."""
    if not text:
        return ""
    text = re.sub(r"[\r\n\t]", " ", text)
    text = re.sub(r"[^\x20-\x7E]", "", text)
    text = text.replace('"', "'")
    return text.strip()[:HEADER_MAX_LENGTH]


def sanitize_filename(filename: str) -> str:
    """Restrict to word characters, spaces, hyphens and dots; spaces become `_`."""
    filename = re.sub(r"[^\w\s\-.]", "", filename or "", flags=re.ASCII)
    filename = re.sub(r"\s+", "_", filename)
    filename = re.sub(r"_{2,}", "_", filename)
    return filename[:FILENAME_MAX_LENGTH]


# ============================================================================
# DATES
# ============================================================================


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_upload_date(raw: Optional[str], now: Optional[datetime] = None) -> str:
    """`YYYYMMDD` to ISO-8601; the current time when absent or unparseable."""
    fallback = now or datetime.now(timezone.utc)
    if not raw:
        return _iso(fallback)

    dashed = UPLOAD_DATE_RE.sub(r"\1-\2-\3", raw.strip())
    try:
        parsed = datetime.strptime(dashed, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return _iso(fallback)
    return _iso(parsed)


# ============================================================================
# VIDEO INFO
# ============================================================================


def normalize_video_info(meta: VideoMetadata, video_id: str, file_size: Optional[int]) -> VideoInfo:
    duration = parse_duration(meta.duration)

    thumbnail = meta.thumbnail or ""
    if not thumbnail and meta.thumbnails:
        thumbnail = meta.thumbnails[0].get("url") or ""

    return VideoInfo(
        id=meta.id or video_id,
        title=sanitize_for_header(meta.title or "Untitled"),
        description=sanitize_for_header(meta.description or "No description"),
        duration=duration,
        duration_formatted=format_duration(duration),
        thumbnail=thumbnail,
        author=VideoAuthor(
            name=sanitize_for_header(meta.uploader or meta.channel or "Unknown"),
            channel_id=meta.channel_id or meta.uploader_id or "",
        ),
        view_count=meta.view_count or 0,
        upload_date=format_upload_date(meta.upload_date),
        quality=f"{meta.height}p" if meta.height else "best available",
        format=meta.ext or "mp4",
        file_size=file_size,
        is_live=bool(meta.is_live),
        was_live=bool(meta.was_live),
    )


def build_download_filename(info: VideoInfo) -> str:
    return sanitize_filename(f"{info.title}_{info.quality}.{info.format}")
