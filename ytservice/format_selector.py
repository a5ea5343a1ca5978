"""
Best-format selection for yt-dlp downloads.

Tiers, highest first:
  1. combined (video+audio) mp4, height >= 720
  2. combined mp4, height < 720
  3. combined, any container
  4. mp4 video paired with the best standalone audio (yt-dlp merges them)
  5. generic "best" selector

Inside a tier formats rank by height, then bitrate, then fps. The format id
closes the ordering so the result never depends on input order.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from .models import StreamFormat

logger = logging.getLogger(__name__)

PREFERRED_CONTAINER = "mp4"
PREFERRED_AUDIO_EXT = "m4a"
HD_MIN_HEIGHT = 720

FALLBACK_SELECTOR = "best[ext=mp4]/best"

CONTENT_TYPES = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "flv": "video/x-flv",
}


def _in_preferred_container(f: StreamFormat) -> bool:
    return f.ext == PREFERRED_CONTAINER or f.container == PREFERRED_CONTAINER


def _video_rank(f: StreamFormat) -> Tuple[int, float, float, str]:
    return (f.height or 0, f.tbr or 0.0, f.fps or 0.0, f.format_id)


def _audio_rank(f: StreamFormat) -> Tuple[int, float, float, str]:
    return (
        1 if f.ext == PREFERRED_AUDIO_EXT else 0,
        f.abr or 0.0,
        f.tbr or 0.0,
        f.format_id,
    )


def _best(candidates: Iterable[StreamFormat]) -> Optional[StreamFormat]:
    candidates = list(candidates)
    if not candidates:
        return None
    return max(candidates, key=_video_rank)


def best_audio_track(formats: List[StreamFormat]) -> Optional[StreamFormat]:
    """Best audio-only stream (m4a first, then audio bitrate)."""
    audio_only = [f for f in formats if f.has_audio and not f.has_video]
    if not audio_only:
        return None
    return max(audio_only, key=_audio_rank)


def select_best_format(formats: List[StreamFormat]) -> str:
    """Return the yt-dlp format selector for the best available stream."""
    if not formats:
        return FALLBACK_SELECTOR

    logger.info(f"📊 Analyzing {len(formats)} available formats")

    combined = [f for f in formats if f.is_combined]

    hd = _best(
        f for f in combined
        if _in_preferred_container(f) and f.height is not None and f.height >= HD_MIN_HEIGHT
    )
    if hd:
        logger.info(f"✅ HD format selected: {hd.format_id} ({hd.height}p, with audio)")
        return hd.format_id

    sd = _best(
        f for f in combined
        if _in_preferred_container(f) and f.height is not None and f.height < HD_MIN_HEIGHT
    )
    if sd:
        logger.info(f"✅ SD format selected: {sd.format_id} ({sd.height}p, with audio)")
        return sd.format_id

    any_combined = _best(combined)
    if any_combined:
        logger.info(
            f"✅ Combined format selected: {any_combined.format_id} "
            f"({any_combined.height}p, {any_combined.ext})"
        )
        return any_combined.format_id

    video = _best(f for f in formats if f.has_video and _in_preferred_container(f))
    if video:
        audio = best_audio_track(formats)
        audio_part = audio.format_id if audio else f"bestaudio[ext={PREFERRED_AUDIO_EXT}]"
        logger.info(
            f"⚠️ Adaptive format selected: {video.format_id} ({video.height}p) + "
            f"{audio_part} (merged after download)"
        )
        return f"{video.format_id}+{audio_part}/best[ext={PREFERRED_CONTAINER}]"

    logger.info("⚠️ Using generic best-available selector")
    return FALLBACK_SELECTOR


def requires_merge(selector: str) -> bool:
    """True if the selector pairs separate video and audio streams."""
    return "+" in selector


def content_type_for(ext: Optional[str]) -> str:
    return CONTENT_TYPES.get((ext or "").lower(), "video/mp4")
