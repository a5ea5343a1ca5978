"""
Video metadata fetch, parsing and availability check
"""

import json
import logging
from typing import Optional, Tuple

from pydantic import ValidationError

from .errors import RetrievalFailed, VideoUnavailable
from .models import StreamFormat, VideoMetadata
from .strategies import FetchOutcome, RetrievalChain
from .url_resolver import sanitize_url

logger = logging.getLogger(__name__)


def parse_metadata(stdout: str) -> VideoMetadata:
    """Parse the first JSON document of `yt-dlp -j` output."""
    line = next((l.strip() for l in (stdout or "").splitlines() if l.strip()), "")
    if not line:
        raise RetrievalFailed("Could not retrieve the video information")

    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        raise RetrievalFailed(f"Could not parse the video information: {e.msg}") from None
    if not isinstance(raw, dict):
        raise RetrievalFailed("Could not parse the video information")

    try:
        meta = VideoMetadata.model_validate(raw)
    except ValidationError as e:
        raise RetrievalFailed(f"Unexpected video information layout ({e.error_count()} errors)") from None

    # yt-dlp reports the format it would pick at top level; make sure the selector can see it
    if meta.format_id and not any(f.format_id == meta.format_id for f in meta.formats):
        meta.formats.insert(0, StreamFormat(
            format_id=meta.format_id,
            vcodec=meta.vcodec,
            acodec=meta.acodec,
            ext=meta.ext,
            height=meta.height,
            container=meta.container,
        ))
    return meta


def validate_availability(meta: VideoMetadata) -> None:
    if meta.availability and meta.availability != "public":
        raise VideoUnavailable(meta.availability)


class MetadataService:
    """Fetches metadata through the retrieval fallback chain."""

    def __init__(self, chain: RetrievalChain):
        self.chain = chain

    async def fetch(self, url: str, only_strategy: Optional[int] = None) -> Tuple[VideoMetadata, FetchOutcome]:
        logger.info("🔍 Fetching video information...")
        safe_url = sanitize_url(url)
        outcome = await self.chain.fetch_metadata(safe_url, only_strategy=only_strategy)
        meta = parse_metadata(outcome.stdout)
        logger.info(f"✅ Video information retrieved via {outcome.strategy}: {meta.title!r}")
        return meta, outcome
