"""
YouTube download orchestrator with bounded retries.

Each attempt: resolve id → metadata via the fallback chain → availability check
→ format selection → yt-dlp download into scratch → read staged file (deleted
unconditionally) → normalized VideoInfo → DownloadResult.

Validation errors (bad URL, non-public video) stop immediately. Anything else
waits attempt × RETRY_DELAY_SECONDS and tries again, up to MAX_RETRIES; then
DownloadExhausted carries the last error message.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

from .errors import DownloadExhausted, StagingFailed, is_transient
from .format_selector import content_type_for, select_best_format
from .info import MetadataService, validate_availability
from .models import DownloadResult, VideoInfo
from .normalizer import build_download_filename, normalize_video_info
from .storage import StorageManager
from .strategies import RetrievalChain, RetrievalSession
from .url_resolver import extract_video_id, sanitize_url, staging_id
from .ytdlp import YtDlpExecutor, build_download_command

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0

Sleep = Callable[[float], Awaitable[Any]]


class YouTubeDownloadService:
    """Owns the retrieval session and runs the download retry loop."""

    def __init__(
        self,
        storage: StorageManager,
        executor: Optional[YtDlpExecutor] = None,
        session: Optional[RetrievalSession] = None,
        chain: Optional[RetrievalChain] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ):
        self.storage = storage
        self.executor = executor or YtDlpExecutor()
        self.session = session or RetrievalSession(self.executor, storage, sleep=sleep, rng=rng)
        self.chain = chain or RetrievalChain(self.session)
        self.metadata = MetadataService(self.chain)
        self.sleep = sleep
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def _attempt(self, url: str, only_strategy: Optional[int]) -> DownloadResult:
        video_id = staging_id(extract_video_id(url))
        logger.info(f"📺 Video ID: {video_id}")

        meta, outcome = await self.metadata.fetch(url, only_strategy=only_strategy)
        validate_availability(meta)

        format_selector = select_best_format(meta.formats)
        logger.info(f"🎯 Format selector: {format_selector}")

        output_template = f"{video_id}_%(format_id)s.%(ext)s"
        command = build_download_command(
            sanitize_url(url),
            format_selector,
            output_template,
            outcome.download_options,
        )

        logger.info("🔽 Starting download...")
        await self.executor.execute(command, str(self.storage.scratch_dir))

        # yt-dlp fills %(format_id)s with the first alternative it could satisfy
        staged = self.storage.locate(video_id, format_selector.split("/")[0])
        payload = self.storage.consume(staged)
        if not payload:
            raise StagingFailed("Download buffer is empty")

        info = normalize_video_info(meta, video_id, len(payload))
        result = DownloadResult(
            success=True,
            video_info=info,
            payload=payload,
            content_type=content_type_for(info.format),
            filename=build_download_filename(info),
        )

        logger.info(
            f"✅ Download succeeded: {result.filename} "
            f"({len(payload) / 1024 / 1024:.2f} MB, {info.quality}, {info.format})"
        )
        return result

    async def download(self, url: str, only_strategy: Optional[int] = None) -> DownloadResult:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 1):
            logger.info(f"🔄 Attempt {attempt}/{self.max_retries}")
            try:
                return await self._attempt(url, only_strategy)
            except Exception as e:
                if not is_transient(e):
                    logger.error(f"❌ Validation error, not retrying: {e}")
                    raise
                last_error = e
                logger.error(f"❌ Attempt {attempt} failed: {e}")

            if attempt < self.max_retries:
                delay = self.retry_delay * attempt
                logger.info(f"⏳ Waiting {delay:g}s before the next attempt...")
                await self.sleep(delay)

        raise DownloadExhausted(self.max_retries, str(last_error) if last_error else None)

    async def get_info(self, url: str, only_strategy: Optional[int] = None) -> VideoInfo:
        """Normalized video information without downloading."""
        video_id = extract_video_id(url)
        meta, _ = await self.metadata.fetch(url, only_strategy=only_strategy)
        return normalize_video_info(meta, video_id, None)

    def describe_strategies(self):
        return self.chain.describe()

    async def close(self) -> None:
        await self.session.close()
