"""
Scratch directory staging with automatic cleanup

Environment variables:
  SCRATCH_DIR               — scratch directory (default: ./temp)
  FILE_TTL_SECONDS          — age after which leftovers are removed (default: 3600)
  CLEANUP_INTERVAL_SECONDS  — cleanup scheduler interval (default: 600)
  YTDLP_COOKIES_B64         — base64 Netscape cookies.txt written to the saved cookie file
"""

import asyncio
import base64
import binascii
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .errors import StagingFailed

logger = logging.getLogger(__name__)

SCRATCH_DIR = Path(os.getenv("SCRATCH_DIR", os.path.join(os.getcwd(), "temp")))
FILE_TTL_SECONDS = int(os.getenv("FILE_TTL_SECONDS", "3600"))
CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "600"))

VIDEO_EXTENSIONS = (".mp4", ".webm", ".mkv")
# Per-stream files yt-dlp writes before merging, e.g. `<name>.f137.mp4`
FRAGMENT_RE = re.compile(r"\.f[\w-]+\.\w+$")
SAVED_COOKIE_FILENAME = "cookies.txt"


@dataclass
class StagedFile:
    """A downloaded artifact waiting to be read once and deleted"""

    path: Path
    size: int


class StorageManager:
    """Manages the scratch directory shared by all requests"""

    def __init__(
        self,
        scratch_dir: Path = SCRATCH_DIR,
        file_ttl: int = FILE_TTL_SECONDS,
        cleanup_interval: int = CLEANUP_INTERVAL_SECONDS,
    ):
        self.scratch_dir = Path(scratch_dir)
        self.file_ttl = file_ttl
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task] = None
        self.ensure_scratch_dir()

    def ensure_scratch_dir(self) -> None:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # DOWNLOADED FILES
    # =========================================================================

    def find_downloaded_files(self, video_id: str) -> List[str]:
        """Names of finished scratch files produced for this video id (merge fragments excluded)."""
        if not self.scratch_dir.exists():
            return []
        prefix = f"{video_id}_"
        return sorted(
            p.name for p in self.scratch_dir.iterdir()
            if p.is_file()
            and p.name.startswith(prefix)
            and p.name.endswith(VIDEO_EXTENSIONS)
            and not FRAGMENT_RE.search(p.name)
        )

    def locate(self, video_id: str, format_id: Optional[str] = None) -> StagedFile:
        """
        Find the artifact of the download that just ran: the file named after the
        requested format if present, otherwise the most recently written one.
        """
        files = self.find_downloaded_files(video_id)
        if not files:
            raise StagingFailed("Downloaded file not found")

        exact = [n for n in files if format_id and n.startswith(f"{video_id}_{format_id}.")]
        if exact:
            path = self.scratch_dir / exact[0]
        else:
            path = max((self.scratch_dir / n for n in files), key=lambda p: p.stat().st_mtime)

        size = path.stat().st_size if path.exists() else 0
        return StagedFile(path=path, size=size)

    def consume(self, staged: StagedFile) -> bytes:
        """Validate and read a staged file, then delete it whatever happened."""
        try:
            if not staged.path.exists():
                raise StagingFailed("Downloaded file does not exist")
            if staged.path.stat().st_size == 0:
                raise StagingFailed("Downloaded file is empty")
            return staged.path.read_bytes()
        finally:
            self.delete_file(staged.path)

    def delete_file(self, path: Path) -> None:
        try:
            path.unlink()
            logger.info(f"🗑️ Deleted scratch file: {path.name}")
        except FileNotFoundError:
            pass

    # =========================================================================
    # COOKIE FILES
    # =========================================================================

    @property
    def cookie_file_path(self) -> Path:
        """Long-lived cookie file used by the saved-cookies strategy."""
        return self.scratch_dir / SAVED_COOKIE_FILENAME

    def new_harvest_cookie_path(self) -> Path:
        """Unique path for cookies harvested by one stealth browser run."""
        return self.scratch_dir / f"harvested_cookies_{uuid.uuid4().hex[:12]}.txt"

    def seed_cookie_file(self, cookies_b64: Optional[str] = None) -> bool:
        """Write YTDLP_COOKIES_B64 into the saved cookie file."""
        cookies_b64 = (cookies_b64 if cookies_b64 is not None else os.getenv("YTDLP_COOKIES_B64", "")).strip()
        if not cookies_b64:
            logger.info("ℹ️ YTDLP_COOKIES_B64 not set — saved-cookie strategy depends on an existing cookie file")
            return False
        try:
            self.cookie_file_path.write_bytes(base64.b64decode(cookies_b64, validate=True))
        except (binascii.Error, ValueError) as e:
            logger.error(f"❌ Failed to decode YTDLP_COOKIES_B64: {e}")
            return False
        logger.info("✅ YouTube cookies written to the saved cookie file")
        return True

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    def cleanup_old_files(self) -> int:
        """Remove scratch files older than the TTL (the saved cookie file is kept)."""
        if not self.scratch_dir.exists():
            return 0

        removed_count = 0
        removed_bytes = 0
        now = time.time()

        for file_path in self.scratch_dir.iterdir():
            if not file_path.is_file() or file_path.name == SAVED_COOKIE_FILENAME:
                continue
            try:
                stat = file_path.stat()
                if now - stat.st_mtime > self.file_ttl:
                    file_path.unlink()
                    removed_count += 1
                    removed_bytes += stat.st_size
                    logger.info(f"🗑️ Removed stale scratch file: {file_path.name}")
            except OSError as e:
                logger.error(f"Failed to clean up {file_path.name}: {e}")

        if removed_count > 0:
            logger.info(f"Cleanup complete: {removed_count} files, {removed_bytes / 1024 / 1024:.2f} MB freed")
        return removed_count

    def get_disk_usage(self) -> float:
        """Disk usage percentage of the scratch volume"""
        try:
            stat = shutil.disk_usage(self.scratch_dir)
            return (stat.used / stat.total) * 100
        except OSError as e:
            logger.error(f"Failed to get disk usage: {e}")
            return 0.0

    async def start_cleanup_scheduler(self) -> None:
        if self._cleanup_task is not None:
            logger.warning("Cleanup scheduler already running")
            return

        async def cleanup_loop():
            logger.info(f"Starting cleanup scheduler (interval: {self.cleanup_interval}s)")
            while True:
                try:
                    await asyncio.sleep(self.cleanup_interval)
                    self.cleanup_old_files()
                except asyncio.CancelledError:
                    logger.info("Cleanup scheduler cancelled")
                    break
                except Exception as e:
                    logger.error(f"Cleanup scheduler error: {e}")

        self._cleanup_task = asyncio.create_task(cleanup_loop())

    async def stop_cleanup_scheduler(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Cleanup scheduler stopped")
