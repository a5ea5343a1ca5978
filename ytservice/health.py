"""
Service health: yt-dlp installation, version, scratch directory and YouTube connectivity
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

from .errors import DownloadServiceError
from .models import DiagnosticChecks, DiagnosticDetails, DiagnosticResponse, HealthResponse
from .storage import StorageManager
from .ytdlp import YtDlpExecutor, build_info_command

logger = logging.getLogger(__name__)

SERVICE_NAME = "YouTube Downloader API"
# Long-lived public video used for connectivity probes
CONNECTIVITY_TEST_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class HealthService:
    def __init__(self, executor: YtDlpExecutor, storage: StorageManager, version: str, started_at: Optional[float] = None):
        self.executor = executor
        self.storage = storage
        self.version = version
        self.started_at = started_at or time.time()

    async def health_check(self) -> HealthResponse:
        base = dict(
            service=SERVICE_NAME,
            version=self.version,
            timestamp=_now_iso(),
            uptime_seconds=time.time() - self.started_at,
            temp_dir_exists=self.storage.scratch_dir.is_dir(),
        )

        if not self.executor.is_installed():
            return HealthResponse(status="ERROR", yt_dlp_installed=False, error="yt-dlp is not installed", **base)

        try:
            tool_version = await self.executor.version()
        except DownloadServiceError as e:
            logger.error(f"Health check failed: {e}")
            return HealthResponse(status="ERROR", yt_dlp_installed=True, error=e.message, **base)

        return HealthResponse(status="OK", yt_dlp_installed=True, yt_dlp_version=tool_version, **base)

    async def check_connectivity(self) -> Tuple[bool, Optional[float], Optional[str]]:
        """Fetch metadata for a known public video; returns (ok, response_time_ms, error)."""
        start = time.monotonic()
        try:
            await self.executor.execute(build_info_command(CONNECTIVITY_TEST_URL), str(self.storage.scratch_dir))
        except DownloadServiceError as e:
            logger.error(f"YouTube connectivity check failed: {e}")
            return False, None, e.message
        return True, (time.monotonic() - start) * 1000, None

    async def full_diagnostic(self) -> DiagnosticResponse:
        errors = []
        healthy_checks = 0
        total_checks = 3

        installed = self.executor.is_installed()
        if installed:
            healthy_checks += 1
        else:
            errors.append("yt-dlp is not installed")

        temp_dir_exists = False
        try:
            self.storage.ensure_scratch_dir()
            temp_dir_exists = True
            healthy_checks += 1
        except OSError as e:
            errors.append(f"Scratch directory error: {e}")

        connected, response_time, conn_error = await self.check_connectivity()
        if connected:
            healthy_checks += 1
        else:
            errors.append(f"Connectivity error: {conn_error}")

        tool_version = None
        if installed:
            try:
                tool_version = await self.executor.version()
            except DownloadServiceError as e:
                errors.append(f"Could not read yt-dlp version: {e.message}")

        if healthy_checks == total_checks:
            overall = "HEALTHY"
        elif healthy_checks >= 1:
            overall = "DEGRADED"
        else:
            overall = "UNHEALTHY"

        return DiagnosticResponse(
            overall=overall,
            checks=DiagnosticChecks(
                yt_dlp_installed=installed,
                temp_dir_exists=temp_dir_exists,
                youtube_connectivity=connected,
                version=tool_version,
            ),
            details=DiagnosticDetails(
                temp_dir_path=str(self.storage.scratch_dir),
                connectivity_response_time=response_time,
                disk_usage_percent=self.storage.get_disk_usage(),
                errors=errors,
            ),
        )
