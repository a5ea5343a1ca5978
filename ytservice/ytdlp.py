"""
yt-dlp command construction and subprocess execution.

Every value interpolated into a command string goes through escape_shell_arg();
flags are constants. The executor runs the command through the host shell with
a wall-clock timeout and a bounded output buffer.

Environment variables:
  YTDLP_BINARY            — yt-dlp executable (default: yt-dlp)
  YTDLP_TIMEOUT_SECONDS   — hard timeout per invocation (default: 300)
  YTDLP_MAX_BUFFER_BYTES  — max bytes accepted on stdout / stderr (default: 10 MB)
"""

import asyncio
import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from typing import List, Optional

from .errors import RetrievalFailed
from .format_selector import requires_merge

logger = logging.getLogger(__name__)

YTDLP_BINARY = os.getenv("YTDLP_BINARY", "yt-dlp")
YTDLP_TIMEOUT_SECONDS = float(os.getenv("YTDLP_TIMEOUT_SECONDS", "300"))
YTDLP_MAX_BUFFER_BYTES = int(os.getenv("YTDLP_MAX_BUFFER_BYTES", str(10 * 1024 * 1024)))

_READ_CHUNK = 64 * 1024


def escape_shell_arg(arg: str) -> str:
    """Quote one argument for the host shell."""
    if os.name == "nt":
        return '"' + str(arg).replace('"', '\\"') + '"'
    return shlex.quote(str(arg))


@dataclass
class RetrievalOptions:
    """Anti-blocking options shared by info and download commands."""

    cookies_from_browser: Optional[str] = None
    cookie_file: Optional[str] = None
    user_agent: Optional[str] = None
    player_client: Optional[str] = None
    sleep_requests: Optional[float] = None
    extractor_retries: Optional[int] = None
    proxy: Optional[str] = None

    def to_args(self) -> List[str]:
        args: List[str] = []
        if self.cookies_from_browser:
            args += ["--cookies-from-browser", escape_shell_arg(self.cookies_from_browser)]
        if self.cookie_file:
            args += ["--cookies", escape_shell_arg(self.cookie_file)]
        if self.user_agent:
            args += ["--user-agent", escape_shell_arg(self.user_agent)]
        if self.player_client:
            args += ["--extractor-args", escape_shell_arg(f"youtube:player_client={self.player_client}")]
        if self.sleep_requests:
            args += ["--sleep-requests", escape_shell_arg(f"{self.sleep_requests:g}")]
        if self.extractor_retries:
            args += ["--extractor-retries", escape_shell_arg(str(self.extractor_retries))]
        if self.proxy:
            args += ["--proxy", escape_shell_arg(self.proxy)]
        return args


def _join(parts: List[str]) -> str:
    return " ".join(parts)


def build_info_command(url: str, options: Optional[RetrievalOptions] = None) -> str:
    """`yt-dlp -j` metadata command (one JSON document per line on stdout)."""
    parts = [
        escape_shell_arg(YTDLP_BINARY),
        "-j",
        "--no-check-certificate",
        "--no-warnings",
        "--no-playlist",
    ]
    if options:
        parts += options.to_args()
    parts.append(escape_shell_arg(url))
    return _join(parts)


def build_download_command(
    url: str,
    format_selector: str,
    output_template: str,
    options: Optional[RetrievalOptions] = None,
) -> str:
    parts = [
        escape_shell_arg(YTDLP_BINARY),
        "-f", escape_shell_arg(format_selector),
        "-o", escape_shell_arg(output_template),
        "--no-check-certificate",
        "--no-warnings",
        "--prefer-free-formats",
        "--no-playlist",
    ]
    if requires_merge(format_selector):
        parts += ["--merge-output-format", "mp4"]
    if options:
        parts += options.to_args()
    parts.append(escape_shell_arg(url))
    return _join(parts)


def build_version_command(binary: str = YTDLP_BINARY) -> str:
    return f"{escape_shell_arg(binary)} --version"


class YtDlpExecutor:
    """Runs yt-dlp command strings through the host shell."""

    def __init__(
        self,
        timeout_seconds: float = YTDLP_TIMEOUT_SECONDS,
        max_buffer_bytes: int = YTDLP_MAX_BUFFER_BYTES,
        binary: str = YTDLP_BINARY,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_buffer_bytes = max_buffer_bytes
        self.binary = binary

    async def _read_bounded(self, stream: Optional[asyncio.StreamReader], name: str) -> bytes:
        if stream is None:
            return b""
        chunks: List[bytes] = []
        total = 0
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_buffer_bytes:
                raise RetrievalFailed(
                    f"yt-dlp {name} exceeded the {self.max_buffer_bytes} byte buffer limit"
                )
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _redact(text: str, working_dir: str) -> str:
        """Drop local paths from tool output before it reaches an error message."""
        if working_dir:
            text = text.replace(os.path.abspath(working_dir), "<scratch>")
            text = text.replace(working_dir, "<scratch>")
        return text

    async def execute(self, command: str, working_dir: str) -> str:
        """Run a command and return its stdout; raise RetrievalFailed on any failure."""
        logger.info("🔧 Running yt-dlp")
        logger.debug(f"Command: {command}")

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=working_dir,
            )
        except OSError as e:
            raise RetrievalFailed(f"Could not start yt-dlp: {e.strerror or e}") from e

        tasks = [
            asyncio.ensure_future(self._read_bounded(proc.stdout, "stdout")),
            asyncio.ensure_future(self._read_bounded(proc.stderr, "stderr")),
            asyncio.ensure_future(proc.wait()),
        ]
        try:
            stdout, stderr, _ = await asyncio.wait_for(
                asyncio.gather(*tasks),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise RetrievalFailed(
                f"yt-dlp timed out after {self.timeout_seconds:g} seconds"
            ) from None
        finally:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            # A failed reader leaves its siblings running; reap them with the process
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await proc.wait()

        stderr_text = self._redact(stderr.decode("utf-8", errors="replace").strip(), working_dir)

        if proc.returncode != 0:
            detail = stderr_text.splitlines()[-1] if stderr_text else "no error output"
            logger.error(f"❌ yt-dlp exited with code {proc.returncode}: {detail[:300]}")
            raise RetrievalFailed(f"yt-dlp exited with code {proc.returncode}: {detail[:500]}")

        if stderr_text and "WARNING" not in stderr_text:
            logger.warning(f"⚠️ yt-dlp stderr: {stderr_text[:500]}")

        return stdout.decode("utf-8", errors="replace")

    def is_installed(self) -> bool:
        return shutil.which(self.binary) is not None

    async def version(self) -> str:
        stdout = await self.execute(build_version_command(self.binary), os.getcwd())
        return stdout.strip()
