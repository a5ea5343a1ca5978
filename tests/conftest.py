"""
Shared fixtures and fakes for the download service tests.

Nothing here touches the network: yt-dlp is replaced by FakeExecutor, the
headless browser by FakeBrowser, and every delay by a recording no-op.
"""

import json
import pathlib
import random
import sys
from typing import Callable, List, Optional

import pytest

# ─── Path setup (must happen before any package import) ───────────────────────

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

from ytservice.errors import RetrievalFailed  # noqa: E402
from ytservice.storage import StorageManager  # noqa: E402

# ─── Constants ───────────────────────────────────────────────────────────────

TEST_VIDEO_ID = "dQw4w9WgXcQ"
TEST_VIDEO_URL = f"https://www.youtube.com/watch?v={TEST_VIDEO_ID}"


# ─── Fakes ───────────────────────────────────────────────────────────────────

class RecordingSleep:
    """Zero-delay stand-in for asyncio.sleep that remembers every delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeExecutor:
    """
    Scripted yt-dlp. `handler(command, working_dir)` returns stdout or raises;
    every command is recorded.
    """

    def __init__(self, handler: Optional[Callable[[str, str], str]] = None, installed: bool = True):
        self.handler = handler or (lambda command, cwd: "")
        self.commands: List[str] = []
        self.installed = installed

    async def execute(self, command: str, working_dir: str) -> str:
        self.commands.append(command)
        return self.handler(command, working_dir)

    def is_installed(self) -> bool:
        return self.installed

    async def version(self) -> str:
        if not self.installed:
            raise RetrievalFailed("yt-dlp not found")
        return "2024.08.06"

    @property
    def info_commands(self) -> List[str]:
        return [c for c in self.commands if " -j " in c]

    @property
    def download_commands(self) -> List[str]:
        return [c for c in self.commands if " -f " in c]


class FakeBrowser:
    """Stealth browser double that writes a cookie file or fails on demand."""

    def __init__(self, fail_with: Optional[Exception] = None, available: bool = True):
        self.fail_with = fail_with
        self.available = available
        self.harvested_paths: List[pathlib.Path] = []
        self.closed = False

    async def harvest_cookies(self, video_url, cookie_path, user_agent=None) -> int:
        self.harvested_paths.append(cookie_path)
        if self.fail_with:
            raise self.fail_with
        cookie_path.write_text("# Netscape HTTP Cookie File\n.youtube.com\tTRUE\t/\tTRUE\t0\tVISITOR_INFO1_LIVE\tabc\n")
        return 1

    async def close(self) -> None:
        self.closed = True


def make_info_json(**overrides) -> str:
    """A trimmed `yt-dlp -j` document."""
    info = {
        "id": TEST_VIDEO_ID,
        "title": "Never Gonna Give You Up",
        "description": "The official video",
        "duration": 213,
        "uploader": "Rick Astley",
        "channel_id": "UCuAXFkgsw1L7xaCfnd5JJOw",
        "view_count": 1_500_000_000,
        "upload_date": "20091025",
        "availability": "public",
        "is_live": False,
        "was_live": False,
        "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
        "height": 720,
        "ext": "mp4",
        "format_id": "22",
        "formats": [
            {"format_id": "18", "vcodec": "avc1", "acodec": "mp4a", "ext": "mp4", "height": 360, "tbr": 500},
            {"format_id": "22", "vcodec": "avc1", "acodec": "mp4a", "ext": "mp4", "height": 720, "tbr": 1500},
            {"format_id": "140", "vcodec": "none", "acodec": "mp4a", "ext": "m4a", "abr": 128},
        ],
    }
    info.update(overrides)
    return json.dumps(info)


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def scratch_storage(tmp_path):
    """StorageManager rooted in a per-test temporary directory."""
    return StorageManager(scratch_dir=tmp_path / "scratch", file_ttl=3600, cleanup_interval=60)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def rng():
    return random.Random(1234)
