"""
YouTube URL validation and video id extraction
"""

import re

from .errors import InvalidInput, InvalidUrl

# Tried in order; the first capture group of the first match is the video id
VIDEO_ID_PATTERNS = [
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([^&\n?#]+)"),
    re.compile(r"youtube\.com/watch\?.*v=([^&\n?#]+)"),
]

SAFE_URL_RE = re.compile(r"https?://[a-zA-Z0-9\-._~:/?#\[\]@!$&'()*+,;=%]+")

YOUTUBE_HOST_RE = re.compile(r"^https?://(www\.|m\.)?(youtube\.com|youtu\.be)(/|$)")

# Video ids become file name prefixes in the scratch directory
STAGING_ID_RE = re.compile(r"[0-9A-Za-z_-]+")


def extract_video_id(url: str) -> str:
    """Return the video id carried by a watch, short or embed URL."""
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url or "")
        if match and match.group(1):
            return match.group(1)

    raise InvalidUrl("Could not extract a video id from the provided URL")


def sanitize_url(url: str) -> str:
    """Reject URLs with characters outside the RFC 3986 safe set."""
    if not url or not SAFE_URL_RE.fullmatch(url):
        raise InvalidInput("URL contains invalid characters")
    return url


def staging_id(video_id: str) -> str:
    """Return the id unchanged if it is safe to use as a scratch file name prefix."""
    if not video_id or not STAGING_ID_RE.fullmatch(video_id):
        raise InvalidUrl("Video id contains characters that are not allowed")
    return video_id


def is_youtube_url(url: str) -> bool:
    return bool(url) and bool(YOUTUBE_HOST_RE.match(url))
