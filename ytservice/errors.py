"""
Exception taxonomy for the download service.

Validation errors (InvalidInput, VideoUnavailable) are terminal and map to 400.
Retrieval and staging errors are recoverable: the fallback chain and the
orchestrator retry loop absorb them and only surface DownloadExhausted (500).
"""

from typing import Optional


# Substrings yt-dlp / YouTube emit when a request is refused as automated traffic
BLOCKING_SIGNATURES = (
    "sign in to confirm",
    "not a bot",
    "confirm you",
    "429",
    "too many requests",
    "rate limit",
    "blocked",
    "captcha",
)


class DownloadServiceError(Exception):
    """Base class for every error the service raises on purpose."""

    status_code: int = 500
    error_name: str = "Internal Server Error"
    is_transient: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(DownloadServiceError):
    """Malformed or unsafe URL."""

    status_code = 400
    error_name = "Bad Request"
    is_transient = False


class InvalidUrl(InvalidInput):
    """URL that is safe but does not carry a recognizable video id."""


class VideoUnavailable(DownloadServiceError):
    """Video exists but is not public (private, unlisted, needs auth...)."""

    status_code = 400
    error_name = "Bad Request"
    is_transient = False

    def __init__(self, availability: str):
        super().__init__(f"Video not available: {availability}")
        self.availability = availability


class RetrievalFailed(DownloadServiceError):
    """yt-dlp or browser retrieval failed. `blocked` marks anti-bot refusals."""

    def __init__(self, message: str, blocked: bool = False):
        super().__init__(message)
        self.blocked = blocked


class StrategySkipped(RetrievalFailed):
    """A strategy could not run at all (missing prerequisite)."""


class StagingFailed(DownloadServiceError):
    """Downloaded artifact missing or empty on scratch storage."""


class DownloadExhausted(DownloadServiceError):
    """Every retry attempt failed."""

    def __init__(self, attempts: int, last_message: Optional[str]):
        super().__init__(
            f"Failed to download the video after {attempts} attempts: "
            f"{last_message or 'unknown error'}"
        )
        self.attempts = attempts
        self.last_message = last_message


def is_blocking_error(error_msg: str) -> bool:
    """True if the error text looks like YouTube bot detection or rate limiting."""
    error_lower = (error_msg or "").lower()
    return any(sig in error_lower for sig in BLOCKING_SIGNATURES)


def is_transient(exc: BaseException) -> bool:
    """Whether another attempt may succeed; unexpected exceptions count as transient."""
    return exc.is_transient if isinstance(exc, DownloadServiceError) else True


def is_validation_error(exc: BaseException) -> bool:
    """Validation errors are never retried."""
    return not is_transient(exc)
