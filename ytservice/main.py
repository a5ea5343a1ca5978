"""
FastAPI YouTube download service
Downloads the best combined video+audio stream with yt-dlp and returns the raw bytes
"""

import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import List

import yt_dlp
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .downloader import YouTubeDownloadService
from .errors import DownloadServiceError, InvalidInput
from .health import HealthService
from .models import (
    DiagnosticResponse,
    DownloadRequest,
    ErrorResponse,
    HealthResponse,
    StrategyDescriptor,
    VideoInfo,
)
from .storage import StorageManager
from .url_resolver import is_youtube_url
from .ytdlp import YtDlpExecutor

# Logging configuration
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"
start_time = time.time()

storage = StorageManager()
executor = YtDlpExecutor()
download_service = YouTubeDownloadService(storage, executor=executor)
health_service = HealthService(executor, storage, VERSION, started_at=start_time)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup/shutdown tasks"""
    logger.info("🚀 Starting YouTube download service...")
    logger.info(f"Version: {VERSION}")
    logger.info(f"yt-dlp package version: {yt_dlp.version.__version__}")
    logger.info(f"Scratch directory: {storage.scratch_dir}")

    storage.seed_cookie_file()
    await storage.start_cleanup_scheduler()

    yield

    logger.info("Shutting down YouTube download service...")
    await storage.stop_cleanup_scheduler()
    await download_service.close()


app = FastAPI(
    title="YouTube Download Service",
    description="Downloads YouTube videos in the best available quality using yt-dlp",
    version=VERSION,
    lifespan=lifespan,
)

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Video-Info"],
)


def _error_response(status_code: int, message: str, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(status_code=status_code, message=message, error=error).model_dump(by_alias=True),
    )


# ============================================================================
# API ENDPOINTS
# ============================================================================


@app.post("/youtube/download", response_class=Response)
async def download_video(request: DownloadRequest) -> Response:
    """
    Download a YouTube video in the best available quality

    **Response:** raw video bytes with `Content-Disposition`, `Content-Type`,
    `Content-Length` and an `X-Video-Info` JSON header.
    """
    if not is_youtube_url(request.url):
        raise InvalidInput("The provided URL is not a valid YouTube URL")

    logger.info(f"📥 Download request: {request.url}")
    result = await download_service.download(request.url, only_strategy=request.only_strategy)
    info = result.video_info

    video_info_header = json.dumps({
        "title": info.title,
        "duration": info.duration_formatted,
        "quality": info.quality,
        "author": info.author.name,
        "viewCount": info.view_count,
        "fileSize": info.file_size,
    })

    return Response(
        content=result.payload,
        media_type=result.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Video-Info": video_info_header,
        },
    )


@app.post("/youtube/info", response_model=VideoInfo, response_model_by_alias=True)
async def get_video_info(request: DownloadRequest) -> VideoInfo:
    """Video information without downloading"""
    if not is_youtube_url(request.url):
        raise InvalidInput("The provided URL is not a valid YouTube URL")

    logger.info(f"ℹ️ Info request: {request.url}")
    return await download_service.get_info(request.url, only_strategy=request.only_strategy)


@app.get("/youtube/health", response_model=HealthResponse, response_model_by_alias=True)
async def health_check() -> HealthResponse:
    """Service status and yt-dlp installation / version"""
    return await health_service.health_check()


@app.get("/youtube/diagnostics", response_model=DiagnosticResponse, response_model_by_alias=True)
async def diagnostics() -> DiagnosticResponse:
    """Installation, scratch directory and YouTube connectivity checks"""
    return await health_service.full_diagnostic()


@app.get("/youtube/strategies", response_model=List[StrategyDescriptor], response_model_by_alias=True)
async def list_strategies() -> List[StrategyDescriptor]:
    """Retrieval strategies in the order they are tried"""
    return [StrategyDescriptor(**s) for s in download_service.describe_strategies()]


@app.get("/")
async def root():
    return {
        "service": "YouTube Download Service",
        "version": VERSION,
        "status": "running",
        "endpoints": {
            "download": "/youtube/download",
            "info": "/youtube/info",
            "health": "/youtube/health",
            "diagnostics": "/youtube/diagnostics",
            "strategies": "/youtube/strategies",
        },
        "docs": "/docs",
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================


@app.exception_handler(DownloadServiceError)
async def service_error_handler(request: Request, exc: DownloadServiceError):
    if exc.status_code >= 500:
        logger.error(f"💥 {type(exc).__name__}: {exc.message}")
    else:
        logger.warning(f"⚠️ {type(exc).__name__}: {exc.message}")
    return _error_response(exc.status_code, exc.message, exc.error_name)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    message = message.removeprefix("Value error, ")
    return _error_response(400, message, "Bad Request")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Internal server error")
    return _error_response(500, "Internal server error. Please try again later.", "Internal Server Error")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
