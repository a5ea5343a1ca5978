"""YouTube download service: yt-dlp retrieval with fallback strategies behind a FastAPI API."""
