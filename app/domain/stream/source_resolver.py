"""Resolve a web video page URL to a direct media URL with yt-dlp."""

import asyncio
from typing import Any

import yt_dlp
from loguru import logger
from yt_dlp.utils import DownloadError, ExtractorError

from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class WebVideoResolver:
    """Extracts a single-file format no taller than `max_height`."""

    def __init__(self, max_height: int = 720, socket_timeout: float = 20.0):
        self.max_height = max_height
        self.socket_timeout = socket_timeout

    def _options(self) -> dict[str, Any]:
        return {
            "format": f"best[height<={self.max_height}]",
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
            "socket_timeout": self.socket_timeout,
        }

    def _extract(self, url: str) -> str:
        with yt_dlp.YoutubeDL(self._options()) as ydl:
            info = ydl.extract_info(url, download=False)
        if not info:
            raise DownloadError(f"yt_dlp returned no info for {url}")

        media_url = info.get("url")
        if not media_url:
            formats = info.get("requested_formats") or []
            media_url = formats[0].get("url") if formats else None
        if not media_url:
            raise DownloadError(f"no direct media URL for {url}")
        return media_url

    async def resolve(self, url: str) -> str:
        """Return a direct media URL for the page.

        Raises:
            AppError: E_SOURCE_RESOLUTION_FAILED if extraction fails
        """
        try:
            media_url = await asyncio.to_thread(self._extract, url)
        except (DownloadError, ExtractorError) as e:
            logger.warning(f"Failed to resolve web video {url}: {e}")
            raise AppError(
                errcode=AppErrorCode.E_SOURCE_RESOLUTION_FAILED,
                errmesg=f"Video source unavailable: {url}",
                status_code=HttpStatusCode.UNPROCESSABLE_ENTITY,
            ) from e

        logger.info(f"Resolved web video {url} (max height {self.max_height})")
        return media_url
