"""Local storage for uploaded source videos.

Files are written under STREAM_VIDEOS_DIR, the directory the docker backend
mounts read-only into each unit. The returned relative name is what clients
pass back as a `local_file` source path.

Usage:
    from app.services.upload_storage import get_upload_storage

    stored = await get_upload_storage().save(upload, user_id="u1")
    # stored.path == "u1-1760000000000-abcd1234.mp4"

    removed = get_upload_storage().cleanup_older_than(hours=24)
"""

import asyncio
import os
import re
import time
from pathlib import Path

from fastapi import UploadFile
from loguru import logger
from pydantic import BaseModel

from app.app_config import get_app_environ_config
from app.domain.utils.idgen import new_upload_suffix
from app.domain.utils.timeutil import utc_now_ms
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

CHUNK_SIZE = 1024 * 1024

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")

# Allowed MIME type -> stored extension
ALLOWED_CONTENT_TYPES: dict[str, str] = {
    "video/mp4": "mp4",
    "video/avi": "avi",
    "video/mov": "mov",
    "video/quicktime": "mov",
    "video/x-matroska": "mkv",
    "video/mkv": "mkv",
    "video/webm": "webm",
}

ALLOWED_EXTENSIONS = set(ALLOWED_CONTENT_TYPES.values())


class StoredUpload(BaseModel):
    path: str
    size: int
    content_type: str


class UploadStorage:
    """Streams uploads to disk under a size ceiling and prunes old files."""

    def __init__(self, videos_dir: str, max_bytes: int):
        self.videos_dir = Path(videos_dir)
        self.max_bytes = max_bytes

    def _extension_for(self, content_type: str, filename: str | None) -> str:
        suffix = Path(filename or "").suffix.lower().lstrip(".")
        if suffix in ALLOWED_EXTENSIONS:
            return suffix
        return ALLOWED_CONTENT_TYPES[content_type]

    @staticmethod
    def safe_name_part(user_id: str) -> str:
        """User id reduced to `[A-Za-z0-9_-]` so it cannot leave the videos directory."""
        return _UNSAFE_NAME_CHARS.sub("_", user_id)[:64] or "user"

    def make_filename(self, user_id: str, extension: str) -> str:
        return f"{self.safe_name_part(user_id)}-{utc_now_ms()}-{new_upload_suffix()}.{extension}"

    async def save(self, upload: UploadFile, user_id: str) -> StoredUpload:
        """
        Write an uploaded video to the videos directory.

        Raises:
            AppError: E_UPLOAD_TYPE_NOT_ALLOWED (415) or E_UPLOAD_TOO_LARGE (413)
        """
        content_type = (upload.content_type or "").split(";")[0].strip().lower()
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise AppError(
                errcode=AppErrorCode.E_UPLOAD_TYPE_NOT_ALLOWED,
                errmesg=f"Content type not allowed: {content_type or 'unknown'}",
                status_code=HttpStatusCode.UNSUPPORTED_MEDIA_TYPE,
            )

        self.videos_dir.mkdir(parents=True, exist_ok=True)
        filename = self.make_filename(user_id, self._extension_for(content_type, upload.filename))
        dest = self.videos_dir / filename
        partial = dest.with_name(dest.name + ".partial")

        total = 0
        try:
            with partial.open("wb") as buffer:
                while chunk := await upload.read(CHUNK_SIZE):
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise AppError(
                            errcode=AppErrorCode.E_UPLOAD_TOO_LARGE,
                            errmesg=f"Upload exceeds {self.max_bytes} bytes",
                            status_code=HttpStatusCode.PAYLOAD_TOO_LARGE,
                        )
                    await asyncio.to_thread(buffer.write, chunk)
            partial.replace(dest)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        logger.info(f"Stored upload {filename} for user {user_id} ({total} bytes, {content_type})")
        return StoredUpload(path=filename, size=total, content_type=content_type)

    def cleanup_older_than(self, hours: float) -> int:
        """Delete stored videos last modified more than `hours` ago. Returns the count removed."""
        if not self.videos_dir.is_dir():
            return 0

        cutoff = time.time() - hours * 3600
        removed = 0
        for entry in os.scandir(self.videos_dir):
            if not entry.is_file():
                continue
            if entry.stat().st_mtime >= cutoff:
                continue
            try:
                os.unlink(entry.path)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove old upload {entry.name}: {e}")

        if removed:
            logger.info(f"Removed {removed} uploads older than {hours}h from {self.videos_dir}")
        return removed


_upload_storage: UploadStorage | None = None


def get_upload_storage() -> UploadStorage:
    global _upload_storage
    if _upload_storage is None:
        cfg = get_app_environ_config()
        _upload_storage = UploadStorage(cfg.STREAM_VIDEOS_DIR, cfg.UPLOAD_MAX_BYTES)
    return _upload_storage
