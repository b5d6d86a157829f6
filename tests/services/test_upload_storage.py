"""Tests for UploadStorage."""

import asyncio
import io
import os
import re
import time
from unittest.mock import patch

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from app.services.upload_storage import UploadStorage
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


def make_upload(data: bytes, content_type: str, filename: str = "clip.mp4") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def storage(tmp_path) -> UploadStorage:
    return UploadStorage(str(tmp_path / "videos"), max_bytes=1024)


class TestSave:
    async def test_save_streams_file_to_disk(self, storage):
        """Stored files are named user-timestamp-random.ext under the videos directory."""
        # Act
        stored = await storage.save(make_upload(b"x" * 100, "video/mp4"), user_id="u1")

        # Assert
        assert re.fullmatch(r"u1-\d{13}-[0-9a-z]{8}\.mp4", stored.path)
        assert stored.size == 100
        assert stored.content_type == "video/mp4"
        assert (storage.videos_dir / stored.path).read_bytes() == b"x" * 100

    async def test_extension_from_content_type_when_name_unknown(self, storage):
        stored = await storage.save(make_upload(b"data", "video/quicktime", filename="upload.bin"), user_id="u1")

        assert stored.path.endswith(".mov")

    @pytest.mark.parametrize("content_type", ["image/png", "application/octet-stream", ""])
    async def test_rejects_disallowed_type(self, storage, content_type):
        with pytest.raises(AppError) as exc_info:
            await storage.save(make_upload(b"data", content_type), user_id="u1")

        assert exc_info.value.errcode == AppErrorCode.E_UPLOAD_TYPE_NOT_ALLOWED
        assert exc_info.value.status_code == HttpStatusCode.UNSUPPORTED_MEDIA_TYPE

    async def test_oversized_upload_removed(self, storage):
        """An upload over the ceiling fails and leaves no partial file behind."""
        with pytest.raises(AppError) as exc_info:
            await storage.save(make_upload(b"x" * 2048, "video/webm"), user_id="u1")

        assert exc_info.value.errcode == AppErrorCode.E_UPLOAD_TOO_LARGE
        assert exc_info.value.status_code == HttpStatusCode.PAYLOAD_TOO_LARGE
        assert list(storage.videos_dir.iterdir()) == []

    @pytest.mark.parametrize("user_id", ["../escaped", "a/b", "..", "u1/../../etc"])
    async def test_user_id_cannot_escape_videos_dir(self, storage, tmp_path, user_id):
        """Path characters in the user id never reach the file system path."""
        # Act
        stored = await storage.save(make_upload(b"data", "video/mp4"), user_id=user_id)

        # Assert
        assert re.fullmatch(r"[A-Za-z0-9_-]+-\d{13}-[0-9a-z]{8}\.mp4", stored.path)
        assert [p.name for p in storage.videos_dir.iterdir()] == [stored.path]
        assert sorted(p.name for p in tmp_path.iterdir()) == ["videos"]

    async def test_chunks_written_off_the_event_loop(self, storage):
        with patch("app.services.upload_storage.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            stored = await storage.save(make_upload(b"x" * 100, "video/mp4"), user_id="u1")

        assert to_thread.await_count == 1
        assert to_thread.call_args.args[0].__name__ == "write"
        assert (storage.videos_dir / stored.path).read_bytes() == b"x" * 100


class TestCleanup:
    async def test_cleanup_removes_only_old_files(self, storage):
        old = await storage.save(make_upload(b"old", "video/mp4"), user_id="u1")
        new = await storage.save(make_upload(b"new", "video/mp4"), user_id="u1")
        two_days_ago = time.time() - 48 * 3600
        os.utime(storage.videos_dir / old.path, (two_days_ago, two_days_ago))

        removed = storage.cleanup_older_than(hours=24)

        assert removed == 1
        assert [p.name for p in storage.videos_dir.iterdir()] == [new.path]

    def test_cleanup_without_directory(self, storage):
        assert storage.cleanup_older_than(hours=24) == 0
