"""Beanie ODM schemas for MongoDB collections."""

from .init import DOCUMENT_MODELS, init_beanie_odm
from .stream_session import StreamSession
from .stream_state import StreamState, VideoSourceKind
from .user_quota import UserQuota
from .video_source import (
    HostedVideoSource,
    LocalFileSource,
    VideoSource,
    WebVideoSource,
    source_value,
    video_source_adapter,
)

__all__ = [
    "DOCUMENT_MODELS",
    "HostedVideoSource",
    "LocalFileSource",
    "StreamSession",
    "StreamState",
    "UserQuota",
    "VideoSource",
    "VideoSourceKind",
    "WebVideoSource",
    "init_beanie_odm",
    "source_value",
    "video_source_adapter",
]
