"""Stream session ODM schema."""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field, field_validator
from pymongo import IndexModel

from .schema_utils import parse_mongo_datetime
from .stream_state import StreamState
from .video_source import VideoSource


class StreamSession(Document):
    """One user's request to push a video source to one RTMP destination."""

    session_id: Indexed(str, unique=True)  # type: ignore[valid-type]
    user_id: str

    # Immutable request
    rtmp_url: str
    source: VideoSource

    # Execution unit, set once the launch succeeds
    unit_id: str | None = None
    unit_name: str | None = None

    status: StreamState = StreamState.STARTING
    stop_requested: bool = False

    # Terminal error reason, rendered by the dashboard
    error_code: str | None = None
    error_message: str | None = None

    # Timestamps
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    stopped_at: datetime | None = None

    # Incremented on every update
    version: int = Field(default=1)

    @field_validator("created_at", "updated_at", "started_at", "stopped_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        """Parse MongoDB Extended JSON datetime format."""
        return parse_mongo_datetime(v)

    class Settings:
        name = "stream_session"
        indexes = [
            [("session_id", 1)],  # unique handled by Indexed
            IndexModel([("user_id", 1), ("created_at", -1)], name="user_id_created_at"),
            IndexModel(
                [("status", 1), ("updated_at", 1)],
                partialFilterExpression={"status": {"$in": ["starting", "running", "stopping"]}},
                name="status_updated_at_active_partial",
            ),
        ]
