"""Stream session domain models."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas import StreamState, VideoSource
from app.services.execution import UnitState


class StreamSessionResponse(BaseModel):
    """Stream session as seen by the domain and the API."""

    session_id: str
    user_id: str
    rtmp_url: str
    source: VideoSource

    unit_id: str | None = None
    unit_name: str | None = None

    status: StreamState
    stop_requested: bool = False
    error_code: str | None = None
    error_message: str | None = None

    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    stopped_at: datetime | None = None

    version: int = 1


class StreamSessionCreateParams(BaseModel):
    """Parameters for creating a stream session."""

    user_id: str
    source: VideoSource
    rtmp_url: str


class StreamStatusResponse(BaseModel):
    """Persisted session cross-referenced with the unit's live state."""

    session: StreamSessionResponse
    unit_state: UnitState | None = None
    unit_state_error: str | None = None
    is_healthy: bool = False


class QuotaInfo(BaseModel):
    user_id: str
    allowed: int = 0
    active: int = 0


class SweepReport(BaseModel):
    """Counters of one reconciliation pass."""

    checked: int = 0
    healthy: int = 0
    crashed: int = 0
    timed_out: int = 0
    stop_finalized: int = 0
    skipped: int = 0
    orphans_removed: int = 0
    session_ids: list[str] = Field(default_factory=list)
