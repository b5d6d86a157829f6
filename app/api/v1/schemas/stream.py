from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from app.domain.stream import QuotaInfo, StreamSessionResponse, StreamStatusResponse
from app.schemas import StreamState, VideoSource
from app.services.execution import UnitState
from app.shared.api.utils import ApiSuccess

T = TypeVar("T")


class ApiOut(ApiSuccess, Generic[T]):
    """Success envelope with typed `results`."""

    results: T  # type: ignore[valid-type]


class CreateSessionIn(BaseModel):
    source: VideoSource = Field(..., description="Video source, tagged by `kind`")
    rtmp_url: str = Field(..., description="Destination rtmp:// or rtmps:// URL")


class StopSessionIn(BaseModel):
    session_id: str


class SessionOut(BaseModel):
    session_id: str
    status: StreamState
    source: VideoSource
    rtmp_url: str
    unit_name: str | None = None
    stop_requested: bool = False
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    stopped_at: datetime | None = None

    @classmethod
    def from_session(cls, session: StreamSessionResponse) -> "SessionOut":
        return cls(**session.model_dump(include=set(cls.model_fields)))


class SessionStatusOut(BaseModel):
    session: SessionOut
    unit_state: UnitState | None = None
    unit_state_error: str | None = None
    is_healthy: bool = False

    @classmethod
    def from_status(cls, status: StreamStatusResponse) -> "SessionStatusOut":
        return cls(
            session=SessionOut.from_session(status.session),
            unit_state=status.unit_state,
            unit_state_error=status.unit_state_error,
            is_healthy=status.is_healthy,
        )


class ListSessionsOut(BaseModel):
    sessions: list[SessionOut]


class QuotaOut(BaseModel):
    user_id: str
    allowed: int
    active: int

    @classmethod
    def from_quota(cls, quota: QuotaInfo) -> "QuotaOut":
        return cls(**quota.model_dump())


class SetAllowedIn(BaseModel):
    user_id: str
    allowed: int = Field(..., ge=0)


class UploadVideoOut(BaseModel):
    path: str
    size: int
    content_type: str
