from fastapi import APIRouter, Depends, Query

from app.api.v1.dependency import CurrentUser, get_stream_service
from app.api.v1.schemas.stream import (
    ApiOut,
    CreateSessionIn,
    ListSessionsOut,
    QuotaOut,
    SessionOut,
    SessionStatusOut,
    StopSessionIn,
)
from app.domain.stream import StreamService, StreamSessionCreateParams
from app.schemas import StreamState

router = APIRouter(prefix="/stream")


@router.post("/create_session")
async def create_session(
    body: CreateSessionIn,
    user: CurrentUser,
    service: StreamService = Depends(get_stream_service),
) -> ApiOut[SessionOut]:
    """Reserve quota and launch a stream of the given source to the RTMP destination."""
    params = StreamSessionCreateParams(
        user_id=user.user_id,
        source=body.source,
        rtmp_url=body.rtmp_url,
    )
    session = await service.create_session(params)
    return ApiOut[SessionOut](results=SessionOut.from_session(session))


@router.post("/stop_session")
async def stop_session(
    body: StopSessionIn,
    user: CurrentUser,
    service: StreamService = Depends(get_stream_service),
) -> ApiOut[SessionOut]:
    """Stop a stream. Stopping an already finished stream returns it unchanged."""
    session = await service.stop_session(body.session_id, user_id=user.user_id)
    return ApiOut[SessionOut](results=SessionOut.from_session(session))


@router.get("/get_session_status")
async def get_session_status(
    user: CurrentUser,
    session_id: str = Query(..., description="Session ID"),
    service: StreamService = Depends(get_stream_service),
) -> ApiOut[SessionStatusOut]:
    status = await service.get_status(session_id, user_id=user.user_id)
    return ApiOut[SessionStatusOut](results=SessionStatusOut.from_status(status))


@router.get("/list_sessions")
async def list_sessions(
    user: CurrentUser,
    status: list[StreamState] | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    service: StreamService = Depends(get_stream_service),
) -> ApiOut[ListSessionsOut]:
    sessions = await service.list_sessions(user.user_id, statuses=status, limit=limit)
    return ApiOut[ListSessionsOut](
        results=ListSessionsOut(sessions=[SessionOut.from_session(s) for s in sessions])
    )


@router.get("/get_quota")
async def get_quota(
    user: CurrentUser,
    service: StreamService = Depends(get_stream_service),
) -> ApiOut[QuotaOut]:
    quota = await service.get_quota(user.user_id)
    return ApiOut[QuotaOut](results=QuotaOut.from_quota(quota))
