"""Status queries for stream sessions."""

from loguru import logger

from app.schemas import StreamState
from app.services.execution import ExecutionBackendError, UnitState

from ._base import BaseService
from .stream_models import StreamSessionResponse, StreamStatusResponse


class StatusOperations(BaseService):
    async def get_status(self, session_id: str, user_id: str | None = None) -> StreamStatusResponse:
        """Return the persisted session cross-referenced with the unit's live state.

        Backend failures are reported in `unit_state_error` rather than raised.
        """
        session = await self._get_session_by_id(session_id, user_id)

        unit_state: UnitState | None = None
        unit_state_error: str | None = None
        if session.unit_id:
            try:
                unit_state = await self.backend.status(session.unit_id)
            except ExecutionBackendError as e:
                logger.warning(f"Failed to query unit {session.unit_name} for session {session_id}: {e}")
                unit_state_error = str(e)

        return StreamStatusResponse(
            session=session,
            unit_state=unit_state,
            unit_state_error=unit_state_error,
            is_healthy=session.status == StreamState.RUNNING and unit_state == UnitState.RUNNING,
        )

    async def list_sessions(
        self,
        user_id: str,
        statuses: list[StreamState] | None = None,
        limit: int = 50,
    ) -> list[StreamSessionResponse]:
        return await self.store.list_sessions_by_user(user_id, statuses=statuses, limit=limit)
