"""Stop operations for stream sessions."""

from loguru import logger

from app.schemas import StreamState
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from ._base import BaseService
from .stream_models import StreamSessionResponse
from .stream_state_machine import StreamStateMachine

MAX_STOP_ATTEMPTS = 3


class StopSessionOperations(BaseService):
    """Stop sessions idempotently."""

    async def stop_session(self, session_id: str, user_id: str | None = None) -> StreamSessionResponse:
        """
        Request a stop and tear the unit down.

        - stopped / error: no-op, returns the session unchanged
        - stopping: another stop is in progress, returns the session
        - starting: marks stop_requested; the launch path tears the unit down
        - running: tears the unit down and finalizes to stopped

        Raises:
            AppError: E_SESSION_NOT_FOUND, or E_SESSION_VERSION_CONFLICT when the
                session keeps changing underneath the request
        """
        for _ in range(MAX_STOP_ATTEMPTS):
            session = await self._get_session_by_id(session_id, user_id)

            if StreamStateMachine.is_terminal(session.status):
                logger.info(f"Session {session_id} already {session.status}, nothing to stop")
                return session

            if session.status == StreamState.STOPPING:
                logger.info(f"Session {session_id} is already stopping")
                return session

            if session.status == StreamState.STARTING:
                updated = await self.transition(
                    session,
                    StreamState.STOPPING,
                    from_states={StreamState.STARTING},
                    stop_requested=True,
                )
                if updated is None:
                    continue
                if updated.unit_id:
                    return await self._finalize_stop(updated)
                logger.info(f"Stop requested for session {session_id} while its launch is in flight")
                return updated

            updated = await self.transition(session, StreamState.STOPPING, from_states={StreamState.RUNNING})
            if updated is None:
                continue
            return await self._finalize_stop(updated)

        raise AppError(
            errcode=AppErrorCode.E_SESSION_VERSION_CONFLICT,
            errmesg=f"Session {session_id} changed concurrently, retry the stop",
            status_code=HttpStatusCode.CONFLICT,
        )
