"""Base service for stream session operations."""

from collections.abc import Iterable
from typing import Any

from loguru import logger

from app.app_config import AppEnvironConfig, get_app_environ_config
from app.domain.utils.timeutil import utc_now
from app.schemas import StreamState
from app.services.execution import (
    ExecutionBackend,
    ExecutionBackendError,
    ResourceLimits,
    UnitNotFoundError,
)
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from ._store import SessionStore
from .quota_ledger import QuotaLedger
from .source_resolver import WebVideoResolver
from .stream_models import StreamSessionResponse
from .stream_state_machine import StreamStateMachine


class BaseService:
    """Base service with shared stream session operation methods."""

    def __init__(
        self,
        store: SessionStore,
        ledger: QuotaLedger,
        backend: ExecutionBackend,
        resolver: WebVideoResolver,
        cfg: AppEnvironConfig | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.backend = backend
        self.resolver = resolver
        self.cfg = cfg or get_app_environ_config()

    # ==================== NAMING ====================

    def unit_name_for(self, session_id: str) -> str:
        return f"{self.cfg.STREAM_UNIT_PREFIX}-{session_id}"

    def session_id_from_unit_name(self, unit_name: str) -> str | None:
        prefix = f"{self.cfg.STREAM_UNIT_PREFIX}-"
        if not unit_name.startswith(prefix):
            return None
        return unit_name[len(prefix):] or None

    def resource_limits(self) -> ResourceLimits:
        return ResourceLimits(memory=self.cfg.STREAM_MEMORY_LIMIT, cpus=self.cfg.STREAM_CPU_LIMIT)

    # ==================== LOOKUP ====================

    async def _get_session_by_id(self, session_id: str, user_id: str | None = None) -> StreamSessionResponse:
        """
        Retrieve a session, optionally scoped to its owner.

        Raises:
            AppError: E_SESSION_NOT_FOUND if missing or owned by another user
        """
        session = await self.store.get_session(session_id)
        if session is None or (user_id is not None and session.user_id != user_id):
            raise AppError(
                errcode=AppErrorCode.E_SESSION_NOT_FOUND,
                errmesg=f"Session not found: {session_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        return session

    # ==================== TRANSITIONS ====================

    async def transition(
        self,
        session: StreamSessionResponse,
        new_state: StreamState,
        *,
        from_states: Iterable[StreamState] | None = None,
        **fields: Any,
    ) -> StreamSessionResponse | None:
        """
        Compare-and-set the session's status.

        The update applies only while the stored status is one of `from_states`
        (default: every valid source of `new_state`). Entering a terminal state
        releases the user's quota; only the caller that wins the update releases.

        Args:
            session: Session as last read by the caller
            new_state: Target state
            from_states: Statuses the stored record must still be in
            **fields: Extra fields written with the transition

        Returns:
            The updated session, or None when another path moved it first

        Raises:
            AppError: E_INVALID_STATE if a source state cannot reach new_state
        """
        sources = set(from_states) if from_states is not None else StreamStateMachine.get_valid_sources(new_state)
        invalid = {s for s in sources if not StreamStateMachine.can_transition(s, new_state)}
        if invalid:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_STATE,
                errmesg=f"Invalid state transition: {sorted(map(str, invalid))} -> {new_state}",
                status_code=HttpStatusCode.CONFLICT,
            )

        now = utc_now()
        updates: dict[str, Any] = {"status": new_state, "updated_at": now, **fields}
        if new_state == StreamState.RUNNING:
            updates.setdefault("started_at", now)
        elif StreamStateMachine.is_terminal(new_state):
            updates.setdefault("stopped_at", now)

        updated = await self.store.update_session(session.session_id, updates, expected_status=sources)
        if updated is None:
            logger.info(
                f"Session {session.session_id} no longer in {sorted(map(str, sources))}, "
                f"skipping transition to {new_state}"
            )
            return None

        logger.info(f"Session {session.session_id} state updated to {new_state}")

        if StreamStateMachine.is_terminal(new_state):
            await self.ledger.release(updated.user_id)

        return updated

    async def _stop_unit_quietly(self, unit_id: str, unit_name: str | None) -> bool:
        """Stop a unit nobody tracks any more. Returns True if a unit was removed."""
        try:
            await self.backend.stop(unit_id)
            return True
        except UnitNotFoundError:
            return False
        except ExecutionBackendError as e:
            logger.warning(f"Failed to remove unit {unit_name or unit_id}: {e}")
            return False

    async def _finalize_stop(self, session: StreamSessionResponse) -> StreamSessionResponse:
        """
        Tear down the unit of a `stopping` session and move it to a terminal state.

        A missing unit counts as already stopped. Any other backend failure
        escalates the session to `error` so it does not stay in `stopping`.
        """
        target = StreamState.STOPPED
        fields: dict[str, Any] = {}

        if session.unit_id:
            try:
                await self.backend.stop(session.unit_id)
                logger.info(f"Stopped unit {session.unit_name} for session {session.session_id}")
            except UnitNotFoundError:
                logger.info(f"Unit {session.unit_name} already gone, treating session {session.session_id} as stopped")
            except ExecutionBackendError as e:
                logger.error(f"Failed to stop unit {session.unit_name} for session {session.session_id}: {e}")
                target = StreamState.ERROR
                fields = {"error_code": AppErrorCode.E_STOP_FAILED.value, "error_message": str(e)}

        updated = await self.transition(session, target, from_states={StreamState.STOPPING}, **fields)
        if updated is None:
            return await self._get_session_by_id(session.session_id)
        return updated
