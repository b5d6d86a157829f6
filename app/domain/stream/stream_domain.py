"""Stream session domain service."""

from app.app_config import AppEnvironConfig, get_app_environ_config
from app.schemas import StreamState
from app.services.execution import ExecutionBackend

from ._create import CreateSessionOperations
from ._reconcile import ReconciliationSweeper
from ._status import StatusOperations
from ._stop import StopSessionOperations
from ._store import BeanieSessionStore, SessionStore
from .quota_ledger import MongoQuotaLedger, QuotaLedger
from .source_resolver import WebVideoResolver
from .stream_models import (
    QuotaInfo,
    StreamSessionCreateParams,
    StreamSessionResponse,
    StreamStatusResponse,
    SweepReport,
)


class StreamService:
    """Orchestrates stream sessions over a store, a quota ledger and an execution backend."""

    def __init__(
        self,
        store: SessionStore,
        ledger: QuotaLedger,
        backend: ExecutionBackend,
        resolver: WebVideoResolver,
        cfg: AppEnvironConfig | None = None,
    ):
        deps = (store, ledger, backend, resolver, cfg)
        self.ledger = ledger
        self.backend = backend
        self._create = CreateSessionOperations(*deps)
        self._stop = StopSessionOperations(*deps)
        self._status = StatusOperations(*deps)
        self._sweeper = ReconciliationSweeper(*deps)

    # ==================== SESSIONS ====================

    async def create_session(self, params: StreamSessionCreateParams) -> StreamSessionResponse:
        """Create a session and launch its unit.

        Raises AppError on validation, quota, resolution or launch failure.
        """
        return await self._create.create_session(params)

    async def stop_session(self, session_id: str, user_id: str | None = None) -> StreamSessionResponse:
        """Stop a session. Stopping a terminal session is a no-op."""
        return await self._stop.stop_session(session_id, user_id=user_id)

    async def get_status(self, session_id: str, user_id: str | None = None) -> StreamStatusResponse:
        return await self._status.get_status(session_id, user_id=user_id)

    async def list_sessions(
        self,
        user_id: str,
        statuses: list[StreamState] | None = None,
        limit: int = 50,
    ) -> list[StreamSessionResponse]:
        return await self._status.list_sessions(user_id, statuses=statuses, limit=limit)

    # ==================== QUOTA ====================

    async def get_quota(self, user_id: str) -> QuotaInfo:
        return await self.ledger.get(user_id)

    async def set_allowed(self, user_id: str, allowed: int) -> QuotaInfo:
        return await self.ledger.set_allowed(user_id, allowed)

    # ==================== RECONCILIATION ====================

    async def sweep(self) -> SweepReport:
        """Run one reconciliation pass over stale sessions and orphan units."""
        return await self._sweeper.sweep()


def build_stream_service(backend: ExecutionBackend, cfg: AppEnvironConfig | None = None) -> StreamService:
    """StreamService on MongoDB persistence with the given execution backend."""
    cfg = cfg or get_app_environ_config()
    return StreamService(
        store=BeanieSessionStore(),
        ledger=MongoQuotaLedger(default_allowed=cfg.STREAM_DEFAULT_ALLOWED),
        backend=backend,
        resolver=WebVideoResolver(max_height=cfg.STREAM_RESOLVE_MAX_HEIGHT),
        cfg=cfg,
    )
