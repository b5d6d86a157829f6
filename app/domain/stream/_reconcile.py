"""Reconciliation of persisted sessions against the execution backend."""

import asyncio
from enum import Enum

from loguru import logger

from app.domain.utils.timeutil import seconds_ago
from app.schemas import StreamState
from app.services.execution import ExecutionBackendError, UnitState
from app.utils.app_errors import AppErrorCode

from ._base import BaseService
from .stream_models import StreamSessionResponse, SweepReport
from .stream_state_machine import StreamStateMachine


class SweepOutcome(str, Enum):
    HEALTHY = "healthy"
    CRASHED = "crashed"
    TIMED_OUT = "timed_out"
    STOP_FINALIZED = "stop_finalized"
    SKIPPED = "skipped"


class ReconciliationSweeper(BaseService):
    """Periodic pass that repairs sessions whose unit died or never came up.

    Only sessions untouched for longer than the launch timeout are examined,
    so in-flight launches and stops are left to their own request paths.
    Every repair is a conditional transition; when a request path wins the
    race the sweeper skips the session.
    """

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        cutoff = seconds_ago(self.cfg.STREAM_LAUNCH_TIMEOUT_SECONDS)
        stale = await self.store.list_sessions_by_status(StreamState.active_states(), updated_before=cutoff)
        semaphore = asyncio.Semaphore(max(1, self.cfg.STREAM_SWEEP_CONCURRENCY))

        async def check(session: StreamSessionResponse) -> SweepOutcome:
            async with semaphore:
                try:
                    return await self.reconcile_session(session)
                except Exception:
                    logger.exception(f"Failed to reconcile session {session.session_id}")
                    return SweepOutcome.SKIPPED

        outcomes = await asyncio.gather(*(check(session) for session in stale))

        for session, outcome in zip(stale, outcomes):
            report.checked += 1
            if outcome == SweepOutcome.HEALTHY:
                report.healthy += 1
            elif outcome == SweepOutcome.CRASHED:
                report.crashed += 1
            elif outcome == SweepOutcome.TIMED_OUT:
                report.timed_out += 1
            elif outcome == SweepOutcome.STOP_FINALIZED:
                report.stop_finalized += 1
            else:
                report.skipped += 1
            if outcome not in (SweepOutcome.HEALTHY, SweepOutcome.SKIPPED):
                report.session_ids.append(session.session_id)

        report.orphans_removed = await self.remove_orphans()

        if report.checked or report.orphans_removed:
            logger.info(
                f"Sweep checked={report.checked} healthy={report.healthy} crashed={report.crashed} "
                f"timed_out={report.timed_out} stop_finalized={report.stop_finalized} "
                f"skipped={report.skipped} orphans_removed={report.orphans_removed}"
            )
        return report

    async def reconcile_session(self, session: StreamSessionResponse) -> SweepOutcome:
        if session.status == StreamState.STOPPING:
            finalized = await self._finalize_stop(session)
            if StreamStateMachine.is_terminal(finalized.status):
                return SweepOutcome.STOP_FINALIZED
            return SweepOutcome.SKIPPED

        if not session.unit_id:
            if session.status == StreamState.STARTING:
                timed_out = await self.transition(
                    session,
                    StreamState.ERROR,
                    from_states={StreamState.STARTING},
                    error_code=AppErrorCode.E_LAUNCH_TIMEOUT.value,
                    error_message=f"Unit not launched within {self.cfg.STREAM_LAUNCH_TIMEOUT_SECONDS}s",
                )
                return SweepOutcome.TIMED_OUT if timed_out else SweepOutcome.SKIPPED
            unit_state = UnitState.NOT_FOUND
        else:
            try:
                unit_state = await self.backend.status(session.unit_id)
            except ExecutionBackendError as e:
                logger.warning(f"Skipping session {session.session_id}, unit status unavailable: {e}")
                return SweepOutcome.SKIPPED

        if unit_state not in UnitState.crashed_states():
            return SweepOutcome.HEALTHY

        crashed = await self.transition(
            session,
            StreamState.ERROR,
            from_states={session.status},
            error_code=AppErrorCode.E_UNIT_CRASHED.value,
            error_message=f"Unit {session.unit_name or session.unit_id} is {unit_state}",
        )
        if crashed is None:
            return SweepOutcome.SKIPPED

        logger.warning(f"Session {session.session_id} marked error, unit {session.unit_name} is {unit_state}")
        if session.unit_id and unit_state != UnitState.NOT_FOUND:
            await self._stop_unit_quietly(session.unit_id, session.unit_name)
        return SweepOutcome.CRASHED

    async def remove_orphans(self) -> int:
        """Remove units carrying the orchestrator prefix whose session is gone or terminal."""
        try:
            units = await self.backend.list_by_prefix(f"{self.cfg.STREAM_UNIT_PREFIX}-")
        except ExecutionBackendError as e:
            logger.warning(f"Skipping orphan pass, failed to list units: {e}")
            return 0

        removed = 0
        for unit in units:
            session_id = self.session_id_from_unit_name(unit.name)
            session = await self.store.get_session(session_id) if session_id else None
            if session is not None and not StreamStateMachine.is_terminal(session.status):
                continue
            if await self._stop_unit_quietly(unit.unit_id, unit.name):
                logger.info(f"Removed orphan unit {unit.name} ({unit.unit_id})")
                removed += 1
        return removed
