"""Tests for stopping sessions, including stops racing an in-flight launch."""

import asyncio

import pytest

from app.domain.stream import StreamSessionCreateParams
from app.schemas import LocalFileSource, StreamState
from app.services.execution import ExecutionBackendError
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode
from tests.fakes import Harness

RTMP = "rtmp://live.example.com/app/key123"


def params(user_id: str = "u1") -> StreamSessionCreateParams:
    return StreamSessionCreateParams(user_id=user_id, source=LocalFileSource(path="clip.mp4"), rtmp_url=RTMP)


class TestStopSession:
    async def test_stop_running_session(self):
        """Stopping a running session removes the unit and releases the quota."""
        # Arrange
        h = Harness(allowed={"u1": 1})
        session = await h.service.create_session(params())

        # Act
        stopped = await h.service.stop_session(session.session_id, user_id="u1")

        # Assert
        assert stopped.status == StreamState.STOPPED
        assert stopped.stopped_at is not None
        assert stopped.error_code is None
        assert h.backend.stop_calls == [session.unit_id]
        assert h.backend.units == {}
        assert h.ledger.active["u1"] == 0
        assert h.store.history[session.session_id] == [
            StreamState.STARTING,
            StreamState.RUNNING,
            StreamState.STOPPING,
            StreamState.STOPPED,
        ]

    async def test_stop_is_idempotent(self):
        """Repeated stops succeed and release the quota once."""
        h = Harness(allowed={"u1": 1})
        session = await h.service.create_session(params())

        first = await h.service.stop_session(session.session_id)
        second = await h.service.stop_session(session.session_id)
        third = await h.service.stop_session(session.session_id)

        assert first.status == second.status == third.status == StreamState.STOPPED
        assert second.version == first.version
        assert h.ledger.release_calls["u1"] == 1
        assert len(h.backend.stop_calls) == 1

    async def test_concurrent_stops_release_once(self):
        h = Harness(allowed={"u1": 1})
        session = await h.service.create_session(params())

        results = await asyncio.gather(*(h.service.stop_session(session.session_id) for _ in range(4)))

        assert {r.status for r in results} <= {StreamState.STOPPING, StreamState.STOPPED}
        final = await h.store.get_session(session.session_id)
        assert final.status == StreamState.STOPPED
        assert h.ledger.release_calls["u1"] == 1
        assert len(h.backend.stop_calls) == 1

    async def test_unit_already_gone_counts_as_stopped(self):
        """A unit removed out of band does not block the stop."""
        h = Harness(allowed={"u1": 1})
        session = await h.service.create_session(params())
        h.backend.units.clear()

        stopped = await h.service.stop_session(session.session_id)

        assert stopped.status == StreamState.STOPPED
        assert h.ledger.active["u1"] == 0

    async def test_stop_failure_escalates_to_error(self):
        """A unit that cannot be stopped leaves the session in error, not stopping."""
        # Arrange
        h = Harness(allowed={"u1": 1})
        session = await h.service.create_session(params())
        h.backend.stop_error = ExecutionBackendError("daemon timeout")

        # Act
        result = await h.service.stop_session(session.session_id)

        # Assert
        assert result.status == StreamState.ERROR
        assert result.error_code == AppErrorCode.E_STOP_FAILED
        assert result.error_message == "daemon timeout"
        assert h.ledger.active["u1"] == 0
        assert h.ledger.release_calls["u1"] == 1

    async def test_stop_unknown_session(self):
        h = Harness()

        with pytest.raises(AppError) as exc_info:
            await h.service.stop_session("ss_missing")

        assert exc_info.value.errcode == AppErrorCode.E_SESSION_NOT_FOUND
        assert exc_info.value.status_code == HttpStatusCode.NOT_FOUND

    async def test_stop_other_users_session_not_found(self):
        """Sessions are scoped to their owner."""
        h = Harness(allowed={"u1": 1})
        session = await h.service.create_session(params())

        with pytest.raises(AppError) as exc_info:
            await h.service.stop_session(session.session_id, user_id="u2")

        assert exc_info.value.errcode == AppErrorCode.E_SESSION_NOT_FOUND
        assert (await h.store.get_session(session.session_id)).status == StreamState.RUNNING


class TestStopDuringLaunch:
    async def test_stop_while_starting_tears_down_new_unit(self):
        """A stop that arrives mid-launch stops the unit once it exists."""
        # Arrange
        h = Harness(allowed={"u1": 1})
        acks = []

        async def stop_mid_launch():
            (pending,) = h.store.sessions.values()
            acks.append(await h.service.stop_session(pending.session_id))

        h.backend.before_launch_returns = stop_mid_launch

        # Act
        session = await h.service.create_session(params())

        # Assert
        assert acks[0].status == StreamState.STOPPING
        assert acks[0].stop_requested is True
        assert session.status == StreamState.STOPPED
        assert session.unit_id == "unit-1"
        assert h.store.history[session.session_id] == [
            StreamState.STARTING,
            StreamState.STOPPING,
            StreamState.STOPPED,
        ]
        assert h.backend.units == {}
        assert h.ledger.active["u1"] == 0
        assert h.ledger.release_calls["u1"] == 1

    async def test_stop_while_starting_then_launch_fails(self):
        """A failed launch after a stop request still ends in error with one release."""
        h = Harness(allowed={"u1": 1})

        async def stop_then_fail():
            (pending,) = h.store.sessions.values()
            await h.service.stop_session(pending.session_id)
            raise ExecutionBackendError("container exited during startup")

        h.backend.before_launch_returns = stop_then_fail

        with pytest.raises(AppError) as exc_info:
            await h.service.create_session(params())

        assert exc_info.value.errcode == AppErrorCode.E_LAUNCH_FAILED
        (session,) = h.store.sessions.values()
        assert session.status == StreamState.ERROR
        assert h.ledger.active["u1"] == 0
        assert h.ledger.release_calls["u1"] == 1
