"""Session creation: quota reservation, source resolution and unit launch."""

from loguru import logger

from app.domain.utils.idgen import new_stream_session_id
from app.domain.utils.timeutil import utc_now
from app.schemas import StreamState, VideoSourceKind, source_value
from app.services.execution import ExecutionBackendError
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from ._base import BaseService
from .command_builder import build_command, validate_request
from .stream_models import StreamSessionCreateParams, StreamSessionResponse


class CreateSessionOperations(BaseService):
    """Create a session and bring its execution unit up."""

    async def create_session(self, params: StreamSessionCreateParams) -> StreamSessionResponse:
        """
        Validate, reserve quota, persist a `starting` session and launch its unit.

        Validation runs before any quota is touched. Every failure after the
        reservation leaves the session terminal with the quota released.

        Raises:
            AppError: E_VALIDATION, E_QUOTA_EXCEEDED, E_SOURCE_RESOLUTION_FAILED
                or E_LAUNCH_FAILED
        """
        validate_request(params.source, params.rtmp_url)

        if not await self.ledger.try_reserve(params.user_id):
            logger.info(f"Quota exhausted for user {params.user_id}")
            raise AppError(
                errcode=AppErrorCode.E_QUOTA_EXCEEDED,
                errmesg=f"Concurrent stream limit reached for user {params.user_id}",
                status_code=HttpStatusCode.TOO_MANY_REQUESTS,
            )

        now = utc_now()
        record = StreamSessionResponse(
            session_id=new_stream_session_id(),
            user_id=params.user_id,
            rtmp_url=params.rtmp_url.strip(),
            source=params.source,
            status=StreamState.STARTING,
            created_at=now,
            updated_at=now,
        )

        try:
            session = await self.store.insert_session(record)
        except Exception:
            logger.error(f"Failed to persist session {record.session_id}, releasing quota for {params.user_id}")
            await self.ledger.release(params.user_id)
            raise

        logger.info(
            f"Created session {session.session_id} for user {session.user_id} "
            f"(source={session.source.kind}, value={source_value(session.source)})"
        )
        return await self._launch(session)

    async def _launch(self, session: StreamSessionResponse) -> StreamSessionResponse:
        unit_name = self.unit_name_for(session.session_id)

        try:
            media_url = None
            if session.source.kind == VideoSourceKind.WEB_VIDEO:
                media_url = await self.resolver.resolve(source_value(session.source))

            command = build_command(
                session.source,
                session.rtmp_url,
                media_url=media_url,
                videos_dir=self.cfg.STREAM_VIDEOS_DIR,
                videos_mount=self.cfg.STREAM_VIDEOS_MOUNT,
                ffmpeg_bin=self.cfg.STREAM_FFMPEG_BIN,
            )
            unit_id = await self.backend.launch(
                unit_name,
                command.argv,
                self.resource_limits(),
                self.cfg.STREAM_NETWORK,
                command.mounts,
                labels={"streamax.session_id": session.session_id, "streamax.user_id": session.user_id},
            )
        except AppError as e:
            logger.warning(f"Session {session.session_id} failed before launch: {e.errcode} {e.errmesg}")
            await self._fail_launch(session, e.errcode, e.errmesg)
            raise
        except ExecutionBackendError as e:
            logger.error(f"Failed to launch unit {unit_name}: {e}")
            await self._fail_launch(session, AppErrorCode.E_LAUNCH_FAILED.value, str(e))
            raise AppError(
                errcode=AppErrorCode.E_LAUNCH_FAILED,
                errmesg=f"Failed to launch stream for session {session.session_id}: {e}",
                status_code=HttpStatusCode.BAD_GATEWAY,
            ) from e
        except Exception as e:
            logger.exception(f"Unexpected error launching unit {unit_name}: {e}")
            await self._fail_launch(session, AppErrorCode.E_LAUNCH_FAILED.value, str(e))
            raise AppError(
                errcode=AppErrorCode.E_LAUNCH_FAILED,
                errmesg=f"Failed to launch stream for session {session.session_id}",
                status_code=HttpStatusCode.BAD_GATEWAY,
            ) from e

        return await self._complete_launch(session, unit_id, unit_name)

    async def _fail_launch(self, session: StreamSessionResponse, error_code: str, error_message: str) -> None:
        # A stop may have moved the session to stopping meanwhile; the failure still wins.
        await self.transition(
            session,
            StreamState.ERROR,
            from_states={StreamState.STARTING, StreamState.STOPPING},
            error_code=error_code,
            error_message=error_message,
        )

    async def _complete_launch(
        self,
        session: StreamSessionResponse,
        unit_id: str,
        unit_name: str,
    ) -> StreamSessionResponse:
        running = await self.transition(
            session,
            StreamState.RUNNING,
            from_states={StreamState.STARTING},
            unit_id=unit_id,
            unit_name=unit_name,
        )
        if running is not None:
            logger.info(f"Session {session.session_id} running on unit {unit_name} ({unit_id})")
            return running

        current = await self.store.get_session(session.session_id)

        if current is not None and current.status == StreamState.STOPPING:
            logger.info(f"Stop requested while launching session {session.session_id}, tearing down {unit_name}")
            recorded = await self.store.update_session(
                session.session_id,
                {"unit_id": unit_id, "unit_name": unit_name, "updated_at": utc_now()},
                expected_status={StreamState.STOPPING},
            )
            if recorded is not None:
                return await self._finalize_stop(recorded)
            current = await self.store.get_session(session.session_id)

        # The session went terminal underneath us (launch timeout); the unit is an orphan.
        status = current.status if current is not None else "missing"
        logger.warning(f"Session {session.session_id} is {status} after launch, removing unit {unit_name}")
        await self._stop_unit_quietly(unit_id, unit_name)
        raise AppError(
            errcode=AppErrorCode.E_LAUNCH_FAILED,
            errmesg=f"Session {session.session_id} ended ({status}) before its launch completed",
            status_code=HttpStatusCode.BAD_GATEWAY,
        )
