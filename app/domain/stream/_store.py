"""Persistence collaborator for stream sessions."""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from beanie import UpdateResponse
from beanie.odm.operators.update.general import Inc, Set
from beanie.operators import In
from loguru import logger
from pymongo.errors import DuplicateKeyError

from app.schemas import StreamSession, StreamState
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .stream_models import StreamSessionResponse


class SessionStore(Protocol):
    async def insert_session(self, session: StreamSessionResponse) -> StreamSessionResponse: ...

    async def update_session(
        self,
        session_id: str,
        fields: Mapping[str, Any],
        expected_status: Iterable[StreamState] | None = None,
    ) -> StreamSessionResponse | None: ...

    async def get_session(self, session_id: str) -> StreamSessionResponse | None: ...

    async def list_sessions_by_status(
        self,
        statuses: Iterable[StreamState],
        updated_before: datetime | None = None,
    ) -> list[StreamSessionResponse]: ...

    async def list_sessions_by_user(
        self,
        user_id: str,
        statuses: Iterable[StreamState] | None = None,
        limit: int = 50,
    ) -> list[StreamSessionResponse]: ...


def _to_response(doc: StreamSession) -> StreamSessionResponse:
    return StreamSessionResponse(**doc.model_dump(exclude={"id", "revision_id"}))


class BeanieSessionStore:
    """SessionStore on the `stream_session` collection.

    `update_session` is a single find-one-and-update: it applies only while the
    stored status is one of `expected_status` and bumps `version`, so concurrent
    transitions of one session have exactly one winner.
    """

    async def insert_session(self, session: StreamSessionResponse) -> StreamSessionResponse:
        doc = StreamSession(**session.model_dump())
        try:
            await doc.insert()
        except DuplicateKeyError as e:
            raise AppError(
                errcode=AppErrorCode.E_SESSION_EXISTS,
                errmesg=f"Session already exists: {session.session_id}",
                status_code=HttpStatusCode.CONFLICT,
            ) from e
        return _to_response(doc)

    async def update_session(
        self,
        session_id: str,
        fields: Mapping[str, Any],
        expected_status: Iterable[StreamState] | None = None,
    ) -> StreamSessionResponse | None:
        if "version" in fields:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                "fields must not include version",
                HttpStatusCode.BAD_REQUEST,
            )

        query: list[Any] = [StreamSession.session_id == session_id]
        if expected_status is not None:
            query.append(In(StreamSession.status, [StreamState(s).value for s in expected_status]))

        doc = await StreamSession.find_one(*query).update(
            Set(dict(fields)),
            Inc({StreamSession.version: 1}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if doc is None:
            logger.debug(f"Session {session_id} not updated (expected status {expected_status})")
            return None
        return _to_response(doc)

    async def get_session(self, session_id: str) -> StreamSessionResponse | None:
        doc = await StreamSession.find_one(StreamSession.session_id == session_id)
        return _to_response(doc) if doc else None

    async def list_sessions_by_status(
        self,
        statuses: Iterable[StreamState],
        updated_before: datetime | None = None,
    ) -> list[StreamSessionResponse]:
        query: list[Any] = [In(StreamSession.status, [StreamState(s).value for s in statuses])]
        if updated_before is not None:
            query.append(StreamSession.updated_at < updated_before)
        docs = await StreamSession.find(*query).sort("+updated_at").to_list()
        return [_to_response(doc) for doc in docs]

    async def list_sessions_by_user(
        self,
        user_id: str,
        statuses: Iterable[StreamState] | None = None,
        limit: int = 50,
    ) -> list[StreamSessionResponse]:
        query: list[Any] = [StreamSession.user_id == user_id]
        if statuses:
            query.append(In(StreamSession.status, [StreamState(s).value for s in statuses]))
        docs = await StreamSession.find(*query).sort("-created_at").limit(limit).to_list()
        return [_to_response(doc) for doc in docs]
