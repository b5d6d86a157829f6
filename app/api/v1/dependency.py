from typing import Annotated

from fastapi import Depends, Header, Request
from loguru import logger
from pydantic import BaseModel

from app.domain.stream import StreamService
from app.services.upload_storage import UploadStorage, get_upload_storage
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

USER_ID_HEADER = "X-User-Id"


class User(BaseModel):
    user_id: str


async def get_current_user(
    x_user_id: Annotated[str | None, Header(alias=USER_ID_HEADER)] = None,
) -> User:
    # The upstream gateway authenticates and forwards the user id.
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AppError(
            errcode=AppErrorCode.E_BAD_TOKEN,
            errmesg=f"Missing {USER_ID_HEADER} header",
            status_code=HttpStatusCode.UNAUTHORIZED,
        )

    logger.debug("Request user_id: {}", user_id)
    return User(user_id=user_id)


def get_stream_service(request: Request) -> StreamService:
    """StreamService built during application startup."""
    return request.app.state.stream_service


def get_upload_service() -> UploadStorage:
    return get_upload_storage()


CurrentUser = Annotated[User, Depends(get_current_user)]
