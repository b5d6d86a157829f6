"""Application error type shared by the domain layer and the API handlers."""

import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    PAYLOAD_TOO_LARGE = 413
    UNSUPPORTED_MEDIA_TYPE = 415
    UNPROCESSABLE_ENTITY = 422
    TOO_MANY_REQUESTS = 429
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503


class AppErrorCode(str, Enum):
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_PARAMS = "E_INVALID_PARAMS"
    E_BAD_TOKEN = "E_BAD_TOKEN"

    # Session lifecycle
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_SESSION_EXISTS = "E_SESSION_EXISTS"
    E_SESSION_VERSION_CONFLICT = "E_SESSION_VERSION_CONFLICT"
    E_INVALID_STATE = "E_INVALID_STATE"

    # Create/stop outcomes rendered by the dashboard
    E_QUOTA_EXCEEDED = "E_QUOTA_EXCEEDED"
    E_VALIDATION = "E_VALIDATION"
    E_SOURCE_RESOLUTION_FAILED = "E_SOURCE_RESOLUTION_FAILED"
    E_LAUNCH_FAILED = "E_LAUNCH_FAILED"
    E_LAUNCH_TIMEOUT = "E_LAUNCH_TIMEOUT"
    E_UNIT_CRASHED = "E_UNIT_CRASHED"
    E_STOP_FAILED = "E_STOP_FAILED"

    # Uploads
    E_UPLOAD_TYPE_NOT_ALLOWED = "E_UPLOAD_TYPE_NOT_ALLOWED"
    E_UPLOAD_TOO_LARGE = "E_UPLOAD_TOO_LARGE"

    def __str__(self) -> str:
        return self.value


class AppError(Exception):
    """Error raised by domain code and rendered as an ApiFailure by the API layer.

    The caller location and a short error id are captured at raise time so the
    handler can log where the failure originated.
    """

    def __init__(
        self,
        errcode: AppErrorCode | str,
        errmesg: str,
        status_code: HttpStatusCode | int = HttpStatusCode.BAD_REQUEST,
    ):
        self.errcode = errcode.value if isinstance(errcode, AppErrorCode) else str(errcode)
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.erresid = uuid4().hex[:10]
        self.caller_info = self._capture_caller()
        super().__init__(f"{self.errcode}: {errmesg}")

    @staticmethod
    def _capture_caller() -> str:
        frame = inspect.currentframe()
        try:
            # Skip _capture_caller and __init__ (and subclass __init__ chains)
            caller = frame.f_back if frame else None
            while caller is not None and caller.f_code.co_name == "__init__":
                caller = caller.f_back
            if caller is None:
                return "unknown"
            module = caller.f_globals.get("__name__", caller.f_code.co_filename)
            return f"{module}:{caller.f_code.co_name}:{caller.f_lineno}"
        finally:
            del frame


__all__ = ["AppError", "AppErrorCode", "HttpStatusCode"]
