"""Unit tests for stream and upload router endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient

from app.api.v1.dependency import User, get_current_user, get_stream_service, get_upload_service
from app.api.v1.routers.stream import router
from app.api.v1.routers.upload import router as upload_router
from app.domain.stream import QuotaInfo, StreamService, StreamSessionResponse, StreamStatusResponse
from app.schemas import LocalFileSource, StreamState
from app.services.execution import UnitState
from app.services.upload_storage import StoredUpload, UploadStorage
from app.shared.api.utils import app_error_handler, validation_exception_handler
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

RTMP = "rtmp://live.example.com/app/key123"


def make_session(status: StreamState = StreamState.RUNNING, **kwargs) -> StreamSessionResponse:
    now = datetime.now(timezone.utc)
    values = {
        "session_id": "ss_test",
        "user_id": "test_user_123",
        "rtmp_url": RTMP,
        "source": LocalFileSource(path="clip.mp4"),
        "unit_id": "c0ffee",
        "unit_name": "streamax-ss_test",
        "status": status,
        "created_at": now,
        "updated_at": now,
        "started_at": now,
    }
    values.update(kwargs)
    return StreamSessionResponse(**values)


@pytest.fixture
def mock_user() -> User:
    return User(user_id="test_user_123")


@pytest.fixture
def mock_stream_service() -> AsyncMock:
    return AsyncMock(spec=StreamService)


@pytest.fixture
def mock_upload_storage() -> AsyncMock:
    return AsyncMock(spec=UploadStorage)


@pytest.fixture
def test_app(mock_user: User, mock_stream_service: AsyncMock, mock_upload_storage: AsyncMock) -> FastAPI:
    """Create FastAPI test app with dependency overrides."""
    app = FastAPI()

    app.dependency_overrides[get_current_user] = lambda: mock_user
    app.dependency_overrides[get_stream_service] = lambda: mock_stream_service
    app.dependency_overrides[get_upload_service] = lambda: mock_upload_storage

    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]

    app.include_router(router)
    app.include_router(upload_router)
    return app


@pytest.fixture
def client(test_app: FastAPI) -> TestClient:
    return TestClient(test_app)


class TestCreateSession:
    def test_create_session_success(self, client: TestClient, mock_stream_service: AsyncMock):
        """Should create a session for the current user."""
        # Arrange
        mock_stream_service.create_session.return_value = make_session()

        # Act
        response = client.post(
            "/stream/create_session",
            json={"source": {"kind": "local_file", "path": "clip.mp4"}, "rtmp_url": RTMP},
        )

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["results"]["session_id"] == "ss_test"
        assert data["results"]["status"] == "running"
        assert "unit_id" not in data["results"]

        params = mock_stream_service.create_session.call_args.args[0]
        assert params.user_id == "test_user_123"
        assert params.source == LocalFileSource(path="clip.mp4")

    def test_create_session_quota_exceeded(self, client: TestClient, mock_stream_service: AsyncMock):
        """Should return 429 when the user is at their ceiling."""
        mock_stream_service.create_session.side_effect = AppError(
            errcode=AppErrorCode.E_QUOTA_EXCEEDED,
            errmesg="Concurrent stream limit reached for user test_user_123",
            status_code=HttpStatusCode.TOO_MANY_REQUESTS,
        )

        response = client.post(
            "/stream/create_session",
            json={"source": {"kind": "hosted_video", "url": "https://cdn.example.com/a.mp4"}, "rtmp_url": RTMP},
        )

        assert response.status_code == 429
        data = response.json()
        assert data["success"] is False
        assert data["errcode"] == "E_QUOTA_EXCEEDED"

    def test_create_session_launch_failed(self, client: TestClient, mock_stream_service: AsyncMock):
        mock_stream_service.create_session.side_effect = AppError(
            errcode=AppErrorCode.E_LAUNCH_FAILED,
            errmesg="Failed to launch stream",
            status_code=HttpStatusCode.BAD_GATEWAY,
        )

        response = client.post(
            "/stream/create_session",
            json={"source": {"kind": "local_file", "path": "clip.mp4"}, "rtmp_url": RTMP},
        )

        assert response.status_code == 502
        assert response.json()["errcode"] == "E_LAUNCH_FAILED"

    def test_create_session_unknown_source_kind(self, client: TestClient, mock_stream_service: AsyncMock):
        """Should reject a source with an unknown kind before reaching the service."""
        response = client.post(
            "/stream/create_session",
            json={"source": {"kind": "ftp_file", "path": "clip.mp4"}, "rtmp_url": RTMP},
        )

        assert response.status_code == 422
        assert response.json()["errcode"] == "E_INVALID_PARAMS"
        mock_stream_service.create_session.assert_not_called()


class TestStopSession:
    def test_stop_session_success(self, client: TestClient, mock_stream_service: AsyncMock):
        mock_stream_service.stop_session.return_value = make_session(StreamState.STOPPED)

        response = client.post("/stream/stop_session", json={"session_id": "ss_test"})

        assert response.status_code == 200
        assert response.json()["results"]["status"] == "stopped"
        mock_stream_service.stop_session.assert_awaited_once_with("ss_test", user_id="test_user_123")

    def test_stop_session_not_found(self, client: TestClient, mock_stream_service: AsyncMock):
        mock_stream_service.stop_session.side_effect = AppError(
            errcode=AppErrorCode.E_SESSION_NOT_FOUND,
            errmesg="Session not found: ss_missing",
            status_code=HttpStatusCode.NOT_FOUND,
        )

        response = client.post("/stream/stop_session", json={"session_id": "ss_missing"})

        assert response.status_code == 404
        assert response.json()["errcode"] == "E_SESSION_NOT_FOUND"


class TestStatusAndList:
    def test_get_session_status(self, client: TestClient, mock_stream_service: AsyncMock):
        mock_stream_service.get_status.return_value = StreamStatusResponse(
            session=make_session(), unit_state=UnitState.RUNNING, is_healthy=True
        )

        response = client.get("/stream/get_session_status", params={"session_id": "ss_test"})

        assert response.status_code == 200
        results = response.json()["results"]
        assert results["unit_state"] == "running"
        assert results["is_healthy"] is True
        assert results["session"]["session_id"] == "ss_test"

    def test_list_sessions_with_status_filter(self, client: TestClient, mock_stream_service: AsyncMock):
        mock_stream_service.list_sessions.return_value = [make_session()]

        response = client.get("/stream/list_sessions", params={"status": ["running", "starting"]})

        assert response.status_code == 200
        assert len(response.json()["results"]["sessions"]) == 1
        kwargs = mock_stream_service.list_sessions.call_args.kwargs
        assert kwargs["statuses"] == [StreamState.RUNNING, StreamState.STARTING]

    def test_get_quota(self, client: TestClient, mock_stream_service: AsyncMock):
        mock_stream_service.get_quota.return_value = QuotaInfo(user_id="test_user_123", allowed=2, active=1)

        response = client.get("/stream/get_quota")

        assert response.status_code == 200
        assert response.json()["results"] == {"user_id": "test_user_123", "allowed": 2, "active": 1}


class TestUploadVideo:
    def test_upload_video(self, client: TestClient, mock_upload_storage: AsyncMock):
        mock_upload_storage.save.return_value = StoredUpload(
            path="test_user_123-1700000000000-abcd1234.mp4", size=4, content_type="video/mp4"
        )

        response = client.post(
            "/upload/upload_video",
            files={"file": ("clip.mp4", b"data", "video/mp4")},
        )

        assert response.status_code == 200
        assert response.json()["results"]["path"] == "test_user_123-1700000000000-abcd1234.mp4"
        assert mock_upload_storage.save.call_args.kwargs["user_id"] == "test_user_123"


class TestCurrentUser:
    def test_missing_user_header_rejected(self, mock_stream_service: AsyncMock):
        """Without the gateway header the request is unauthorized."""
        app = FastAPI()
        app.dependency_overrides[get_stream_service] = lambda: mock_stream_service
        app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
        app.include_router(router)

        response = TestClient(app).get("/stream/get_quota")

        assert response.status_code == 401
        assert response.json()["errcode"] == "E_BAD_TOKEN"

    def test_user_header_used(self, mock_stream_service: AsyncMock):
        app = FastAPI()
        app.dependency_overrides[get_stream_service] = lambda: mock_stream_service
        app.include_router(router)
        mock_stream_service.get_quota.return_value = QuotaInfo(user_id="gw_user", allowed=1, active=0)

        response = TestClient(app).get("/stream/get_quota", headers={"X-User-Id": "gw_user"})

        assert response.status_code == 200
        mock_stream_service.get_quota.assert_awaited_once_with("gw_user")
