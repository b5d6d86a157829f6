from pydantic import BaseModel

from app.shared.config import config


class AppEnvironConfig(BaseModel):
    # Storage labels resolved through MONGO_URL_<LABEL> / REDIS_URL_<LABEL>
    STREAMAX_MONGO_LABEL: str = (config.get("STREAMAX_MONGO_LABEL") or "").strip() or "stream_primary"
    STREAMAX_REDIS_LABEL: str = (config.get("STREAMAX_REDIS_LABEL") or "").strip() or "default"

    # Execution backend: "docker" (container runtime) or "local" (process group)
    STREAM_BACKEND: str = (config.get("STREAM_BACKEND") or "").strip().lower() or "docker"
    STREAM_DOCKER_SOCKET: str = (
        config.get("STREAM_DOCKER_SOCKET") or ""
    ).strip() or "/var/run/docker.sock"
    STREAM_DOCKER_API_VERSION: str = (config.get("STREAM_DOCKER_API_VERSION") or "").strip() or "v1.43"
    STREAM_FFMPEG_IMAGE: str = (
        config.get("STREAM_FFMPEG_IMAGE") or ""
    ).strip() or "jrottenberg/ffmpeg:4.4-alpine"
    STREAM_FFMPEG_BIN: str = (config.get("STREAM_FFMPEG_BIN") or "").strip() or "ffmpeg"
    STREAM_NETWORK: str = (config.get("STREAM_NETWORK") or "").strip() or "streamax_network"
    STREAM_UNIT_PREFIX: str = (config.get("STREAM_UNIT_PREFIX") or "").strip() or "streamax"
    # Unit records of the local backend, shared by the API and worker processes
    STREAM_LOCAL_STATE_DIR: str = (config.get("STREAM_LOCAL_STATE_DIR") or "").strip() or "/tmp/streamax/units"

    # Per-unit resource policy
    STREAM_MEMORY_LIMIT: str = (config.get("STREAM_MEMORY_LIMIT") or "").strip() or "1g"
    STREAM_CPU_LIMIT: float = float((config.get("STREAM_CPU_LIMIT") or "").strip() or 1.0)

    # Uploaded videos: host directory and the path units see it under
    STREAM_VIDEOS_DIR: str = (config.get("STREAM_VIDEOS_DIR") or "").strip() or "/tmp/streamax/videos"
    STREAM_VIDEOS_MOUNT: str = (config.get("STREAM_VIDEOS_MOUNT") or "").strip() or "/videos"

    # Lifecycle timing
    STREAM_LAUNCH_TIMEOUT_SECONDS: int = int(
        (config.get("STREAM_LAUNCH_TIMEOUT_SECONDS") or "").strip() or 90
    )
    STREAM_START_WAIT_SECONDS: float = float(
        (config.get("STREAM_START_WAIT_SECONDS") or "").strip() or 30
    )
    STREAM_STOP_GRACE_SECONDS: int = int((config.get("STREAM_STOP_GRACE_SECONDS") or "").strip() or 10)

    # Reconciliation sweeper
    STREAM_SWEEP_CRON: str = (config.get("STREAM_SWEEP_CRON") or "").strip() or "*/30 * * * * * *"
    STREAM_SWEEP_CONCURRENCY: int = int((config.get("STREAM_SWEEP_CONCURRENCY") or "").strip() or 8)

    # Web video resolution
    STREAM_RESOLVE_MAX_HEIGHT: int = int((config.get("STREAM_RESOLVE_MAX_HEIGHT") or "").strip() or 720)

    # Quota for users without an explicit ceiling
    STREAM_DEFAULT_ALLOWED: int = int((config.get("STREAM_DEFAULT_ALLOWED") or "").strip() or 0)

    # Uploads
    UPLOAD_MAX_BYTES: int = int((config.get("UPLOAD_MAX_BYTES") or "").strip() or 2 * 1024 * 1024 * 1024)
    UPLOAD_RETENTION_HOURS: int = int((config.get("UPLOAD_RETENTION_HOURS") or "").strip() or 24)


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
