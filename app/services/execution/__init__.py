"""Execution backends: a tagged choice between the container runtime and local process groups."""

from app.app_config import AppEnvironConfig, get_app_environ_config

from .base import (
    ExecutionBackend,
    ExecutionBackendError,
    ExecutionBackendKind,
    ExecutionUnit,
    LaunchError,
    Mount,
    ResourceLimits,
    UnitNotFoundError,
    UnitState,
)
from .docker_backend import DockerBackend
from .local_backend import LocalProcessBackend


def build_execution_backend(cfg: AppEnvironConfig | None = None) -> ExecutionBackend:
    """Create the backend selected by STREAM_BACKEND."""
    cfg = cfg or get_app_environ_config()
    kind = ExecutionBackendKind(cfg.STREAM_BACKEND)

    if kind == ExecutionBackendKind.LOCAL:
        return LocalProcessBackend(
            state_dir=cfg.STREAM_LOCAL_STATE_DIR,
            stop_grace_seconds=cfg.STREAM_STOP_GRACE_SECONDS,
        )

    return DockerBackend(
        image=cfg.STREAM_FFMPEG_IMAGE,
        socket_path=cfg.STREAM_DOCKER_SOCKET,
        api_version=cfg.STREAM_DOCKER_API_VERSION,
        start_wait_seconds=cfg.STREAM_START_WAIT_SECONDS,
        stop_grace_seconds=cfg.STREAM_STOP_GRACE_SECONDS,
    )


__all__ = [
    "DockerBackend",
    "ExecutionBackend",
    "ExecutionBackendError",
    "ExecutionBackendKind",
    "ExecutionUnit",
    "LaunchError",
    "LocalProcessBackend",
    "Mount",
    "ResourceLimits",
    "UnitNotFoundError",
    "UnitState",
    "build_execution_backend",
]
