"""Common enums used across schemas."""

from enum import Enum


class StreamState(str, Enum):
    """Stream session lifecycle states.

    State Transition Flow:

    STARTING → RUNNING → STOPPING → STOPPED
        ↓          ↓          ↓
      ERROR      ERROR      ERROR

    STARTING → STOPPING is taken when a stop arrives while the launch is in flight.

    State Descriptions:
    - STARTING: Session persisted and quota reserved; the execution unit is being launched.
    - RUNNING: Unit launched and confirmed running. unit_id and started_at are set.
    - STOPPING: Stop requested; the unit is being torn down.
    - STOPPED: Unit torn down on request. Quota released.
    - ERROR: Launch failed, unit crashed, or stop escalated. Quota released.

    Terminal states (no further transitions): STOPPED, ERROR
    """

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def active_states(cls) -> list["StreamState"]:
        """States that hold a quota reservation."""
        return [
            StreamState.STARTING,
            StreamState.RUNNING,
            StreamState.STOPPING,
        ]

    @classmethod
    def terminal_states(cls) -> list["StreamState"]:
        return [StreamState.STOPPED, StreamState.ERROR]


class VideoSourceKind(str, Enum):
    LOCAL_FILE = "local_file"
    HOSTED_VIDEO = "hosted_video"
    WEB_VIDEO = "web_video"

    def __str__(self) -> str:
        return self.value


__all__ = ["StreamState", "VideoSourceKind"]
