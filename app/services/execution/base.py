"""Execution backend interface: isolated units running one transcoding command each."""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from pydantic import BaseModel


class ExecutionBackendKind(str, Enum):
    DOCKER = "docker"
    LOCAL = "local"

    def __str__(self) -> str:
        return self.value


class UnitState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"
    DEAD = "dead"
    NOT_FOUND = "not_found"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def crashed_states(cls) -> set["UnitState"]:
        """States the sweeper treats as a silent crash of a running session."""
        return {UnitState.EXITED, UnitState.DEAD, UnitState.NOT_FOUND}


class ResourceLimits(BaseModel):
    memory: str = "1g"
    cpus: float = 1.0


class Mount(BaseModel):
    source: str
    target: str
    read_only: bool = True


class ExecutionUnit(BaseModel):
    unit_id: str
    name: str
    state: UnitState


class ExecutionBackendError(Exception):
    """Runtime unreachable or returned an unexpected response."""


class LaunchError(ExecutionBackendError):
    """The unit could not be created or never reached the running state."""


class UnitNotFoundError(ExecutionBackendError):
    """The unit does not exist (already removed)."""


class ExecutionBackend(Protocol):
    kind: ExecutionBackendKind

    async def launch(
        self,
        unit_name: str,
        command: list[str],
        limits: ResourceLimits,
        network: str | None,
        mounts: list[Mount],
        labels: dict[str, str] | None = None,
    ) -> str: ...

    async def stop(self, unit_id: str) -> None: ...

    async def status(self, unit_id: str) -> UnitState: ...

    async def list_by_prefix(self, prefix: str) -> list[ExecutionUnit]: ...

    async def close(self) -> None: ...


def parse_memory(value: str) -> int:
    """Convert a docker-style memory size (`512m`, `1g`, `1048576`) to bytes."""
    units = {"b": 1, "k": 1024, "m": 1024**2, "g": 1024**3}
    text = value.strip().lower()
    if text and text[-1] in units:
        return int(float(text[:-1]) * units[text[-1]])
    return int(text)


__all__ = [
    "ExecutionBackend",
    "ExecutionBackendError",
    "ExecutionBackendKind",
    "ExecutionUnit",
    "LaunchError",
    "Mount",
    "ResourceLimits",
    "UnitNotFoundError",
    "UnitState",
    "parse_memory",
]
