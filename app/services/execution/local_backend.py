"""Execution backend running each unit as a local process group (development).

Every launched unit is recorded as `<state_dir>/<unit_id>.json`, so the API
process that spawned a unit and the worker process that sweeps it see the
same set of units. Liveness is checked on the process group, not on the
in-process handle.
"""

from __future__ import annotations

import asyncio
import os
import signal
from asyncio.subprocess import DEVNULL, Process
from pathlib import Path

import orjson
from loguru import logger

from app.domain.utils.timeutil import utc_now

from .base import (
    ExecutionBackendError,
    ExecutionBackendKind,
    ExecutionUnit,
    LaunchError,
    Mount,
    ResourceLimits,
    UnitNotFoundError,
    UnitState,
    parse_memory,
)

STOP_POLL_SECONDS = 0.1


def _limit_memory(max_bytes: int):
    def apply():
        import resource

        resource.setrlimit(resource.RLIMIT_AS, (max_bytes, max_bytes))

    return apply


def _group_alive(pgid: int) -> bool:
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


class LocalProcessBackend:
    """Spawns units with start_new_session so each one owns its process group.

    Memory is bounded with RLIMIT_AS. CPU share and network isolation are not
    enforced; mounts are applied by rewriting container paths to host paths.
    """

    kind = ExecutionBackendKind.LOCAL

    def __init__(
        self,
        state_dir: str | Path = "/tmp/streamax/units",
        stop_grace_seconds: float = 10.0,
        startup_check_seconds: float = 1.0,
    ):
        self.state_dir = Path(state_dir)
        self.stop_grace_seconds = stop_grace_seconds
        self.startup_check_seconds = startup_check_seconds
        # Handles of units spawned by this process, for exit codes and reaping
        self._children: dict[str, Process] = {}

    async def close(self) -> None:
        """Stop the units this process spawned. Units of other processes are left alone."""
        for unit_id in list(self._children):
            try:
                await self.stop(unit_id)
            except UnitNotFoundError:
                pass

    # ==================== UNIT RECORDS ====================

    def _record_path(self, unit_id: str) -> Path:
        return self.state_dir / f"{unit_id}.json"

    def _write_record(self, unit_id: str, unit_name: str, pid: int) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        path = self._record_path(unit_id)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(
            orjson.dumps({"unit_id": unit_id, "name": unit_name, "pid": pid, "created_at": utc_now()})
        )
        tmp.replace(path)

    def _read_record(self, unit_id: str) -> dict | None:
        try:
            return orjson.loads(self._record_path(unit_id).read_bytes())
        except FileNotFoundError:
            return None
        except orjson.JSONDecodeError as e:
            raise ExecutionBackendError(f"corrupt unit record {unit_id}: {e}") from e

    def _remove_record(self, unit_id: str) -> None:
        self._record_path(unit_id).unlink(missing_ok=True)

    def _list_records(self) -> list[dict]:
        if not self.state_dir.is_dir():
            return []
        records = []
        for path in sorted(self.state_dir.glob("*.json")):
            try:
                records.append(orjson.loads(path.read_bytes()))
            except FileNotFoundError:
                continue
            except orjson.JSONDecodeError as e:
                logger.warning("Skipping corrupt unit record {}: {}", path.name, e)
        return records

    # ==================== LIFECYCLE ====================

    @staticmethod
    def _apply_mounts(command: list[str], mounts: list[Mount]) -> list[str]:
        rewritten = []
        for arg in command:
            for mount in mounts:
                target = mount.target.rstrip("/")
                if arg == target or arg.startswith(f"{target}/"):
                    arg = mount.source.rstrip("/") + arg[len(target):]
                    break
            rewritten.append(arg)
        return rewritten

    async def launch(
        self,
        unit_name: str,
        command: list[str],
        limits: ResourceLimits,
        network: str | None,
        mounts: list[Mount],
        labels: dict[str, str] | None = None,
    ) -> str:
        if network:
            logger.debug("Local unit {} ignores network {}", unit_name, network)

        argv = self._apply_mounts(command, mounts)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=DEVNULL,
                stdout=DEVNULL,
                stderr=DEVNULL,
                start_new_session=True,
                preexec_fn=_limit_memory(parse_memory(limits.memory)),
            )
        except OSError as e:
            raise LaunchError(f"spawn {unit_name} failed: {e}") from e

        # Inputs that cannot be opened make the encoder exit almost immediately
        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=self.startup_check_seconds)
        except asyncio.TimeoutError:
            returncode = None
        if returncode is not None:
            raise LaunchError(f"{unit_name} exited during startup with code {returncode}")

        unit_id = f"pid-{process.pid}"
        try:
            self._write_record(unit_id, unit_name, process.pid)
        except OSError as e:
            await self._signal_group(process.pid, unit_name, process)
            raise LaunchError(f"failed to record unit {unit_name}: {e}") from e

        self._children[unit_id] = process
        logger.info("Spawned local unit {} ({})", unit_name, unit_id)
        return unit_id

    async def _wait_gone(self, pgid: int, process: Process | None, timeout: float) -> bool:
        if process is not None:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
                return True
            except asyncio.TimeoutError:
                return False

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while _group_alive(pgid):
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(STOP_POLL_SECONDS)
        return True

    async def _signal_group(self, pgid: int, unit_name: str, process: Process | None) -> None:
        """SIGTERM the process group, then SIGKILL after the grace period."""
        for sig, wait in ((signal.SIGTERM, self.stop_grace_seconds), (signal.SIGKILL, 5.0)):
            try:
                os.killpg(pgid, sig)
            except ProcessLookupError:
                return
            if await self._wait_gone(pgid, process, wait):
                return
            logger.warning("Local unit {} ignored {}", unit_name, sig.name)

    async def stop(self, unit_id: str) -> None:
        record = self._read_record(unit_id)
        process = self._children.pop(unit_id, None)
        if record is None:
            raise UnitNotFoundError(f"local unit {unit_id} not found")

        unit_name, pid = record["name"], int(record["pid"])
        if process is not None and process.returncode is not None:
            logger.info("Local unit {} already exited with {}", unit_name, process.returncode)
        elif not _group_alive(pid):
            logger.info("Local unit {} already exited", unit_name)
        else:
            await self._signal_group(pid, unit_name, process)
            logger.info("Stopped local unit {}", unit_name)

        self._remove_record(unit_id)

    async def status(self, unit_id: str) -> UnitState:
        record = self._read_record(unit_id)
        if record is None:
            return UnitState.NOT_FOUND

        process = self._children.get(unit_id)
        if process is not None and process.returncode is not None:
            return UnitState.DEAD if process.returncode < 0 else UnitState.EXITED
        if _group_alive(int(record["pid"])):
            return UnitState.RUNNING
        return UnitState.EXITED

    async def list_by_prefix(self, prefix: str) -> list[ExecutionUnit]:
        return [
            ExecutionUnit(unit_id=record["unit_id"], name=record["name"], state=await self.status(record["unit_id"]))
            for record in self._list_records()
            if record["name"].startswith(prefix)
        ]
