"""Execution backend on the Docker Engine HTTP API (unix socket)."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import orjson
from loguru import logger

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

_STATE_MAP = {
    "created": UnitState.CREATED,
    "running": UnitState.RUNNING,
    "restarting": UnitState.RUNNING,
    "paused": UnitState.RUNNING,
    "removing": UnitState.EXITED,
    "exited": UnitState.EXITED,
    "dead": UnitState.DEAD,
}


class DockerBackend:
    """Runs each unit as a container with bounded memory/CPU on a shared bridge network.

    The network is created with inter-container communication disabled so units
    reach the outside but not each other.
    """

    kind = ExecutionBackendKind.DOCKER

    def __init__(
        self,
        image: str,
        socket_path: str = "/var/run/docker.sock",
        api_version: str = "v1.43",
        start_wait_seconds: float = 30.0,
        stop_grace_seconds: int = 10,
        poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.image = image
        self.api_version = api_version
        self.start_wait_seconds = start_wait_seconds
        self.stop_grace_seconds = stop_grace_seconds
        self.poll_interval = poll_interval
        self._client = httpx.AsyncClient(
            base_url="http://docker",
            transport=transport or httpx.AsyncHTTPTransport(uds=socket_path),
            timeout=30,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        timeout: float | None = -1,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {"params": params, "json": json}
        if timeout != -1:
            kwargs["timeout"] = timeout
        try:
            return await self._client.request(method, f"/{self.api_version}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise ExecutionBackendError(f"container runtime unreachable: {method} {path}: {e!r}") from e

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict) and data.get("message"):
            return data["message"]
        return response.text

    # ==================== NETWORK / IMAGE ====================

    async def ensure_network(self, network: str) -> None:
        """Create the isolation network if it does not exist yet."""
        response = await self._request("GET", f"/networks/{network}")
        if response.status_code == 200:
            return
        if response.status_code != 404:
            raise ExecutionBackendError(
                f"inspect network {network} failed: {response.status_code} {self._error_text(response)}"
            )

        body = {
            "Name": network,
            "Driver": "bridge",
            "CheckDuplicate": True,
            "Options": {"com.docker.network.bridge.enable_icc": "false"},
            "Labels": {"streamax.managed": "true"},
        }
        response = await self._request("POST", "/networks/create", json=body)
        # 409: created concurrently by another launch
        if response.status_code not in (201, 409):
            raise ExecutionBackendError(
                f"create network {network} failed: {response.status_code} {self._error_text(response)}"
            )
        logger.info("Ensured isolation network {}", network)

    async def _pull_image(self) -> None:
        repository, _, tag = self.image.rpartition(":")
        if not repository or "/" in tag:
            repository, tag = self.image, "latest"

        logger.info("Pulling image {}:{}", repository, tag)
        response = await self._request(
            "POST", "/images/create", params={"fromImage": repository, "tag": tag}, timeout=None
        )
        if response.status_code != 200:
            raise LaunchError(f"pull {self.image} failed: {response.status_code} {self._error_text(response)}")

        # Progress is streamed as JSON lines; failures arrive as an "error" entry
        for line in response.text.splitlines():
            if not line.strip():
                continue
            event = orjson.loads(line)
            if "error" in event:
                raise LaunchError(f"pull {self.image} failed: {event['error']}")

    # ==================== LIFECYCLE ====================

    def _container_body(
        self,
        command: list[str],
        limits: ResourceLimits,
        network: str | None,
        mounts: list[Mount],
        labels: dict[str, str] | None,
    ) -> dict[str, Any]:
        host_config: dict[str, Any] = {
            "Memory": parse_memory(limits.memory),
            "NanoCpus": int(limits.cpus * 1_000_000_000),
            "Binds": [f"{m.source}:{m.target}:{'ro' if m.read_only else 'rw'}" for m in mounts],
            "AutoRemove": False,
        }
        if network:
            host_config["NetworkMode"] = network

        return {
            "Image": self.image,
            "Entrypoint": command[:1],
            "Cmd": command[1:],
            "Labels": {"streamax.managed": "true", **(labels or {})},
            "HostConfig": host_config,
        }

    async def _create_container(self, unit_name: str, body: dict[str, Any]) -> str:
        response = await self._request("POST", "/containers/create", params={"name": unit_name}, json=body)
        if response.status_code == 404:
            await self._pull_image()
            response = await self._request("POST", "/containers/create", params={"name": unit_name}, json=body)

        if response.status_code != 201:
            raise LaunchError(
                f"create {unit_name} failed: {response.status_code} {self._error_text(response)}"
            )
        return response.json()["Id"]

    async def _wait_until_running(self, unit_id: str, unit_name: str) -> None:
        deadline = time.monotonic() + self.start_wait_seconds
        while True:
            state = await self.status(unit_id)
            if state == UnitState.RUNNING:
                return
            if state in UnitState.crashed_states():
                raise LaunchError(f"{unit_name} failed to start (state: {state})")
            if time.monotonic() >= deadline:
                raise LaunchError(f"{unit_name} not running after {self.start_wait_seconds}s (state: {state})")
            await asyncio.sleep(self.poll_interval)

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
            await self.ensure_network(network)

        body = self._container_body(command, limits, network, mounts, labels)
        unit_id = await self._create_container(unit_name, body)
        logger.info("Created container {} ({})", unit_name, unit_id[:12])

        try:
            response = await self._request("POST", f"/containers/{unit_id}/start")
            if response.status_code not in (204, 304):
                raise LaunchError(
                    f"start {unit_name} failed: {response.status_code} {self._error_text(response)}"
                )
            await self._wait_until_running(unit_id, unit_name)
        except ExecutionBackendError:
            try:
                await self._remove(unit_id)
            except ExecutionBackendError as cleanup_error:
                logger.warning("Failed to remove unstarted container {}: {}", unit_name, cleanup_error)
            raise

        logger.info("Container {} is running", unit_name)
        return unit_id

    async def _remove(self, unit_id: str) -> bool:
        """Force-remove a container. Returns False when it does not exist."""
        response = await self._request("DELETE", f"/containers/{unit_id}", params={"force": "true"})
        if response.status_code == 404:
            return False
        if response.status_code not in (200, 204):
            raise ExecutionBackendError(
                f"remove {unit_id[:12]} failed: {response.status_code} {self._error_text(response)}"
            )
        return True

    async def stop(self, unit_id: str) -> None:
        """Graceful stop, then forced removal. Both steps always run."""
        found = True
        try:
            response = await self._request(
                "POST",
                f"/containers/{unit_id}/stop",
                params={"t": self.stop_grace_seconds},
                timeout=self.stop_grace_seconds + 30,
            )
            if response.status_code == 404:
                found = False
            elif response.status_code not in (204, 304):
                logger.warning(
                    "Graceful stop of {} failed: {} {}",
                    unit_id[:12], response.status_code, self._error_text(response),
                )
        except ExecutionBackendError as e:
            logger.warning("Graceful stop of {} failed: {}", unit_id[:12], e)

        removed = await self._remove(unit_id)
        if not removed and not found:
            raise UnitNotFoundError(f"container {unit_id[:12]} not found")
        logger.info("Stopped and removed container {}", unit_id[:12])

    async def status(self, unit_id: str) -> UnitState:
        response = await self._request("GET", f"/containers/{unit_id}/json")
        if response.status_code == 404:
            return UnitState.NOT_FOUND
        if response.status_code != 200:
            raise ExecutionBackendError(
                f"inspect {unit_id[:12]} failed: {response.status_code} {self._error_text(response)}"
            )
        raw = (response.json().get("State") or {}).get("Status", "")
        return _STATE_MAP.get(raw, UnitState.CREATED)

    async def list_by_prefix(self, prefix: str) -> list[ExecutionUnit]:
        filters = orjson.dumps({"name": [prefix]}).decode()
        response = await self._request("GET", "/containers/json", params={"all": "true", "filters": filters})
        if response.status_code != 200:
            raise ExecutionBackendError(
                f"list containers failed: {response.status_code} {self._error_text(response)}"
            )

        units = []
        for item in response.json():
            names = [n.lstrip("/") for n in item.get("Names") or []]
            name = next((n for n in names if n.startswith(prefix)), None)
            # The name filter is a substring match; keep true prefix matches only
            if name is None:
                continue
            units.append(
                ExecutionUnit(
                    unit_id=item["Id"],
                    name=name,
                    state=_STATE_MAP.get(item.get("State", ""), UnitState.CREATED),
                )
            )
        return units
