"""Tests for DockerBackend against a mocked Engine API."""

import json

import httpx
import pytest

from app.services.execution import (
    DockerBackend,
    ExecutionBackendError,
    LaunchError,
    Mount,
    ResourceLimits,
    UnitNotFoundError,
    UnitState,
)

IMAGE = "jrottenberg/ffmpeg:4.4-alpine"


class FakeDockerDaemon:
    """Minimal Engine API: networks, images and containers kept in dicts."""

    def __init__(self):
        self.networks: dict[str, dict] = {}
        self.containers: dict[str, dict] = {}
        self.image_present = True
        self.start_state = "running"
        self.stop_status = 204
        self.requests: list[httpx.Request] = []
        self._next = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        assert path.startswith("/v1.43/")
        path = path[len("/v1.43"):]

        if method == "GET" and path.startswith("/networks/"):
            name = path.rsplit("/", 1)[1]
            if name in self.networks:
                return httpx.Response(200, json=self.networks[name])
            return httpx.Response(404, json={"message": f"network {name} not found"})

        if method == "POST" and path == "/networks/create":
            body = json.loads(request.content)
            self.networks[body["Name"]] = body
            return httpx.Response(201, json={"Id": "net1"})

        if method == "POST" and path == "/images/create":
            self.image_present = True
            return httpx.Response(200, text='{"status":"Pulling"}\n{"status":"Done"}\n')

        if method == "POST" and path == "/containers/create":
            if not self.image_present:
                return httpx.Response(404, json={"message": "No such image"})
            self._next += 1
            cid = f"{self._next:064x}"
            self.containers[cid] = {
                "name": request.url.params["name"],
                "body": json.loads(request.content),
                "state": "created",
            }
            return httpx.Response(201, json={"Id": cid})

        if path.startswith("/containers/") and path.count("/") == 3:
            _, _, cid, action = path.split("/")
            container = self.containers.get(cid)
            if container is None:
                return httpx.Response(404, json={"message": f"No such container: {cid}"})
            if method == "POST" and action == "start":
                container["state"] = self.start_state
                return httpx.Response(204)
            if method == "POST" and action == "stop":
                if self.stop_status == 204:
                    container["state"] = "exited"
                return httpx.Response(self.stop_status, json={"message": "stop failed"})
            if method == "GET" and action == "json":
                return httpx.Response(200, json={"Id": cid, "State": {"Status": container["state"]}})

        if method == "DELETE" and path.startswith("/containers/"):
            cid = path.rsplit("/", 1)[1]
            if self.containers.pop(cid, None) is None:
                return httpx.Response(404, json={"message": "No such container"})
            return httpx.Response(204)

        if method == "GET" and path == "/containers/json":
            needle = json.loads(request.url.params["filters"])["name"][0]
            items = [
                {"Id": cid, "Names": [f"/{c['name']}"], "State": c["state"]}
                for cid, c in self.containers.items()
                if needle in c["name"]
            ]
            return httpx.Response(200, json=items)

        return httpx.Response(500, json={"message": f"unexpected {method} {path}"})


@pytest.fixture
def daemon() -> FakeDockerDaemon:
    return FakeDockerDaemon()


@pytest.fixture
def backend(daemon: FakeDockerDaemon) -> DockerBackend:
    return DockerBackend(
        image=IMAGE,
        start_wait_seconds=0.05,
        stop_grace_seconds=5,
        poll_interval=0.01,
        transport=httpx.MockTransport(daemon.handler),
    )


async def launch(backend: DockerBackend, name: str = "streamax-ss_1") -> str:
    return await backend.launch(
        name,
        ["ffmpeg", "-re", "-i", "/videos/a.mp4", "-f", "flv", "rtmp://live.example.com/app/key"],
        ResourceLimits(memory="1g", cpus=1.0),
        "streamax_network",
        [Mount(source="/srv/videos", target="/videos")],
        labels={"streamax.session_id": "ss_1"},
    )


class TestLaunch:
    async def test_launch_creates_isolated_container(self, backend, daemon):
        """The container gets the limits, read-only mount and isolation network."""
        # Act
        unit_id = await launch(backend)

        # Assert
        container = daemon.containers[unit_id]
        body = container["body"]
        assert container["name"] == "streamax-ss_1"
        assert container["state"] == "running"
        assert body["Image"] == IMAGE
        assert body["Entrypoint"] == ["ffmpeg"]
        assert body["Cmd"][-1] == "rtmp://live.example.com/app/key"
        assert body["Labels"]["streamax.managed"] == "true"
        assert body["Labels"]["streamax.session_id"] == "ss_1"
        assert body["HostConfig"]["Memory"] == 1024**3
        assert body["HostConfig"]["NanoCpus"] == 1_000_000_000
        assert body["HostConfig"]["Binds"] == ["/srv/videos:/videos:ro"]
        assert body["HostConfig"]["NetworkMode"] == "streamax_network"

    async def test_network_created_once_without_icc(self, backend, daemon):
        await launch(backend, "streamax-ss_1")
        await launch(backend, "streamax-ss_2")

        creates = [r for r in daemon.requests if r.url.path.endswith("/networks/create")]
        assert len(creates) == 1
        options = daemon.networks["streamax_network"]["Options"]
        assert options["com.docker.network.bridge.enable_icc"] == "false"

    async def test_missing_image_is_pulled(self, backend, daemon):
        daemon.image_present = False

        unit_id = await launch(backend)

        assert unit_id in daemon.containers
        assert any(r.url.path.endswith("/images/create") for r in daemon.requests)

    async def test_unit_exiting_at_startup_is_removed(self, backend, daemon):
        """A unit that exits during startup fails the launch and is cleaned up."""
        daemon.start_state = "exited"

        with pytest.raises(LaunchError):
            await launch(backend)

        assert daemon.containers == {}

    async def test_unit_never_running_times_out(self, backend, daemon):
        daemon.start_state = "created"

        with pytest.raises(LaunchError, match="not running"):
            await launch(backend)

        assert daemon.containers == {}

    async def test_unreachable_runtime(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        backend = DockerBackend(image=IMAGE, transport=httpx.MockTransport(refuse))

        with pytest.raises(ExecutionBackendError, match="unreachable"):
            await launch(backend)


class TestStopAndStatus:
    async def test_stop_removes_container(self, backend, daemon):
        unit_id = await launch(backend)

        await backend.stop(unit_id)

        assert daemon.containers == {}
        stop_request = next(r for r in daemon.requests if r.url.path.endswith("/stop"))
        assert stop_request.url.params["t"] == "5"

    async def test_stop_missing_container(self, backend):
        with pytest.raises(UnitNotFoundError):
            await backend.stop("deadbeef" * 8)

    async def test_failed_graceful_stop_still_removes(self, backend, daemon):
        unit_id = await launch(backend)
        daemon.stop_status = 500

        await backend.stop(unit_id)

        assert daemon.containers == {}

    async def test_status_mapping(self, backend, daemon):
        unit_id = await launch(backend)
        assert await backend.status(unit_id) == UnitState.RUNNING

        daemon.containers[unit_id]["state"] = "exited"
        assert await backend.status(unit_id) == UnitState.EXITED

        daemon.containers[unit_id]["state"] = "dead"
        assert await backend.status(unit_id) == UnitState.DEAD

        assert await backend.status("0" * 64) == UnitState.NOT_FOUND

    async def test_list_by_prefix_filters_substring_matches(self, backend, daemon):
        """The runtime's name filter is a substring match; only true prefixes are returned."""
        first = await launch(backend, "streamax-ss_1")
        await launch(backend, "other-streamax-ss_2")

        units = await backend.list_by_prefix("streamax-")

        assert [(u.unit_id, u.name, u.state) for u in units] == [(first, "streamax-ss_1", UnitState.RUNNING)]
