import io
import tarfile
import docker
import pytest
import requests
from docker.errors import APIError, BuildError, DockerException, ImageNotFound, NotFound
from docker.models.containers import ExecResult

from roundtable.domain.errors import SandboxError, SandboxUnavailableError
from roundtable.domain.sandbox.runtime import ExecOutput
from roundtable.infrastructure.config.settings import Settings
from roundtable.infrastructure.sandbox.docker_runtime import DockerSdkRuntime, build_file_archive


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("OLLAMA_BASE_URL", "ROUNDTABLE_SANDBOX_MEMORY_MB", "ROUNDTABLE_EXECUTE_CODE"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.generation.base_url == "http://localhost:11434"
        assert settings.scheduler.max_attempts == 3
        assert settings.scheduler.repetition_threshold == 0.5
        assert settings.sandbox.memory_limit_bytes == 512 * 1024 * 1024
        assert settings.sandbox.execution_timeout == 30.0
        assert settings.memory.max_memories == 1000

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu-box:11434")
        monkeypatch.setenv("ROUNDTABLE_SPEAKING_DELAY", "0.5")
        monkeypatch.setenv("ROUNDTABLE_EXECUTE_CODE", "true")
        monkeypatch.setenv("ROUNDTABLE_SANDBOX_MEMORY_MB", "256")
        monkeypatch.setenv("ROUNDTABLE_CORS_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("ROUNDTABLE_STORAGE_DIR", "")

        settings = Settings.from_env()

        assert settings.generation.base_url == "http://gpu-box:11434"
        assert settings.scheduler.speaking_delay == 0.5
        assert settings.scheduler.execute_code is True
        assert settings.sandbox.memory_limit_bytes == 256 * 1024 * 1024
        assert settings.server.cors_origins == ["http://a.test", "http://b.test"]
        assert settings.memory.storage_dir is None



def api_error(status_code: int, explanation: str) -> APIError:
    response = requests.Response()
    response.status_code = status_code
    response.reason = explanation
    response.url = "http+docker://localhost/containers"
    return APIError(explanation, response=response, explanation=explanation)


class FakeContainer:
    def __init__(self, container_id: str, running: bool = True):
        self.id = container_id
        self.status = "running" if running else "exited"
        self.attrs = {"State": {"Running": running, "Status": self.status}}
        self.exec_result = ExecResult(0, (None, None))
        self.exec_error = None
        self.exec_calls = []
        self.archives = []
        self.removed_with_force = None
        self.stopped = False

    def exec_run(self, cmd, workdir=None, demux=False):
        self.exec_calls.append((cmd, workdir, demux))
        if self.exec_error:
            raise self.exec_error
        return self.exec_result

    def put_archive(self, path, data):
        self.archives.append((path, data))
        return True

    def start(self):
        self.status = "running"

    def stop(self, timeout=10):
        self.stopped = True

    def remove(self, force=False):
        self.removed_with_force = force


class FakeContainers:
    def __init__(self):
        self.items = {}
        self.created = []

    def get(self, container_id):
        if container_id not in self.items:
            raise NotFound(f"No such container: {container_id}")
        return self.items[container_id]

    def create(self, image, **kwargs):
        self.created.append((image, kwargs))
        container = FakeContainer("abc123", running=False)
        self.items[container.id] = container
        return container


class FakeImages:
    def __init__(self, present=True, build_error=None):
        self.present = present
        self.build_error = build_error
        self.builds = []

    def get(self, name):
        if not self.present:
            raise ImageNotFound(f"No such image: {name}")
        return object()

    def build(self, **kwargs):
        self.builds.append(kwargs)
        if self.build_error:
            raise self.build_error
        return object(), []


class FakeDockerClient:
    def __init__(self, images=None):
        self.containers = FakeContainers()
        self.images = images or FakeImages()

    def add(self, container_id, running=True):
        container = FakeContainer(container_id, running)
        self.containers.items[container_id] = container
        return container


@pytest.mark.asyncio
class TestDockerSdkRuntime:
    async def test_create_container_arguments(self):
        client = FakeDockerClient()
        runtime = DockerSdkRuntime(client)

        container_id = await runtime.create_container(
            "roundtable-sandbox:latest", ["tail", "-f", "/dev/null"],
            memory_bytes=536870912, network_enabled=False, working_dir="/workspace",
            labels={"roundtable.session": "s1"}
        )

        assert container_id == "abc123"
        image, kwargs = client.containers.created[0]
        assert image == "roundtable-sandbox:latest"
        assert kwargs == {
            "command": ["tail", "-f", "/dev/null"],
            "mem_limit": 536870912,
            "network_mode": "none",
            "working_dir": "/workspace",
            "labels": {"roundtable.session": "s1"},
        }

    async def test_network_enabled_uses_bridge(self):
        client = FakeDockerClient()

        await DockerSdkRuntime(client).create_container("img", ["sh"], 1, True, "/workspace")

        assert client.containers.created[0][1]["network_mode"] == "bridge"

    async def test_exec_separates_streams(self):
        client = FakeDockerClient()
        container = client.add("abc")
        container.exec_result = ExecResult(0, (b"hello\n", b"warning\n"))

        output = await DockerSdkRuntime(client).exec("abc", ["node", "a.js"], workdir="/workspace")

        assert output == ExecOutput(stdout="hello\n", stderr="warning\n", exit_code=0)
        assert container.exec_calls == [(["node", "a.js"], "/workspace", True)]

    async def test_program_stderr_is_never_a_runtime_failure(self):
        client = FakeDockerClient()
        container = client.add("abc")
        container.exec_result = ExecResult(1, (None, b"Error: server is not running\nNo such container: db\n"))

        output = await DockerSdkRuntime(client).exec("abc", ["node", "a.js"])

        assert output.exit_code == 1
        assert "server is not running" in output.stderr

    async def test_exec_on_missing_container(self):
        with pytest.raises(SandboxUnavailableError, match="does not exist"):
            await DockerSdkRuntime(FakeDockerClient()).exec("abc", ["ls"])

    async def test_exec_on_stopped_container(self):
        client = FakeDockerClient()
        client.add("abc").exec_error = api_error(409, "Container abc is not running")

        with pytest.raises(SandboxUnavailableError, match="is not running"):
            await DockerSdkRuntime(client).exec("abc", ["ls"])

    async def test_daemon_error_is_a_sandbox_error(self):
        client = FakeDockerClient()
        client.add("abc").exec_error = api_error(500, "OCI runtime exec failed")

        with pytest.raises(SandboxError, match="OCI runtime exec failed") as raised:
            await DockerSdkRuntime(client).exec("abc", ["ls"])
        assert not isinstance(raised.value, SandboxUnavailableError)

    async def test_put_file_uploads_owned_archive(self):
        client = FakeDockerClient()
        container = client.add("abc")

        await DockerSdkRuntime(client).put_file("abc", "src/app.js", "console.log(1)", "/workspace")

        path, data = container.archives[0]
        assert path == "/workspace"
        with tarfile.open(fileobj=io.BytesIO(data)) as archive:
            members = archive.getmembers()
            assert [m.name for m in members] == ["src", "src/app.js"]
            assert members[0].isdir()
            assert {(m.uid, m.gid) for m in members} == {(1001, 1001)}
            assert archive.extractfile("src/app.js").read() == b"console.log(1)"

    async def test_put_file_on_missing_container(self):
        with pytest.raises(SandboxUnavailableError):
            await DockerSdkRuntime(FakeDockerClient()).put_file("abc", "a.js", "x", "/workspace")

    async def test_inspect(self):
        client = FakeDockerClient()
        client.add("abc")
        runtime = DockerSdkRuntime(client)

        assert await runtime.inspect("abc") == {"id": "abc", "running": True, "status": "running"}
        assert await runtime.inspect("gone") is None

    async def test_remove_forces_and_missing_fails(self):
        client = FakeDockerClient()
        container = client.add("abc")
        runtime = DockerSdkRuntime(client)

        await runtime.remove_container("abc")
        assert container.removed_with_force is True

        with pytest.raises(SandboxUnavailableError):
            await runtime.remove_container("gone")

    async def test_build_failure(self):
        images = FakeImages(present=False, build_error=BuildError("failed to solve", []))
        runtime = DockerSdkRuntime(FakeDockerClient(images))

        assert not await runtime.image_exists("img")
        with pytest.raises(SandboxError, match="failed to solve"):
            await runtime.build_image("img", "docker/sandbox")
        assert images.builds == [{"path": "docker/sandbox", "tag": "img", "rm": True}]

    async def test_unreachable_daemon(self, monkeypatch):
        def refuse():
            raise DockerException("Error while fetching server API version")

        monkeypatch.setattr(docker, "from_env", refuse)

        with pytest.raises(SandboxError, match="Docker unavailable"):
            await DockerSdkRuntime().image_exists("img")


def test_archive_for_top_level_file_has_no_directories():
    with tarfile.open(fileobj=io.BytesIO(build_file_archive("index.ts", "let x = 1"))) as archive:
        assert archive.getnames() == ["index.ts"]
