from typing import Dict, Any, Callable, List, Optional, Tuple, TypeVar
import asyncio
import io
import posixpath
import tarfile
import time
import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
import structlog

from roundtable.domain.errors import SandboxError, SandboxUnavailableError
from roundtable.domain.sandbox.runtime import ExecOutput, SandboxRuntime

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# uid/gid of the `sandbox` user in docker/sandbox/Dockerfile
SANDBOX_OWNER: Tuple[int, int] = (1001, 1001)


def _decode(stream: Optional[bytes]) -> str:
    return stream.decode("utf-8", errors="replace") if stream else ""


def build_file_archive(path: str, content: str, owner: Tuple[int, int] = SANDBOX_OWNER) -> bytes:
    """Tar archive holding one file plus entries for its parent directories"""

    data = content.encode("utf-8")
    now = int(time.time())
    uid, gid = owner
    buffer = io.BytesIO()

    with tarfile.open(fileobj=buffer, mode="w") as archive:
        parent = posixpath.dirname(path)
        parents = []
        while parent:
            parents.append(parent)
            parent = posixpath.dirname(parent)

        for directory in reversed(parents):
            info = tarfile.TarInfo(name=directory)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            info.uid, info.gid = uid, gid
            info.mtime = now
            archive.addfile(info)

        info = tarfile.TarInfo(name=path)
        info.size = len(data)
        info.mode = 0o644
        info.uid, info.gid = uid, gid
        info.mtime = now
        archive.addfile(info, io.BytesIO(data))

    return buffer.getvalue()


class DockerSdkRuntime(SandboxRuntime):
    """Container runtime on the docker SDK; blocking SDK calls run in worker threads.

    Daemon errors arrive as typed exceptions, so a program's own stderr is
    never mistaken for a runtime failure.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None, file_owner: Tuple[int, int] = SANDBOX_OWNER):
        self._client = client
        self.file_owner = file_owner

    @property
    def client(self) -> docker.DockerClient:
        # Connecting contacts the daemon, so it happens on first use
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    async def _call(self, func: Callable[[], T], container_id: Optional[str] = None) -> T:
        try:
            return await asyncio.to_thread(func)
        except NotFound as e:
            if container_id:
                raise SandboxUnavailableError(f"Container {container_id} does not exist") from e
            raise SandboxError(e.explanation or str(e)) from e
        except APIError as e:
            if container_id and e.status_code == 409:
                raise SandboxUnavailableError(f"Container {container_id} is not running") from e
            raise SandboxError(e.explanation or str(e)) from e
        except DockerException as e:
            raise SandboxError(f"Docker unavailable: {e}") from e

    async def image_exists(self, image: str) -> bool:
        def lookup() -> bool:
            try:
                self.client.images.get(image)
                return True
            except ImageNotFound:
                return False

        return await self._call(lookup)

    async def build_image(self, image: str, context_path: str) -> None:
        await self._call(lambda: self.client.images.build(path=context_path, tag=image, rm=True))
        logger.info("Sandbox image built", image=image)

    async def create_container(
        self,
        image: str,
        command: List[str],
        memory_bytes: int,
        network_enabled: bool,
        working_dir: str,
        labels: Optional[Dict[str, str]] = None
    ) -> str:
        container = await self._call(lambda: self.client.containers.create(
            image,
            command=command,
            mem_limit=memory_bytes,
            network_mode="bridge" if network_enabled else "none",
            working_dir=working_dir,
            labels=labels or {}
        ))
        return container.id

    async def start_container(self, container_id: str) -> None:
        await self._call(lambda: self.client.containers.get(container_id).start(), container_id)

    async def exec(self, container_id: str, command: List[str], workdir: Optional[str] = None) -> ExecOutput:
        def run() -> ExecOutput:
            container = self.client.containers.get(container_id)
            result = container.exec_run(command, workdir=workdir, demux=True)
            stdout, stderr = result.output or (None, None)
            return ExecOutput(
                stdout=_decode(stdout),
                stderr=_decode(stderr),
                exit_code=result.exit_code if result.exit_code is not None else -1,
            )

        return await self._call(run, container_id)

    async def put_file(self, container_id: str, path: str, content: str, workdir: str) -> None:
        archive = build_file_archive(path, content, self.file_owner)

        def upload() -> bool:
            return self.client.containers.get(container_id).put_archive(workdir, archive)

        if not await self._call(upload, container_id):
            raise SandboxError(f"Failed to write {path}")

    async def stop_container(self, container_id: str) -> None:
        await self._call(lambda: self.client.containers.get(container_id).stop(timeout=2), container_id)

    async def remove_container(self, container_id: str) -> None:
        await self._call(lambda: self.client.containers.get(container_id).remove(force=True), container_id)

    async def inspect(self, container_id: str) -> Optional[Dict[str, Any]]:
        try:
            container = await self._call(lambda: self.client.containers.get(container_id), container_id)
        except SandboxUnavailableError:
            return None

        state = container.attrs.get("State", {})
        return {
            "id": container_id,
            "running": bool(state.get("Running")),
            "status": state.get("Status", container.status),
        }
