from typing import Dict, List, Optional
import asyncio
import time
import uuid
import structlog

from roundtable.domain.errors import (
    ExecutionTimeoutError, InvalidPathError, SandboxError, SandboxUnavailableError
)
from roundtable.domain.models.sandbox import ExecutionResult, SandboxHandle, SandboxState
from roundtable.infrastructure.observability.logging import agent_logger
from .runtime import SandboxRuntime

logger = structlog.get_logger(__name__)


SANDBOX_IMAGE = "roundtable-sandbox:latest"
BUILD_CONTEXT = "docker/sandbox"
MEMORY_LIMIT_BYTES = 512 * 1024 * 1024
EXECUTION_TIMEOUT_SECONDS = 30.0
CLEANUP_TIMEOUT_SECONDS = 5.0
WORKING_DIR = "/workspace"
KEEP_ALIVE_COMMAND = ["tail", "-f", "/dev/null"]

TIMEOUT_EXIT_CODE = 124

# language -> (file extension, interpreter command)
LANGUAGE_RUNNERS: Dict[str, tuple] = {
    "javascript": (".js", ["node"]),
    "js": (".js", ["node"]),
    "typescript": (".ts", ["node", "--experimental-strip-types"]),
    "ts": (".ts", ["node", "--experimental-strip-types"]),
}


def validate_path(path: str) -> str:
    """Reject empty, absolute and traversing paths; returns the stripped path"""

    cleaned = (path or "").strip()
    if not cleaned:
        raise InvalidPathError("File path must not be empty")
    if cleaned.startswith("/") or cleaned.startswith("\\"):
        raise InvalidPathError(f"Absolute paths are not allowed: {path}")
    if ".." in cleaned:
        raise InvalidPathError(f"Path traversal is not allowed: {path}")
    if "\x00" in cleaned:
        raise InvalidPathError("File path contains a NUL byte")
    return cleaned


class SandboxManager:
    """Creates, runs code in, and tears down one isolated container per session"""

    def __init__(
        self,
        runtime: SandboxRuntime,
        image: str = SANDBOX_IMAGE,
        build_context: str = BUILD_CONTEXT,
        memory_limit_bytes: int = MEMORY_LIMIT_BYTES,
        execution_timeout: float = EXECUTION_TIMEOUT_SECONDS,
        working_dir: str = WORKING_DIR
    ):
        self.runtime = runtime
        self.image = image
        self.build_context = build_context
        self.memory_limit_bytes = memory_limit_bytes
        self.execution_timeout = execution_timeout
        self.working_dir = working_dir
        self.handles: Dict[str, SandboxHandle] = {}
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._image_lock = asyncio.Lock()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._session_locks:
            self._session_locks[session_id] = asyncio.Lock()
        return self._session_locks[session_id]

    async def _ensure_image(self):
        async with self._image_lock:
            if await self.runtime.image_exists(self.image):
                return
            logger.info("Building sandbox image", image=self.image, context=self.build_context)
            await self.runtime.build_image(self.image, self.build_context)

    async def create(self, session_id: str, enable_network: bool = False) -> SandboxHandle:
        """Start a new environment for a session that has none"""

        async with self._lock_for(session_id):
            existing = self.handles.get(session_id)
            if existing and existing.state == SandboxState.RUNNING:
                raise SandboxError(f"Session {session_id} already has sandbox {existing.id}")
            return await self._create_locked(session_id, enable_network)

    async def _create_locked(self, session_id: str, enable_network: bool) -> SandboxHandle:
        await self._ensure_image()

        container_id = await self.runtime.create_container(
            image=self.image,
            command=KEEP_ALIVE_COMMAND,
            memory_bytes=self.memory_limit_bytes,
            network_enabled=enable_network,
            working_dir=self.working_dir,
            labels={"roundtable.session": session_id}
        )

        try:
            await self.runtime.start_container(container_id)
        except SandboxError:
            await self._remove_quietly(container_id)
            raise

        handle = SandboxHandle(id=container_id, session_id=session_id, network_enabled=enable_network)
        self.handles[session_id] = handle

        logger.info(
            "Sandbox created",
            session_id=session_id,
            sandbox_id=container_id,
            network_enabled=enable_network
        )
        return handle

    async def _remove_quietly(self, container_id: str):
        try:
            await self.runtime.remove_container(container_id)
        except SandboxError as e:
            logger.warning("Failed to remove container", sandbox_id=container_id, error=str(e))

    def get_handle(self, session_id: str) -> SandboxHandle:
        handle = self.handles.get(session_id)
        if handle is None or handle.state != SandboxState.RUNNING:
            raise SandboxUnavailableError(f"No sandbox for session {session_id}")
        return handle

    async def ensure(self, session_id: str) -> SandboxHandle:
        """Reuse the session's live environment or create a replacement"""

        handle = self.handles.get(session_id)
        if handle and await self.exists(handle):
            return handle
        network = handle.network_enabled if handle else False
        return await self.recreate(session_id, enable_network=network)

    async def recreate(self, session_id: str, enable_network: bool = False) -> SandboxHandle:
        """Replace the session's environment, e.g. to toggle network access"""

        async with self._lock_for(session_id):
            old = self.handles.get(session_id)
            if old:
                try:
                    await self._destroy_locked(old)
                except SandboxError as e:
                    logger.warning(
                        "Ignoring destroy failure during recreate",
                        session_id=session_id,
                        sandbox_id=old.id,
                        error=str(e)
                    )
                    old.state = SandboxState.DESTROYED
                    self.handles.pop(session_id, None)

            return await self._create_locked(session_id, enable_network)

    async def exists(self, handle: SandboxHandle) -> bool:
        """Whether the handle still maps to a running environment"""

        if handle.state != SandboxState.RUNNING:
            return False
        try:
            info = await self.runtime.inspect(handle.id)
        except SandboxError as e:
            logger.warning("Sandbox inspect failed", sandbox_id=handle.id, error=str(e))
            return False
        return bool(info and info.get("running"))

    async def destroy(self, handle: SandboxHandle) -> bool:
        """Stop and remove the environment; False when it was already gone"""

        async with self._lock_for(handle.session_id):
            return await self._destroy_locked(handle)

    async def _destroy_locked(self, handle: SandboxHandle) -> bool:
        if handle.state == SandboxState.DESTROYED:
            return False

        removed = True
        try:
            info = await self.runtime.inspect(handle.id)
            if info is None:
                removed = False
            else:
                if info.get("running"):
                    await self.runtime.stop_container(handle.id)
                await self.runtime.remove_container(handle.id)
        except SandboxUnavailableError:
            removed = False

        handle.state = SandboxState.DESTROYED
        if self.handles.get(handle.session_id) is handle:
            del self.handles[handle.session_id]

        if removed:
            logger.info("Sandbox destroyed", session_id=handle.session_id, sandbox_id=handle.id)
        else:
            logger.info("Sandbox already gone", session_id=handle.session_id, sandbox_id=handle.id)
        return removed

    def _require_running(self, handle: SandboxHandle):
        if handle.state != SandboxState.RUNNING:
            raise SandboxUnavailableError(f"Sandbox {handle.id} has been destroyed")

    async def execute(self, handle: SandboxHandle, code: str, language: str = "javascript") -> ExecutionResult:
        """Run a code snippet under the wall-clock limit; failures come back as results"""

        started = time.monotonic()
        runner = LANGUAGE_RUNNERS.get((language or "").lower())

        if runner is None:
            return ExecutionResult(
                stderr=f"Language '{language}' not supported. Only JavaScript/TypeScript is supported.",
                exit_code=1,
                execution_time_ms=0,
                error="Unsupported language"
            )

        self._require_running(handle)

        extension, interpreter = runner
        file_name = f"code_{uuid.uuid4().hex}{extension}"

        try:
            await self.runtime.put_file(handle.id, file_name, code, self.working_dir)

            output = await asyncio.wait_for(
                self.runtime.exec(handle.id, interpreter + [file_name], workdir=self.working_dir),
                timeout=self.execution_timeout
            )
            result = ExecutionResult(
                stdout=output.stdout.strip(),
                stderr=output.stderr.strip(),
                exit_code=output.exit_code,
                execution_time_ms=self._elapsed_ms(started)
            )

        except asyncio.TimeoutError:
            error = ExecutionTimeoutError(self.execution_timeout)
            await self._kill_quietly(handle, file_name)
            result = ExecutionResult(
                stderr=str(error),
                exit_code=TIMEOUT_EXIT_CODE,
                execution_time_ms=self._elapsed_ms(started),
                error=str(error)
            )

        except SandboxUnavailableError:
            raise

        except SandboxError as e:
            result = ExecutionResult(
                stderr=str(e),
                exit_code=1,
                execution_time_ms=self._elapsed_ms(started),
                error=str(e)
            )

        finally:
            await self._cleanup_quietly(handle, ["rm", "-f", file_name])

        agent_logger.log_sandbox_execution(
            session_id=handle.session_id,
            sandbox_id=handle.id,
            language=language,
            exit_code=result.exit_code,
            duration_ms=result.execution_time_ms,
            error=result.error
        )
        return result

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    async def _kill_quietly(self, handle: SandboxHandle, file_name: str):
        await self._cleanup_quietly(handle, ["pkill", "-f", file_name])

    async def _cleanup_quietly(self, handle: SandboxHandle, command: List[str]):
        """Best-effort housekeeping command; failures are logged only"""

        try:
            await asyncio.wait_for(
                self.runtime.exec(handle.id, command, workdir=self.working_dir),
                timeout=CLEANUP_TIMEOUT_SECONDS
            )
        except (SandboxError, asyncio.TimeoutError) as e:
            logger.warning("Sandbox cleanup failed", sandbox_id=handle.id, command=command[0], error=str(e))

    async def write_file(self, handle: SandboxHandle, path: str, content: str) -> None:
        """Write a file relative to the working directory"""

        path = validate_path(path)
        self._require_running(handle)

        await self.runtime.put_file(handle.id, path, content, self.working_dir)

    async def read_file(self, handle: SandboxHandle, path: str) -> str:
        """Read a file relative to the working directory"""

        path = validate_path(path)
        self._require_running(handle)

        output = await self.runtime.exec(handle.id, ["cat", "--", path], workdir=self.working_dir)
        if output.exit_code != 0:
            raise SandboxError(output.stderr.strip() or f"Failed to read {path}")
        return output.stdout

    async def list_files(self, handle: SandboxHandle, path: str = ".") -> List[str]:
        """Entry names in a directory of the working tree"""

        path = "." if path in ("", ".") else validate_path(path)
        self._require_running(handle)

        output = await self.runtime.exec(handle.id, ["ls", "-1A", "--", path], workdir=self.working_dir)
        if output.exit_code != 0:
            raise SandboxError(output.stderr.strip() or f"Failed to list {path}")
        return [line for line in output.stdout.splitlines() if line.strip()]

    async def reset(self, handle: SandboxHandle) -> None:
        """Remove everything in the working directory, keeping the environment"""

        self._require_running(handle)

        output = await self.runtime.exec(
            handle.id,
            ["find", ".", "-mindepth", "1", "-delete"],
            workdir=self.working_dir
        )
        if output.exit_code != 0:
            raise SandboxError(output.stderr.strip() or "Failed to reset sandbox")

        logger.info("Sandbox reset", session_id=handle.session_id, sandbox_id=handle.id)

    async def destroy_all(self) -> int:
        """Tear down every tracked environment; used on shutdown"""

        count = 0
        for handle in list(self.handles.values()):
            try:
                if await self.destroy(handle):
                    count += 1
            except SandboxError as e:
                logger.error("Failed to destroy sandbox", sandbox_id=handle.id, error=str(e))
        return count
