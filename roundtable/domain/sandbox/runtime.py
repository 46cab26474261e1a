from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from pydantic import BaseModel


class ExecOutput(BaseModel):
    """Separated output streams of one command run inside a container"""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


class SandboxRuntime(ABC):
    """Container runtime primitives the sandbox manager is written against.

    Implementations raise SandboxUnavailableError when a container id no
    longer exists and SandboxError for any other runtime failure.
    """

    @abstractmethod
    async def image_exists(self, image: str) -> bool:
        pass

    @abstractmethod
    async def build_image(self, image: str, context_path: str) -> None:
        pass

    @abstractmethod
    async def create_container(
        self,
        image: str,
        command: List[str],
        memory_bytes: int,
        network_enabled: bool,
        working_dir: str,
        labels: Optional[Dict[str, str]] = None
    ) -> str:
        """Create a stopped container and return its id"""
        pass

    @abstractmethod
    async def start_container(self, container_id: str) -> None:
        pass

    @abstractmethod
    async def exec(self, container_id: str, command: List[str], workdir: Optional[str] = None) -> ExecOutput:
        """Run a command in a running container.

        The program's own exit code and output come back in ExecOutput;
        only daemon-side failures raise.
        """
        pass

    @abstractmethod
    async def put_file(self, container_id: str, path: str, content: str, workdir: str) -> None:
        """Write a text file at `path` relative to `workdir`, creating parent directories"""
        pass

    @abstractmethod
    async def stop_container(self, container_id: str) -> None:
        pass

    @abstractmethod
    async def remove_container(self, container_id: str) -> None:
        pass

    @abstractmethod
    async def inspect(self, container_id: str) -> Optional[Dict[str, Any]]:
        """Container state as {"id", "running", "status"}, or None when it does not exist"""
        pass
