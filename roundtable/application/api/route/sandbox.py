from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from roundtable.application.api.dependencies import get_container, get_sandbox_manager
from roundtable.application.container import Container
from roundtable.domain.models.sandbox import ExecutionResult, SandboxHandle
from roundtable.domain.sandbox.sandbox_manager import SandboxManager

router = APIRouter(prefix="/api/v1/sessions/{session_id}/sandbox", tags=["sandbox"])

ContainerDep = Annotated[Container, Depends(get_container)]
SandboxDep = Annotated[SandboxManager, Depends(get_sandbox_manager)]


class CreateSandboxRequest(BaseModel):
    enable_network: bool = Field(default=False, description="Allow network access inside the sandbox")


class ExecuteRequest(BaseModel):
    code: str = Field(min_length=1)
    language: str = "javascript"


class WriteFileRequest(BaseModel):
    path: str
    content: str


class SandboxStatus(BaseModel):
    handle: SandboxHandle
    running: bool


class FileListing(BaseModel):
    path: str
    files: List[str]


class FileContent(BaseModel):
    path: str
    content: str


@router.post("", response_model=SandboxStatus)
async def create_sandbox(
    session_id: str,
    container: ContainerDep,
    manager: SandboxDep,
    request: Optional[CreateSandboxRequest] = None
):
    """Create the session sandbox, replacing an existing one"""
    session = await container.runtime_memory.get_session(session_id)
    enable_network = request.enable_network if request else False

    handle = await manager.recreate(session_id, enable_network=enable_network)
    session.sandbox_id = handle.id
    await container.save_sessions()

    return SandboxStatus(handle=handle, running=True)


@router.get("", response_model=SandboxStatus)
async def sandbox_status(session_id: str, manager: SandboxDep):
    handle = manager.get_handle(session_id)
    return SandboxStatus(handle=handle, running=await manager.exists(handle))


@router.post("/reset")
async def reset_sandbox(session_id: str, manager: SandboxDep):
    await manager.reset(manager.get_handle(session_id))
    return {"reset": True}


@router.delete("")
async def destroy_sandbox(session_id: str, container: ContainerDep, manager: SandboxDep):
    handle = manager.get_handle(session_id)
    destroyed = await manager.destroy(handle)

    session = await container.runtime_memory.get_session(session_id)
    session.sandbox_id = None
    await container.save_sessions()

    return {"destroyed": destroyed}


@router.post("/execute", response_model=ExecutionResult)
async def execute_code(session_id: str, request: ExecuteRequest, manager: SandboxDep):
    handle = manager.get_handle(session_id)
    return await manager.execute(handle, request.code, request.language)


@router.get("/files")
async def files(session_id: str, manager: SandboxDep, path: Optional[str] = None):
    """Read one file when a path is given, otherwise list the working directory"""
    handle = manager.get_handle(session_id)
    if path:
        return FileContent(path=path, content=await manager.read_file(handle, path))
    return FileListing(path=".", files=await manager.list_files(handle))


@router.put("/files")
async def write_file(session_id: str, request: WriteFileRequest, manager: SandboxDep):
    handle = manager.get_handle(session_id)
    await manager.write_file(handle, request.path, request.content)
    return {"path": request.path, "written": True}
