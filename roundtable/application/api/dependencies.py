from fastapi import Request

from roundtable.application.container import Container
from roundtable.domain.errors import SandboxUnavailableError
from roundtable.domain.sandbox.sandbox_manager import SandboxManager


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_sandbox_manager(request: Request) -> SandboxManager:
    manager = get_container(request).sandbox_manager
    if manager is None:
        raise SandboxUnavailableError("Sandbox support is disabled")
    return manager
