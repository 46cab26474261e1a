from typing import Optional
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from roundtable import __version__
from roundtable.application.container import Container, build_container
from roundtable.application.websocket import ws_server
from roundtable.domain.errors import (
    InvalidPathError, SandboxError, SandboxUnavailableError, SessionNotFoundError
)
from roundtable.infrastructure.config.settings import Settings
from roundtable.infrastructure.observability.logging import setup_logging
from .route import memory, sandbox, session, system

logger = structlog.get_logger(__name__)


def _error(status_code: int, message: str, error_code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message, "error_code": error_code})


def register_exception_handlers(app: FastAPI):
    """Map domain errors to HTTP responses"""

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found(request: Request, exc: SessionNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, f"Session not found: {exc}", "session_not_found")

    @app.exception_handler(SandboxUnavailableError)
    async def sandbox_unavailable(request: Request, exc: SandboxUnavailableError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "sandbox_unavailable")

    @app.exception_handler(InvalidPathError)
    async def invalid_path(request: Request, exc: InvalidPathError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "invalid_path")

    @app.exception_handler(SandboxError)
    async def sandbox_error(request: Request, exc: SandboxError):
        logger.error("Sandbox operation failed", path=request.url.path, error=str(exc))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), "sandbox_error")

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "invalid_request")


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """Build the FastAPI application"""

    settings = settings or (container.settings if container else Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.logging.level, settings.logging.format, settings.logging.service_name)

        app.state.container = container or build_container(settings)
        await app.state.container.load_sessions()
        logger.info("Roundtable server started", version=__version__)

        yield

        await app.state.container.shutdown()
        logger.info("Roundtable server shutdown")

    app = FastAPI(title="Roundtable", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(system.router)
    app.include_router(session.router)
    app.include_router(sandbox.router)
    app.include_router(memory.router)
    app.include_router(ws_server.router)

    return app


def main():
    """Console entry point"""
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
