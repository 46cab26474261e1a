from typing import Annotated
from datetime import datetime, timezone
from fastapi import APIRouter, Depends

from roundtable.application.api.dependencies import get_container
from roundtable.application.container import Container

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(container: Annotated[Container, Depends(get_container)]):
    """Health check endpoint"""
    backend_reachable = await container.generation_client.ping()
    return {
        "status": "healthy" if backend_reachable else "degraded",
        "backend_reachable": backend_reachable,
        "active_sessions": container.conversation_manager.active_count(),
        "active_connections": container.connection_manager.connection_count(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
