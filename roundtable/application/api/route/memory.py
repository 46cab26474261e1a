from typing import Annotated, Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from roundtable.application.api.dependencies import get_container
from roundtable.application.container import Container
from roundtable.domain.models.memory import MemoryEntry, SessionSummary

router = APIRouter(prefix="/api/v1/memory", tags=["memory"])

ContainerDep = Annotated[Container, Depends(get_container)]


class MemoryResponse(BaseModel):
    entries: List[MemoryEntry]
    stats: Dict[str, Any]


@router.get("", response_model=MemoryResponse)
async def get_memory(
    container: ContainerDep,
    topic: Optional[str] = None,
    limit: int = Query(default=5, ge=1, le=100)
):
    """Relevant entries for a topic, or every entry when no topic is given"""
    store = container.memory_store
    if topic:
        entries = await store.get_relevant_memories(topic, limit)
    else:
        entries = await store.get_all_memories()
    return MemoryResponse(entries=entries, stats=await store.get_stats())


@router.get("/summaries", response_model=List[SessionSummary])
async def get_summaries(container: ContainerDep, limit: int = Query(default=3, ge=1, le=50)):
    return await container.memory_store.get_recent_summaries(limit)


@router.delete("")
async def clear_memory(container: ContainerDep):
    await container.memory_store.clear_memory()
    return {"cleared": True}
