from typing import Annotated, Any, Dict, List, Optional
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
import structlog

from roundtable.application.api.dependencies import get_container
from roundtable.application.container import Container
from roundtable.domain.context.repetition_guard import analyze_conversation
from roundtable.domain.models.conversation import ChatSession, Message
from roundtable.domain.models.generation import ConversationMetrics

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])

ContainerDep = Annotated[Container, Depends(get_container)]


class CreateSessionRequest(BaseModel):
    topic: str = Field(default="", description="Optional initial discussion topic")


class TopicRequest(BaseModel):
    topic: str = Field(min_length=1)


class StartRequest(BaseModel):
    topic: Optional[str] = Field(default=None, description="Overrides the session topic when given")


class InjectRequest(BaseModel):
    content: str = Field(min_length=1)


class SessionInfo(BaseModel):
    """Session list entry"""
    id: str
    name: str
    topic: str
    message_count: int
    last_modified: int
    active: bool = False


class SessionDetail(BaseModel):
    session: ChatSession
    scheduler: Optional[Dict[str, Any]] = None


class DeleteResponse(BaseModel):
    deleted: str
    replacement: Optional[ChatSession] = None


def _info(container: Container, session: ChatSession) -> SessionInfo:
    scheduler = container.conversation_manager.schedulers.get(session.id)
    return SessionInfo(
        id=session.id,
        name=session.name,
        topic=session.topic,
        message_count=len(session.messages),
        last_modified=session.last_modified,
        active=bool(scheduler and scheduler.state.active)
    )


@router.post("", response_model=SessionInfo, status_code=status.HTTP_201_CREATED)
async def create_session(request: CreateSessionRequest, container: ContainerDep):
    session = await container.runtime_memory.create_session(request.topic.strip())
    await container.save_sessions()
    logger.info("Session created", session_id=session.id)
    return _info(container, session)


@router.get("", response_model=List[SessionInfo])
async def list_sessions(container: ContainerDep):
    sessions = await container.runtime_memory.list_sessions()
    return [_info(container, session) for session in sessions]


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str, container: ContainerDep):
    session = await container.runtime_memory.get_session(session_id)
    return SessionDetail(session=session, scheduler=container.conversation_manager.snapshot(session_id))


@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_session(session_id: str, container: ContainerDep):
    replacement = await container.conversation_manager.delete_session(session_id)
    await container.save_sessions()
    return DeleteResponse(deleted=session_id, replacement=replacement)


@router.put("/{session_id}/topic", response_model=SessionInfo)
async def set_topic(session_id: str, request: TopicRequest, container: ContainerDep):
    session = await container.conversation_manager.set_topic(session_id, request.topic)
    await container.save_sessions()
    return _info(container, session)


@router.post("/{session_id}/start")
async def start_session(session_id: str, container: ContainerDep, request: Optional[StartRequest] = None):
    topic = request.topic if request else None
    scheduler = await container.conversation_manager.start(session_id, topic)
    return scheduler.snapshot()


@router.post("/{session_id}/stop")
async def stop_session(session_id: str, container: ContainerDep):
    scheduler = await container.conversation_manager.stop(session_id)
    return scheduler.snapshot()


@router.post("/{session_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def inject_message(session_id: str, request: InjectRequest, container: ContainerDep):
    return await container.conversation_manager.inject(session_id, request.content)


@router.get("/{session_id}/metrics", response_model=ConversationMetrics)
async def session_metrics(session_id: str, container: ContainerDep):
    session = await container.runtime_memory.get_session(session_id)
    return analyze_conversation(session.messages)
