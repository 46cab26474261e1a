from typing import Dict, List, Any, Optional
import asyncio

from roundtable.domain.errors import SessionNotFoundError
from roundtable.domain.models.conversation import ChatSession, new_id


class RuntimeMemory:
    """Holds the live chat sessions; at least one session always exists"""

    def __init__(self):
        self.sessions: Dict[str, ChatSession] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, topic: str = "") -> ChatSession:
        """Create a new, empty session"""

        async with self._lock:
            return self._create_locked(topic)

    def _create_locked(self, topic: str = "") -> ChatSession:
        session = ChatSession(id=new_id())
        if topic:
            session.set_topic(topic)
        self.sessions[session.id] = session
        return session

    async def get_session(self, session_id: str) -> ChatSession:
        """Get a session or raise SessionNotFoundError"""

        async with self._lock:
            session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def list_sessions(self) -> List[ChatSession]:
        """Sessions, most recently modified first"""

        async with self._lock:
            sessions = list(self.sessions.values())
        return sorted(sessions, key=lambda s: s.last_modified, reverse=True)

    async def ensure_session(self) -> ChatSession:
        """Return the most recent session, creating one when none exist"""

        async with self._lock:
            if not self.sessions:
                return self._create_locked()
            return max(self.sessions.values(), key=lambda s: s.last_modified)

    async def delete_session(self, session_id: str) -> Optional[ChatSession]:
        """Delete a session; returns the replacement created when it was the last one"""

        async with self._lock:
            if session_id not in self.sessions:
                raise SessionNotFoundError(session_id)
            del self.sessions[session_id]
            if not self.sessions:
                return self._create_locked()
        return None

    async def export_sessions(self) -> List[Dict[str, Any]]:
        """Plain serializable records for the persistence collaborator"""

        async with self._lock:
            return [session.to_record() for session in self.sessions.values()]

    async def import_sessions(self, records: List[Dict[str, Any]]) -> int:
        """Load sessions from records, replacing any with the same id"""

        sessions = [ChatSession.from_record(record) for record in records]
        async with self._lock:
            for session in sessions:
                self.sessions[session.id] = session
        return len(sessions)
