import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from ..app_settings import app_settings
from ..exceptions.explorer_exceptions import SessionNotFoundError
from .explorer_view import ExplorerView

logger = logging.getLogger(__name__)


class ExplorerSession:
    def __init__(self, session_id: str, view: ExplorerView):
        self.session_id = session_id
        self.view = view
        self.last_activity = datetime.now(timezone.utc)

    def touch(self) -> None:
        self.last_activity = datetime.now(timezone.utc)


class SessionStore:
    """In-memory explorer sessions keyed by id."""

    def __init__(self, idle_minutes: Optional[int] = None):
        self.idle_timeout = timedelta(minutes=idle_minutes or app_settings.session_idle_minutes)
        self._sessions: Dict[str, ExplorerSession] = {}

    def add(self, view: ExplorerView) -> ExplorerSession:
        session = ExplorerSession(uuid4().hex, view)
        self._sessions[session.session_id] = session
        view.add_close_listener(lambda: self._sessions.pop(session.session_id, None))
        logger.info(f"Session {session.session_id} opened for pod {view.pod_id}")
        return session

    def get(self, session_id: str) -> ExplorerSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        session.touch()
        return session

    def close(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        session.view.close()

    def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
        """Close sessions without activity for longer than the idle timeout."""
        now = now or datetime.now(timezone.utc)
        expired = [
            s.session_id for s in self._sessions.values()
            if now - s.last_activity > self.idle_timeout
        ]
        for session_id in expired:
            logger.info(f"Evicting idle session {session_id}")
            self.close(session_id)
        return expired

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
