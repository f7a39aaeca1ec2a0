import uuid
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional
from app.core.errors import SessionNotFoundError
from app.services.session import UploadSession
from app.services.storage.local import LocalSessionStorage

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Keyed store of live upload sessions.

    Only touched from the event loop thread, so lookups and inserts are
    atomic with respect to each other; per-session mutation is guarded by
    each session's own lock.
    """

    def __init__(self, working_dir: Path, write_retries: int = 2, lock_timeout: float = 30.0):
        self.working_dir = Path(working_dir)
        self.write_retries = write_retries
        self.lock_timeout = lock_timeout
        self._sessions: Dict[str, UploadSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[UploadSession]:
        return iter(list(self._sessions.values()))

    def get(self, session_id: str) -> Optional[UploadSession]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> UploadSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_or_create(self, session_id: str, file_name: Optional[str] = None) -> UploadSession:
        session = self._sessions.get(session_id)
        if session is not None:
            if file_name and not session.file_name:
                session.file_name = file_name
            return session

        # Directory names never derive from the client-supplied id
        storage = LocalSessionStorage(self.working_dir / uuid.uuid4().hex, self.write_retries)
        session = UploadSession(session_id, storage, self.lock_timeout, file_name)
        self._sessions[session_id] = session
        logger.info(f"Created upload session {session_id} (working dir {storage.session_dir.name})")
        return session

    def discard(self, session: UploadSession) -> bool:
        """Forget `session` if it is still the live one for its id."""
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
            return True
        return False

    def idle_sessions(self, max_idle: float, now: Optional[float] = None) -> List[UploadSession]:
        return [s for s in self._sessions.values() if s.inflight == 0 and s.idle_for(now) > max_idle]
