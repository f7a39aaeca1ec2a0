import uuid
import logging
from pathlib import Path
from typing import Optional
from app.core.errors import CallerError, FatalStorageError, SessionIncompleteError
from app.services.session import Artifact, SessionState, UploadSession

logger = logging.getLogger(__name__)


class Finalizer:
    """Seals a complete session into a uniquely named file under the public store."""

    def __init__(self, upload_dir: Path, suffix: str, base_url: str):
        self.upload_dir = Path(upload_dir)
        self.suffix = suffix
        self.base_url = base_url.rstrip("/")

    def artifact_url(self, name: str) -> str:
        return f"{self.base_url}/files/{name}"

    def finalize(self, session: UploadSession, total: Optional[int] = None) -> Artifact:
        """
        Explicit finalize, used when the client declares the total at the end
        (live recordings) or asks again after the last chunk.
        """
        with session.locked():
            if session.state is SessionState.DONE and session.artifact is not None:
                return session.artifact
            if session.state is SessionState.FAILED:
                raise FatalStorageError(
                    f"Session {session.session_id} failed and can not be finalized", session.session_id
                )

            effective_total = session.resolve_total(total)
            if effective_total is None:
                raise CallerError("totalChunks is required to finalize this session", session.session_id)
            missing = session.missing(effective_total)
            if missing:
                raise SessionIncompleteError(session.session_id, missing)

            session.total_chunks = effective_total
            session.flush()
            if not session.claim_completion():
                raise SessionIncompleteError(session.session_id, session.missing())
            return self.seal(session)

    def seal(self, session: UploadSession) -> Artifact:
        """Close the stream and publish it. Caller holds the session lock and has claimed completion."""
        session.state = SessionState.FINALIZING
        name = f"{uuid.uuid4()}{self.suffix}"
        destination = self.upload_dir / name
        size = session.bytes_written

        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            session.storage.publish(destination)
        except OSError as e:
            session.state = SessionState.FAILED
            logger.error(f"Error finalizing session {session.session_id}: {e}")
            raise FatalStorageError(
                f"Could not publish upload for session {session.session_id}; start a new session",
                session.session_id,
            ) from e

        artifact = Artifact(name=name, location=destination.resolve(), url=self.artifact_url(name), size=size)
        session.artifact = artifact
        session.state = SessionState.DONE
        session.storage.discard()
        logger.info(
            f"Finalized session {session.session_id}: {name} "
            f"({session.total_chunks} chunks, {size/1024/1024:.2f}MB)"
        )
        return artifact
