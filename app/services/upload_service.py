import uuid
import asyncio
import logging
import concurrent.futures
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from app.core.config import Settings
from app.core.errors import CallerError, ChunkStatus, TransientIOError
from app.services.finalizer import Finalizer
from app.services.registry import SessionRegistry
from app.services.session import Artifact, SessionClosed, SessionState, UploadSession

logger = logging.getLogger(__name__)


@dataclass
class ChunkResult:
    status: ChunkStatus
    session_id: str
    chunk_index: int
    artifact: Optional[Artifact] = None


class UploadService:
    """
    Entry point for the HTTP layer: owns the session registry, the finalizer
    and the thread pool that runs blocking disk I/O.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.registry = SessionRegistry(
            Path(settings.WORKING_DIR),
            write_retries=settings.STORAGE_WRITE_RETRIES,
            lock_timeout=settings.CHUNK_LOCK_TIMEOUT_SECONDS,
        )
        self.finalizer = Finalizer(
            Path(settings.UPLOAD_DIR), settings.ARTIFACT_SUFFIX, settings.UPLOAD_SERVICE_BASE_URL
        )
        # ایجاد یک ThreadPoolExecutor برای عملیات I/O بلاکینگ
        self.thread_pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=settings.IO_WORKERS, thread_name_prefix="upload-io"
        )

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.thread_pool, fn, *args)

    def new_session_id(self) -> str:
        session_id = uuid.uuid4().hex
        logger.info(f"Issued session id {session_id}")
        return session_id

    def _accept_sync(self, session: UploadSession, index: int, total: Optional[int], payload: bytes):
        with session.locked():
            outcome = session.accept(index, total, payload)
            artifact = None
            # a duplicate can still be the request that completes a stalled flush
            if session.claim_completion():
                artifact = self.finalizer.seal(session)
            return outcome, artifact

    async def accept_chunk(
        self,
        session_id: str,
        index: int,
        total: Optional[int],
        payload: bytes,
        file_name: Optional[str] = None,
    ) -> ChunkResult:
        if index >= self.settings.MAX_TOTAL_CHUNKS:
            raise CallerError(
                f"chunkIndex {index} exceeds the limit of {self.settings.MAX_TOTAL_CHUNKS} chunks", session_id
            )

        for _ in range(2):
            session = self.registry.get_or_create(session_id, file_name)
            session.begin_request()
            try:
                try:
                    outcome, artifact = await self._run(self._accept_sync, session, index, total, payload)
                finally:
                    session.end_request()
            except SessionClosed:
                # finalized while we waited for the lock; the id now names a fresh session
                self.registry.discard(session)
                continue
            except CallerError:
                # requests still queued on the lock keep an empty session alive
                if session.inflight == 0 and not session.accepted:
                    self.registry.discard(session)
                raise

            if artifact is not None:
                self.registry.discard(session)
            return ChunkResult(outcome, session_id, index, artifact)

        raise TransientIOError(f"Session {session_id} is being finalized, retry later", session_id)

    async def finalize(self, session_id: str, total: Optional[int] = None) -> Artifact:
        session = self.registry.require(session_id)
        await session.wait_drained(self.settings.FINALIZE_WAIT_SECONDS)
        artifact = await self._run(self.finalizer.finalize, session, total)
        self.registry.discard(session)
        return artifact

    def _snapshot_sync(self, session: UploadSession) -> dict:
        with session.locked():
            return session.snapshot()

    async def session_status(self, session_id: str) -> dict:
        session = self.registry.require(session_id)
        return await self._run(self._snapshot_sync, session)

    def _abort_sync(self, session: UploadSession) -> None:
        with session.locked():
            if session.state is not SessionState.DONE:
                session.state = SessionState.FAILED
            session.storage.discard()

    async def abort(self, session_id: str) -> None:
        session = self.registry.require(session_id)
        await self._run(self._abort_sync, session)
        self.registry.discard(session)
        logger.info(f"Aborted upload session {session_id}")

    def _purge_sync(self, session: UploadSession) -> bool:
        if not session.try_lock():
            return False
        try:
            if session.state is not SessionState.DONE:
                session.state = SessionState.FAILED
            session.storage.discard()
            return True
        finally:
            session.unlock()

    async def reap_idle(self, now: Optional[float] = None) -> int:
        reaped = 0
        for session in self.registry.idle_sessions(self.settings.SESSION_IDLE_TIMEOUT_SECONDS, now):
            if await self._run(self._purge_sync, session):
                self.registry.discard(session)
                reaped += 1
                logger.info(f"Reaped idle session {session.session_id} ({len(session.accepted)} chunks received)")
        if reaped:
            logger.info(f"Reaper removed {reaped} idle session(s), {len(self.registry)} remaining")
        return reaped

    def _close_sync(self) -> None:
        for session in self.registry:
            if session.try_lock():
                try:
                    session.storage.close()
                except OSError as e:
                    logger.warning(f"Error closing stream for session {session.session_id}: {e}")
                finally:
                    session.unlock()

    async def close(self) -> None:
        await self._run(self._close_sync)
        self.thread_pool.shutdown(wait=True)
