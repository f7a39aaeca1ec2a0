import time
import asyncio
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Set
from app.core.errors import ChunkStatus, CallerError, TransientIOError, FatalStorageError
from app.services.storage.local import LocalSessionStorage

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    COLLECTING = "collecting"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Artifact:
    name: str
    location: Path
    url: str
    size: int


class SessionClosed(Exception):
    """The session was finalized while the caller was waiting for it."""


class UploadSession:
    """
    Reassembly state for one upload.

    Chunks are appended to the working file strictly in sequence order.
    A chunk that arrives ahead of its turn is spooled to disk and flushed
    once every index before it has been written, so concurrent senders
    can never scramble the artifact.

    Every mutating method expects the caller to hold `locked()`.
    """

    def __init__(
        self,
        session_id: str,
        storage: LocalSessionStorage,
        lock_timeout: float = 30.0,
        file_name: Optional[str] = None,
    ):
        self.session_id = session_id
        self.storage = storage
        self.lock_timeout = lock_timeout
        self.file_name = file_name
        self.total_chunks: Optional[int] = None
        self.accepted: Set[int] = set()
        self.next_index = 0
        self.state = SessionState.COLLECTING
        self.completion_signaled = False
        self.artifact: Optional[Artifact] = None
        self.created_at = time.monotonic()
        self.last_activity = self.created_at

        self._lock = threading.Lock()
        self._spooled: Set[int] = set()
        # event-loop side bookkeeping of chunk requests still being handled
        self._inflight = 0
        self._drained = asyncio.Event()
        self._drained.set()

    @contextmanager
    def locked(self, timeout: Optional[float] = None):
        timeout = self.lock_timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=timeout):
            raise TransientIOError(f"Session {self.session_id} is busy, retry later", self.session_id)
        try:
            yield self
        finally:
            self._lock.release()

    def try_lock(self) -> bool:
        return self._lock.acquire(blocking=False)

    def unlock(self) -> None:
        self._lock.release()

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_for(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_activity

    def begin_request(self) -> None:
        self._inflight += 1
        self._drained.clear()
        self.touch()

    def end_request(self) -> None:
        self._inflight -= 1
        if self._inflight <= 0:
            self._inflight = 0
            self._drained.set()

    @property
    def inflight(self) -> int:
        return self._inflight

    async def wait_drained(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._drained.wait(), timeout)
        except asyncio.TimeoutError:
            raise TransientIOError(
                f"Session {self.session_id} still has {self._inflight} chunk(s) in flight",
                self.session_id,
            )

    @property
    def bytes_written(self) -> int:
        return self.storage.bytes_written

    @property
    def is_complete(self) -> bool:
        return self.total_chunks is not None and self.next_index == self.total_chunks

    def resolve_total(self, total: Optional[int]) -> Optional[int]:
        """Validate a declared total against what this session has seen. Does not mutate."""
        if total is None:
            return self.total_chunks
        if total <= 0:
            raise CallerError(f"totalChunks must be greater than 0, got {total}", self.session_id)
        if self.total_chunks is not None and total != self.total_chunks:
            raise CallerError(
                f"totalChunks {total} conflicts with previously declared {self.total_chunks}",
                self.session_id,
            )
        if self.accepted and max(self.accepted) >= total:
            raise CallerError(
                f"totalChunks {total} is smaller than already accepted chunk index {max(self.accepted)}",
                self.session_id,
            )
        return total

    def missing(self, total: Optional[int] = None) -> Set[int]:
        total = self.total_chunks if total is None else total
        if total is None:
            return set()
        return set(range(total)) - self.accepted

    def _check_writable(self) -> None:
        if self.state is SessionState.DONE:
            raise SessionClosed(self.session_id)
        if self.state is SessionState.FAILED:
            raise FatalStorageError(
                f"Session {self.session_id} failed and can not be resumed; start a new session",
                self.session_id,
            )

    def flush(self) -> None:
        """Append every spooled chunk that now continues the written prefix."""
        while self.next_index in self._spooled:
            index = self.next_index
            data = self.storage.read_spooled(index)
            self.storage.append(data)
            self._spooled.discard(index)
            self.next_index += 1
            self.storage.drop_spooled(index)
            logger.debug(f"Flushed buffered chunk {index} for session {self.session_id}")

    def accept(self, index: int, total: Optional[int], payload: bytes) -> ChunkStatus:
        self._check_writable()
        if index < 0:
            raise CallerError(f"chunkIndex must be >= 0, got {index}", self.session_id)
        effective_total = self.resolve_total(total)
        if effective_total is not None and index >= effective_total:
            raise CallerError(
                f"chunkIndex {index} is out of range for totalChunks {effective_total}",
                self.session_id,
            )
        self.total_chunks = effective_total
        self.touch()

        if index in self.accepted:
            logger.info(f"Duplicate chunk {index} for session {self.session_id} ignored")
            self.flush()
            return ChunkStatus.DUPLICATE

        if index == self.next_index:
            self.storage.append(payload)
            self.next_index += 1
        else:
            self.storage.spool(index, payload)
            self._spooled.add(index)
        self.accepted.add(index)
        logger.debug(
            f"Accepted chunk {index}/{self.total_chunks} for session {self.session_id} "
            f"({len(payload)} bytes)"
        )
        self.flush()
        return ChunkStatus.ACCEPTED

    def claim_completion(self) -> bool:
        """True exactly once, when the last outstanding chunk has been written."""
        if self.completion_signaled or not self.is_complete:
            return False
        self.completion_signaled = True
        return True

    def snapshot(self) -> dict:
        return {
            "session": self.session_id,
            "status": self.state.value,
            "totalChunks": self.total_chunks,
            "acceptedChunks": sorted(self.accepted),
            "bytesWritten": self.bytes_written,
        }
