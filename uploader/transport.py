"""HTTP transport that sends chunks to the upload service with bounded retries."""

import uuid
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set
import httpx

from uploader.config import UploaderConfig
from uploader.splitter import ChunkPlan, ChunkRange, read_range

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class TransferError(Exception):
    """Base class for upload failures surfaced to the caller."""


class ChunkRejectedError(TransferError):
    """The server refused the request as malformed or inconsistent; retrying will not help."""

    def __init__(self, status_code: int, detail: str, body: Optional[dict] = None):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.body = body or {}


class UploadFailedError(TransferError):
    """Retry budget exhausted, or the server reported the session as unrecoverable."""


class UploadCancelledError(TransferError):
    pass


@dataclass
class ChunkAck:
    index: int
    status: str
    url: Optional[str] = None
    file_name: Optional[str] = None


@dataclass
class UploadResult:
    session_id: str
    total_chunks: int
    url: Optional[str]
    file_name: Optional[str]
    sent: int = 0
    duplicates: int = 0
    skipped: Set[int] = field(default_factory=set)


def _json(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class UploadTransport:
    """
    Sends chunks and tracks which ones the server acknowledged.

    Repeating a chunk is always safe: the server answers `duplicate`
    for an index it already has, so every failure is simply retried.
    """

    UPLOAD_ENDPOINT = "/upload"
    RECORDING_ENDPOINT = "/upload-screen-recording"

    def __init__(self, config: Optional[UploaderConfig] = None, client: Optional[httpx.Client] = None):
        self.config = config or UploaderConfig()
        self.session = client or httpx.Client(base_url=self.config.BASE_URL, timeout=self.config.TIMEOUT)
        self.acknowledged: Dict[str, Set[int]] = {}
        self._ack_lock = threading.Lock()
        self._cancelled = threading.Event()
        logger.info(f"Initialized UploadTransport [base_url={self.config.BASE_URL}]")

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def cancel(self) -> None:
        """Stop retrying; in-flight and future requests raise UploadCancelledError."""
        self._cancelled.set()

    def _retry_delay(self, attempt: int) -> float:
        delay = self.config.RETRY_BASE_DELAY * (self.config.RETRY_BACKOFF_MULTIPLIER ** attempt)
        return min(delay, self.config.RETRY_MAX_DELAY)

    def _request_with_retry(self, method: str, endpoint: str, what: str, **kwargs) -> httpx.Response:
        """
        Make an HTTP request, retrying network failures and non-success
        responses until MAX_RETRIES is used up.

        Raises:
            ChunkRejectedError: the server answered with a caller error
            UploadFailedError: retries exhausted or the session is unrecoverable
            UploadCancelledError: cancel() was called
        """
        max_retries = self.config.MAX_RETRIES
        attempt = 0
        while True:
            if self._cancelled.is_set():
                raise UploadCancelledError(f"{what} cancelled")

            try:
                response = self.session.request(method, endpoint, **kwargs)
            except httpx.TransportError as e:
                error = f"{type(e).__name__}: {e}"
            else:
                if response.is_success:
                    return response
                body = _json(response)
                detail = body.get("detail") or response.text
                if body.get("status") == "caller_error" or response.status_code in (400, 404, 409, 422):
                    logger.warning(f"{what} rejected: status={response.status_code} detail={detail}")
                    raise ChunkRejectedError(response.status_code, str(detail), body)
                if body.get("status") == "fatal_error":
                    logger.error(f"{what} failed permanently: {detail}")
                    raise UploadFailedError(f"{what} failed: {detail}")
                error = f"HTTP {response.status_code}: {detail}"

            if max_retries is not None and attempt >= max_retries:
                logger.error(f"{what} failed after {attempt + 1} attempts: {error}")
                raise UploadFailedError(f"{what} failed after {attempt + 1} attempts: {error}")

            delay = self._retry_delay(attempt)
            logger.warning(
                f"{what} failed (attempt {attempt + 1}/{'unlimited' if max_retries is None else max_retries + 1}): "
                f"{error}, retrying in {delay:.2f}s"
            )
            if self._cancelled.wait(delay):
                raise UploadCancelledError(f"{what} cancelled")
            attempt += 1

    def init_session(self) -> str:
        response = self._request_with_retry("POST", "/upload/init", "session init")
        return response.json()["session"]

    def send_chunk(
        self,
        session_id: str,
        index: int,
        total: Optional[int],
        payload: bytes,
        file_name: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> ChunkAck:
        data = {"session": session_id, "chunkIndex": str(index)}
        if total is not None:
            data["totalChunks"] = str(total)
        if file_name:
            data["fileName"] = file_name
        files = {"videoChunk": (f"chunk_{index}", payload, "application/octet-stream")}

        response = self._request_with_retry(
            "POST", endpoint or self.UPLOAD_ENDPOINT, f"chunk {index} of session {session_id}",
            data=data, files=files,
        )
        body = _json(response)
        with self._ack_lock:
            self.acknowledged.setdefault(session_id, set()).add(index)
        logger.debug(f"Chunk {index} of session {session_id}: {body.get('status')}")
        return ChunkAck(index, body.get("status", "accepted"), body.get("url"), body.get("fileName"))

    def fetch_accepted(self, session_id: str) -> Set[int]:
        """Indices the server already holds for `session_id`; empty when it does not know the session."""
        try:
            response = self._request_with_retry("GET", f"/upload/{session_id}/status", f"status of session {session_id}")
        except ChunkRejectedError as e:
            if e.status_code == 404:
                return set()
            raise
        return set(_json(response).get("acceptedChunks", []))

    def finalize(self, session_id: str, total: int) -> dict:
        response = self._request_with_retry(
            "POST", "/finalize", f"finalize of session {session_id}",
            json={"session": session_id, "totalChunks": total},
        )
        return _json(response)

    def abort(self, session_id: str) -> None:
        self._request_with_retry("DELETE", f"/upload/{session_id}", f"abort of session {session_id}")
        with self._ack_lock:
            self.acknowledged.pop(session_id, None)

    def _send_all(
        self,
        session_id: str,
        plan: ChunkPlan,
        pending: List[ChunkRange],
        read: Callable[[ChunkRange], bytes],
        file_name: Optional[str],
        progress: Optional[ProgressCallback],
    ) -> UploadResult:
        result = UploadResult(session_id, len(plan), None, None)
        result.skipped = {r.index for r in plan} - {r.index for r in pending}
        done = len(result.skipped)
        lock = threading.Lock()

        def send(rng: ChunkRange) -> ChunkAck:
            return self.send_chunk(session_id, rng.index, len(plan), read(rng), file_name)

        def record(ack: ChunkAck) -> None:
            nonlocal done
            with lock:
                done += 1
                result.sent += 1
                if ack.status == "duplicate":
                    result.duplicates += 1
                if ack.url:
                    result.url, result.file_name = ack.url, ack.file_name
                count = done
            if progress:
                progress(count, len(plan))

        if self.config.MAX_WORKERS <= 1:
            for rng in pending:
                record(send(rng))
        else:
            error = None
            with ThreadPoolExecutor(max_workers=self.config.MAX_WORKERS) as executor:
                futures = [executor.submit(send, rng) for rng in pending]
                for future in as_completed(futures):
                    if future.cancelled():
                        continue
                    if future.exception() is not None:
                        if error is None:
                            error = future.exception()
                            for other in futures:
                                other.cancel()
                        continue
                    record(future.result())
            if error is not None:
                raise error

        if result.url is None:
            # every chunk was already on the server, or the completing response got lost
            try:
                body = self.finalize(session_id, len(plan))
            except ChunkRejectedError as e:
                raise UploadFailedError(
                    f"Session {session_id} did not produce an artifact: {e.detail}"
                ) from e
            result.url, result.file_name = body.get("url"), body.get("fileName")
        logger.info(f"Upload of session {session_id} complete: {result.url}")
        return result

    def _pending(self, session_id: str, plan: ChunkPlan, resume: bool) -> List[ChunkRange]:
        with self._ack_lock:
            done = set(self.acknowledged.get(session_id, ()))
        if resume:
            done |= self.fetch_accepted(session_id)
        return [rng for rng in plan if rng.index not in done]

    def upload_bytes(
        self,
        data: bytes,
        file_name: Optional[str] = None,
        session_id: Optional[str] = None,
        resume: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        plan = ChunkPlan(len(data), self.config.CHUNK_SIZE)
        if len(plan) == 0:
            raise ValueError("Cannot upload an empty payload")
        session_id = session_id or self.init_session()
        pending = self._pending(session_id, plan, resume)
        return self._send_all(session_id, plan, pending, lambda r: data[r.start:r.end], file_name, progress)

    def upload_file(
        self,
        file_path,
        session_id: Optional[str] = None,
        resume: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        plan = ChunkPlan(file_path.stat().st_size, self.config.CHUNK_SIZE)
        if len(plan) == 0:
            raise ValueError(f"Cannot upload an empty file: {file_path}")
        session_id = session_id or self.init_session()
        pending = self._pending(session_id, plan, resume)

        def read(rng: ChunkRange) -> bytes:
            with open(file_path, "rb") as f:
                return read_range(f, rng)

        return self._send_all(session_id, plan, pending, read, file_path.name, progress)


def new_session_id() -> str:
    """Client-side session id, for callers that do not ask the server for one."""
    return uuid.uuid4().hex
