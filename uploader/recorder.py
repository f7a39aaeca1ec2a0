"""Uploading a live recording whose length is unknown until it stops."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from uploader.transport import ChunkAck, ChunkRejectedError, UploadFailedError, UploadTransport, new_session_id

logger = logging.getLogger(__name__)


class RecordingUpload:
    """
    Feed it the periodic chunks a recorder produces; each one is sent in the
    background as soon as it is pushed. stop() waits for every outstanding
    send and then asks the server to finalize with the final chunk count.
    """

    def __init__(
        self,
        transport: UploadTransport,
        session_id: Optional[str] = None,
        file_name: Optional[str] = None,
        max_workers: Optional[int] = None,
    ):
        self.transport = transport
        self.session_id = session_id or new_session_id()
        self.file_name = file_name
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or transport.config.MAX_WORKERS,
            thread_name_prefix=f"recording-{self.session_id[:8]}",
        )
        self._futures: List[Future] = []
        self._lock = threading.Lock()
        self._next_index = 0
        self.stopped = False

    @property
    def chunk_count(self) -> int:
        return self._next_index

    def push(self, data: bytes) -> Optional[int]:
        """Queue one recorded chunk. Empty chunks are skipped and get no index."""
        if not data:
            return None
        with self._lock:
            if self.stopped:
                raise RuntimeError(f"Recording {self.session_id} already stopped")
            index = self._next_index
            self._next_index += 1
            self._futures.append(
                self._executor.submit(
                    self.transport.send_chunk,
                    self.session_id,
                    index,
                    None,
                    data,
                    self.file_name,
                    UploadTransport.RECORDING_ENDPOINT,
                )
            )
        return index

    def _drain(self) -> List[ChunkAck]:
        with self._lock:
            self.stopped = True
        self._executor.shutdown(wait=True)
        errors = [f.exception() for f in self._futures if f.exception() is not None]
        if errors:
            raise UploadFailedError(
                f"{len(errors)} chunk(s) of recording {self.session_id} could not be uploaded"
            ) from errors[0]
        return [f.result() for f in self._futures]

    def stop(self) -> dict:
        """Wait for every pushed chunk, then finalize. Returns the server's `{url, fileName, ...}`."""
        acks = self._drain()
        total = self.chunk_count
        if total == 0:
            raise ValueError(f"Recording {self.session_id} produced no data")
        logger.info(f"Recording {self.session_id} stopped after {total} chunks, finalizing")
        result = self.transport.finalize(self.session_id, total)
        logger.info(f"Recording {self.session_id} saved as {result.get('fileName')} ({len(acks)} chunks acknowledged)")
        return result

    def abort(self) -> None:
        with self._lock:
            self.stopped = True
        self._executor.shutdown(wait=True, cancel_futures=True)
        try:
            self.transport.abort(self.session_id)
        except ChunkRejectedError as e:
            if e.status_code != 404:
                raise
            logger.info(f"Recording {self.session_id} had nothing on the server to abort")
