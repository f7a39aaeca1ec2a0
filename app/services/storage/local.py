import os
import shutil
import logging
from pathlib import Path
from typing import BinaryIO, Optional
from app.core.errors import TransientIOError, FatalStorageError

logger = logging.getLogger(__name__)

class LocalSessionStorage:
    """
    Append-only working file for one upload session, plus a spool area for
    chunks that arrived ahead of their turn.

    Not thread-safe on its own; callers hold the owning session's lock.
    """

    def __init__(self, session_dir: Path, write_retries: int = 2):
        self.session_dir = Path(session_dir)
        self.working_path = self.session_dir / "stream.part"
        self.write_retries = max(0, write_retries)
        self.bytes_written = 0
        self._stream: Optional[BinaryIO] = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _ensure_stream(self) -> BinaryIO:
        if self._stream is None:
            self.session_dir.mkdir(parents=True, exist_ok=True)
            self._stream = open(self.working_path, "wb")
            logger.debug(f"Opened working file {self.working_path}")
        return self._stream

    def _rewind(self, offset: int) -> None:
        """Drop whatever a failed write left past `offset`."""
        try:
            if self._stream is not None:
                try:
                    self._stream.close()
                except OSError as e:
                    logger.warning(f"Error closing {self.working_path} after failed write: {e}")
            self._stream = open(self.working_path, "r+b")
            self._stream.truncate(offset)
            self._stream.seek(offset)
        except OSError as e:
            self._stream = None
            raise FatalStorageError(f"Working file {self.working_path.name} could not be restored: {e}") from e

    def append(self, data: bytes) -> None:
        stream = self._ensure_stream()
        offset = self.bytes_written
        last_error = None
        for attempt in range(self.write_retries + 1):
            try:
                stream.write(data)
                stream.flush()
                self.bytes_written = offset + len(data)
                return
            except OSError as e:
                last_error = e
                logger.warning(
                    f"Append of {len(data)} bytes failed "
                    f"(attempt {attempt + 1}/{self.write_retries + 1}): {e}"
                )
                self._rewind(offset)
                stream = self._stream
        raise TransientIOError(f"Could not append chunk data: {last_error}")

    def _spool_path(self, index: int) -> Path:
        return self.session_dir / f"chunk_{index}"

    def spool(self, index: int, data: bytes) -> None:
        """Park an out-of-order chunk on disk until the prefix before it is written."""
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
            with open(self._spool_path(index), "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Error spooling chunk {index} in {self.session_dir}: {e}")
            raise TransientIOError(f"Could not store chunk {index}: {e}") from e
        logger.debug(f"Chunk spooled: {self._spool_path(index)} ({len(data)} bytes)")

    def read_spooled(self, index: int) -> bytes:
        try:
            with open(self._spool_path(index), "rb") as f:
                return f.read()
        except OSError as e:
            raise TransientIOError(f"Could not read buffered chunk {index}: {e}") from e

    def drop_spooled(self, index: int) -> None:
        path = self._spool_path(index)
        if path.exists():
            path.unlink()

    def close(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            stream.close()

    def publish(self, destination: Path) -> Path:
        """Atomically move the working file to `destination`. Raises OSError on failure."""
        self.close()
        os.replace(self.working_path, destination)
        return destination

    def discard(self) -> dict:
        """پاکسازی دایرکتوری session"""
        try:
            self.close()
        except OSError as e:
            logger.warning(f"Error closing working file {self.working_path}: {e}")

        if not self.session_dir.exists():
            return {"files_removed": 0, "total_size": 0, "success": True}

        try:
            files = [p for p in self.session_dir.iterdir() if p.is_file()]
            total_size = sum(p.stat().st_size for p in files)
            shutil.rmtree(self.session_dir)
            logger.info(
                f"Cleaned up session directory {self.session_dir} "
                f"({len(files)} files, {total_size/1024/1024:.2f}MB)"
            )
            return {"files_removed": len(files), "total_size": total_size, "success": True}
        except OSError as e:
            logger.error(f"Error cleaning up {self.session_dir}: {e}")
            return {"success": False, "error": str(e)}
