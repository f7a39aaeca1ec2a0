"""Tests for per-session reassembly and the working-file storage."""

import pytest
from app.core.errors import CallerError, ChunkStatus, FatalStorageError, TransientIOError
from app.services.session import SessionClosed, SessionState, UploadSession
from app.services.storage.local import LocalSessionStorage


@pytest.fixture
def storage(tmp_path):
    return LocalSessionStorage(tmp_path / "session", write_retries=2)


@pytest.fixture
def session(storage):
    return UploadSession("s1", storage, lock_timeout=1.0)


def written(session):
    session.storage.close()
    return session.storage.working_path.read_bytes()


class FlakyStream:
    """Writes one byte of every write, then fails."""

    def __init__(self, inner):
        self.inner = inner

    def write(self, data):
        self.inner.write(data[:1])
        self.inner.flush()
        raise OSError("disk busy")

    def flush(self):
        self.inner.flush()

    def close(self):
        self.inner.close()


def test_in_order_chunks_are_appended(session):
    assert session.accept(0, 3, b"aaa") is ChunkStatus.ACCEPTED
    assert session.accept(1, 3, b"bbb") is ChunkStatus.ACCEPTED
    assert session.accept(2, 3, b"c") is ChunkStatus.ACCEPTED

    assert session.is_complete
    assert session.bytes_written == 7
    assert written(session) == b"aaabbbc"


def test_out_of_order_chunks_are_buffered_until_contiguous(session):
    session.accept(2, 4, b"cc")
    session.accept(1, 4, b"bb")
    assert session.next_index == 0
    assert session.bytes_written == 0

    session.accept(0, 4, b"aa")
    assert session.next_index == 3
    assert not session.is_complete

    session.accept(3, 4, b"dd")
    assert session.is_complete
    assert written(session) == b"aabbccdd"
    # spooled chunks are removed once flushed
    assert sorted(p.name for p in session.storage.session_dir.iterdir()) == ["stream.part"]


def test_duplicate_chunk_is_a_no_op(session):
    assert session.accept(0, 2, b"first") is ChunkStatus.ACCEPTED
    assert session.accept(0, 2, b"retry") is ChunkStatus.DUPLICATE
    session.accept(1, 2, b"second")

    assert written(session) == b"firstsecond"


def test_duplicate_of_buffered_chunk_is_a_no_op(session):
    session.accept(1, 2, b"late")
    assert session.accept(1, 2, b"late") is ChunkStatus.DUPLICATE
    session.accept(0, 2, b"early")

    assert written(session) == b"earlylate"


def test_inconsistent_total_is_rejected_without_mutation(session):
    session.accept(0, 3, b"a")

    with pytest.raises(CallerError):
        session.accept(1, 4, b"b")

    assert session.accepted == {0}
    assert session.total_chunks == 3


def test_index_beyond_total_is_rejected(session):
    with pytest.raises(CallerError):
        session.accept(3, 3, b"x")
    assert session.accepted == set()
    assert session.total_chunks is None


def test_negative_index_is_rejected(session):
    with pytest.raises(CallerError):
        session.accept(-1, 3, b"x")


def test_total_smaller_than_seen_index_is_rejected(session):
    session.accept(5, None, b"x")

    with pytest.raises(CallerError):
        session.resolve_total(3)
    assert session.resolve_total(6) == 6


def test_unknown_total_never_completes(session):
    session.accept(0, None, b"a")
    session.accept(1, None, b"b")

    assert session.total_chunks is None
    assert not session.is_complete
    assert not session.claim_completion()


def test_completion_is_claimed_exactly_once(session):
    session.accept(0, 1, b"only")

    assert session.claim_completion()
    assert not session.claim_completion()


def test_missing_indices(session):
    session.accept(0, 4, b"a")
    session.accept(2, 4, b"c")

    assert session.missing() == {1, 3}
    assert session.missing(3) == {1}


def test_done_session_refuses_chunks(session):
    session.state = SessionState.DONE
    with pytest.raises(SessionClosed):
        session.accept(0, 1, b"x")


def test_failed_session_refuses_chunks(session):
    session.state = SessionState.FAILED
    with pytest.raises(FatalStorageError):
        session.accept(0, 1, b"x")


def test_lock_timeout_is_transient(session):
    with session.locked():
        with pytest.raises(TransientIOError):
            with session.locked(timeout=0.01):
                pass


def test_snapshot(session):
    session.accept(1, 3, b"bb")
    session.accept(0, 3, b"a")

    assert session.snapshot() == {
        "session": "s1",
        "status": "collecting",
        "totalChunks": 3,
        "acceptedChunks": [0, 1],
        "bytesWritten": 3,
    }


def test_failed_append_is_rolled_back_and_retried(storage):
    storage.append(b"abc")
    storage._stream = FlakyStream(storage._stream)

    storage.append(b"def")

    storage.close()
    assert storage.working_path.read_bytes() == b"abcdef"
    assert storage.bytes_written == 6


def test_append_gives_up_after_retries(storage, monkeypatch):
    storage.append(b"abc")
    storage._stream = FlakyStream(storage._stream)
    original_rewind = storage._rewind

    def rewind_and_break(offset):
        original_rewind(offset)
        storage._stream = FlakyStream(storage._stream)

    monkeypatch.setattr(storage, "_rewind", rewind_and_break)

    with pytest.raises(TransientIOError):
        storage.append(b"def")

    storage.close()
    assert storage.working_path.read_bytes() == b"abc"
    assert storage.bytes_written == 3


def test_discard_removes_session_directory(storage):
    storage.append(b"abc")
    storage.spool(4, b"later")

    result = storage.discard()

    assert result["success"]
    assert result["files_removed"] == 2
    assert not storage.session_dir.exists()
