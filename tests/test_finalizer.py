"""Tests for sealing a complete session into a published artifact."""

import os
import pytest
from app.core.errors import CallerError, FatalStorageError, SessionIncompleteError
from app.services.finalizer import Finalizer
from app.services.session import SessionState, UploadSession
from app.services.storage.local import LocalSessionStorage


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def finalizer(upload_dir):
    return Finalizer(upload_dir, "_final_video.webm", "http://testserver/")


def make_session(tmp_path, name="s1"):
    return UploadSession(name, LocalSessionStorage(tmp_path / "work" / name), lock_timeout=1.0)


def test_finalize_publishes_artifact(tmp_path, finalizer, upload_dir):
    session = make_session(tmp_path)
    session.accept(1, 2, b"world")
    session.accept(0, 2, b"hello ")

    artifact = finalizer.finalize(session)

    assert artifact.name.endswith("_final_video.webm")
    assert artifact.url == f"http://testserver/files/{artifact.name}"
    assert artifact.size == 11
    assert (upload_dir / artifact.name).read_bytes() == b"hello world"
    assert session.state is SessionState.DONE
    assert not session.storage.session_dir.exists()


def test_finalize_twice_returns_same_artifact(tmp_path, finalizer, upload_dir):
    session = make_session(tmp_path)
    session.accept(0, 1, b"x")

    first = finalizer.finalize(session)
    second = finalizer.finalize(session)

    assert first == second
    assert len(os.listdir(upload_dir)) == 1


def test_artifact_names_are_unique(tmp_path, finalizer):
    names = set()
    for i in range(5):
        session = make_session(tmp_path, f"s{i}")
        session.accept(0, 1, b"same bytes")
        names.add(finalizer.finalize(session).name)

    assert len(names) == 5


def test_finalize_incomplete_session(tmp_path, finalizer, upload_dir):
    session = make_session(tmp_path)
    session.accept(0, 3, b"a")
    session.accept(2, 3, b"c")

    with pytest.raises(SessionIncompleteError) as exc_info:
        finalizer.finalize(session)

    assert exc_info.value.missing == [1]
    assert session.state is SessionState.COLLECTING
    assert not upload_dir.exists() or not os.listdir(upload_dir)


def test_finalize_with_declared_total(tmp_path, finalizer, upload_dir):
    session = make_session(tmp_path)
    session.accept(0, None, b"rec-")
    session.accept(1, None, b"ording")

    artifact = finalizer.finalize(session, total=2)

    assert (upload_dir / artifact.name).read_bytes() == b"rec-ording"
    assert session.total_chunks == 2


def test_finalize_without_any_total_is_caller_error(tmp_path, finalizer):
    session = make_session(tmp_path)
    session.accept(0, None, b"a")

    with pytest.raises(CallerError):
        finalizer.finalize(session)


def test_declared_total_too_small_leaves_session_untouched(tmp_path, finalizer):
    session = make_session(tmp_path)
    session.accept(0, None, b"a")
    session.accept(1, None, b"b")

    with pytest.raises(CallerError):
        finalizer.finalize(session, total=1)
    assert session.total_chunks is None


def test_declared_total_with_missing_chunks(tmp_path, finalizer):
    session = make_session(tmp_path)
    session.accept(0, None, b"a")

    with pytest.raises(SessionIncompleteError):
        finalizer.finalize(session, total=3)
    assert session.total_chunks is None


def test_rename_failure_is_fatal(tmp_path, finalizer, upload_dir, monkeypatch):
    session = make_session(tmp_path)
    session.accept(0, 1, b"data")

    def boom(src, dst):
        raise OSError("disk error")

    monkeypatch.setattr(os, "replace", boom)

    with pytest.raises(FatalStorageError):
        finalizer.finalize(session)

    assert session.state is SessionState.FAILED
    assert session.artifact is None
    assert not session.storage.is_open
    assert not upload_dir.exists() or not os.listdir(upload_dir)

    with pytest.raises(FatalStorageError):
        finalizer.finalize(session)
