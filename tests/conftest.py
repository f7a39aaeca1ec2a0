"""Shared pytest fixtures for all tests."""

import os
import pytest
from fastapi.testclient import TestClient
from app.core.config import Settings
from app.main import create_app
from app.services.upload_service import UploadService


@pytest.fixture
def settings(tmp_path):
    """
    Settings pointing at temporary upload and working directories.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Settings instance with the reaper disabled
    """
    return Settings(
        UPLOAD_DIR=str(tmp_path / "uploads"),
        WORKING_DIR=str(tmp_path / "temp_chunks"),
        UPLOAD_SERVICE_BASE_URL="http://testserver",
        CHUNK_LOCK_TIMEOUT_SECONDS=5.0,
        FINALIZE_WAIT_SECONDS=1.0,
        REAPER_INTERVAL_SECONDS=0,
        IO_WORKERS=4,
    )


@pytest.fixture
def service(settings):
    """UploadService backed by the temporary directories."""
    upload_service = UploadService(settings)
    yield upload_service
    upload_service.thread_pool.shutdown(wait=True)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    """FastAPI test client with the application lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def payload_300k():
    """300 KiB of non-repeating bytes: three chunks of 128/128/44 KiB."""
    return os.urandom(300 * 1024)
