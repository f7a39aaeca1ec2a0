"""Tests for the chunk-upload command line."""

import pytest

from uploader import cli
from uploader.transport import UploadFailedError, UploadResult


class StubTransport:
    instances = []

    def __init__(self, config, outcome=None):
        self.config = config
        self.outcome = outcome
        self.calls = []
        self.cancelled = False
        self.closed = False
        StubTransport.instances.append(self)

    def upload_file(self, path, session_id=None, resume=False, progress=None):
        self.calls.append((path, session_id, resume))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        progress(1, 1)
        return UploadResult(session_id or "issued", 1, "http://localhost:8080/files/x_final_video.webm", "x_final_video.webm", sent=1)

    def cancel(self):
        self.cancelled = True

    def close(self):
        self.closed = True


@pytest.fixture
def stub(monkeypatch):
    StubTransport.instances = []

    def install(outcome=None):
        monkeypatch.setattr(cli, "UploadTransport", lambda config: StubTransport(config, outcome))
        return StubTransport.instances

    return install


def test_options_reach_config():
    args = cli.build_parser().parse_args(
        ["movie.webm", "--url", "http://host:9000", "--chunk-size", "1024", "--workers", "4", "--max-retries", "0"]
    )
    config = cli._config_from_args(args)

    assert config.BASE_URL == "http://host:9000"
    assert config.CHUNK_SIZE == 1024
    assert config.MAX_WORKERS == 4
    assert config.MAX_RETRIES == 0


def test_retry_forever():
    args = cli.build_parser().parse_args(["movie.webm", "--retry-forever"])
    assert cli._config_from_args(args).MAX_RETRIES is None


def test_retry_options_are_exclusive():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["movie.webm", "--retry-forever", "--max-retries", "3"])


def test_resume_needs_session():
    with pytest.raises(SystemExit):
        cli.main(["movie.webm", "--resume"])


def test_successful_upload(stub, capsys):
    instances = stub()

    code = cli.main(["movie.webm", "--session", "abc", "--resume"])

    assert code == 0
    assert instances[0].calls == [("movie.webm", "abc", True)]
    assert instances[0].closed
    assert "x_final_video.webm" in capsys.readouterr().out


def test_failed_upload(stub):
    instances = stub(UploadFailedError("gave up"))
    assert cli.main(["movie.webm"]) == 1
    assert instances[0].closed


def test_missing_file(stub):
    stub(FileNotFoundError("File not found: movie.webm"))
    assert cli.main(["movie.webm"]) == 1


def test_interrupt_cancels(stub):
    instances = stub(KeyboardInterrupt())

    assert cli.main(["movie.webm"]) == 130
    assert instances[0].cancelled
