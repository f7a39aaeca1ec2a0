"""Tests for the idle session reaper."""

import asyncio
import pytest

from app.services.reaper import SessionReaper


class CountingService:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    async def reap_idle(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("boom")
        return 0


@pytest.mark.asyncio
async def test_reaper_runs_periodically():
    service = CountingService()
    reaper = SessionReaper(service, interval_seconds=0.01)

    await reaper.start()
    await asyncio.sleep(0.1)
    await reaper.stop()

    assert service.calls >= 2
    assert not reaper.running


@pytest.mark.asyncio
async def test_reaper_survives_errors():
    service = CountingService(fail=True)
    reaper = SessionReaper(service, interval_seconds=0.01)

    await reaper.start()
    await asyncio.sleep(0.1)
    assert reaper.running
    await reaper.stop()

    assert service.calls >= 2


@pytest.mark.asyncio
async def test_zero_interval_disables_reaper():
    reaper = SessionReaper(CountingService(), interval_seconds=0)

    await reaper.start()

    assert not reaper.running
    await reaper.stop()


@pytest.mark.asyncio
async def test_reaper_purges_idle_sessions(service):
    await service.accept_chunk("old", 0, 2, b"x", None)
    service.registry.get("old").last_activity -= service.settings.SESSION_IDLE_TIMEOUT_SECONDS + 1
    reaper = SessionReaper(service, interval_seconds=0.01)

    await reaper.start()
    await asyncio.sleep(0.1)
    await reaper.stop()

    assert "old" not in service.registry
