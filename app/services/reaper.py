"""Background task that purges abandoned upload sessions."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class SessionReaper:
    """
    Periodically asks the upload service to drop sessions that have been
    idle for longer than the configured timeout.
    """

    def __init__(self, upload_service, interval_seconds: float):
        self.upload_service = upload_service
        self.interval_seconds = interval_seconds
        self._running = False
        self._task = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Session reaper already running")
            return
        if self.interval_seconds <= 0:
            logger.info("Session reaper disabled")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started session reaper (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped session reaper")

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                await self.upload_service.reap_idle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in session reaper: {e}", exc_info=True)
