"""Local worker that runs the scheduled sync on a fixed interval."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from agents.sync_lambda.handler import run_once
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.schemas import ScheduledSyncReport

logger = logging.getLogger(__name__)


class ScheduledSyncWorker:
    """Repeat the sync sweep, sleeping between runs."""

    def __init__(
        self,
        run: Callable[[], Awaitable[ScheduledSyncReport]] = run_once,
        interval_seconds: float = 86400.0,
    ) -> None:
        self._run = run
        self._interval = interval_seconds

    async def run_forever(self, max_runs: Optional[int] = None) -> None:
        runs = 0
        while max_runs is None or runs < max_runs:
            await self.tick()
            runs += 1
            if max_runs is not None and runs >= max_runs:
                break
            await asyncio.sleep(self._interval)

    async def tick(self) -> Optional[ScheduledSyncReport]:
        try:
            report = await self._run()
        except Exception:
            logger.exception("Scheduled sync run failed")
            return None
        logger.info(
            "Scheduled sync run finished",
            extra={"success": report.success, "duration_ms": report.duration_ms},
        )
        return report


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    worker = ScheduledSyncWorker(interval_seconds=settings.sync.interval_minutes * 60)
    await worker.run_forever()


if __name__ == "__main__":  # pragma: no cover - manual execution path
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Scheduled sync worker stopped")
