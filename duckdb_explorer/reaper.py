"""Background task that closes pooled connections left idle too long."""

import asyncio

import structlog

from duckdb_explorer.database import ConnectionPool

logger = structlog.get_logger()

DEFAULT_IDLE_TIMEOUT_SECONDS = 15 * 60


class IdleReaper:
    """
    Periodically prunes idle connections from a ``ConnectionPool``.

    Runs every ``interval`` seconds (default: a third of the idle timeout).
    A connection is closed once it has not been acquired for longer than
    ``idle_timeout`` seconds.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        interval: float | None = None,
    ) -> None:
        self._pool = pool
        self._idle_timeout = idle_timeout
        self._interval = interval if interval is not None else idle_timeout / 3
        self._task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> list[str]:
        """Run a single reaping pass and return the closed paths."""
        reaped = self._pool.reap_idle(self._idle_timeout)
        if reaped:
            logger.info(
                "idle_reap_completed",
                closed_count=len(reaped),
                pool_size=len(self._pool),
            )
        return reaped

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                self.run_once()
            except asyncio.CancelledError:
                logger.info("idle_reaper_cancelled")
                break
            except Exception as e:
                logger.error("idle_reap_failed", error=str(e))

    def start(self) -> None:
        """Start the reaper loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "idle_reaper_started",
            idle_timeout_seconds=self._idle_timeout,
            interval_seconds=self._interval,
        )

    async def stop(self) -> None:
        """Cancel the reaper loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
