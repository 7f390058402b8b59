"""Resume worker: advances due runs when no external broker drives callbacks."""

import asyncio
import os
import socket
import traceback
from typing import TYPE_CHECKING, Optional

import structlog

from edujobs import __version__

if TYPE_CHECKING:
    from edujobs.engine.engine import JobEngine

logger = structlog.get_logger(__name__)


def generate_worker_id() -> str:
    """Generate a unique worker ID: hostname:pid."""
    return f"{socket.gethostname()}:{os.getpid()}"


class ResumeWorker:
    """Polls the run store for due runs and advances them concurrently."""

    def __init__(
        self,
        engine: "JobEngine",
        poll_interval_s: float = 1.0,
        parallelism: int = 4,
        batch_size: int = 20,
        reap_interval_s: float = 60.0,
    ):
        self._engine = engine
        self._poll_interval_s = poll_interval_s
        self._semaphore = asyncio.Semaphore(parallelism)
        self._batch_size = batch_size
        self._reap_interval_s = reap_interval_s
        self._running = False
        self._inflight: set[str] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def worker_id(self) -> str:
        return self._engine.worker_id

    @property
    def running(self) -> bool:
        return self._running

    def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.start())
        return self._task

    async def start(self):
        """Run the poll loop until stop() is called."""
        self._running = True
        store = self._engine.store
        lock_timeout = self._engine.lock_timeout_s

        logger.info("worker_started", worker_id=self.worker_id, version=__version__)

        loop = asyncio.get_running_loop()
        last_reap = loop.time()

        while self._running:
            try:
                run_ids = [
                    run_id
                    for run_id in await store.due_runs(self._batch_size, lock_timeout)
                    if run_id not in self._inflight
                ]
                if run_ids:
                    await asyncio.gather(*(self._advance(run_id) for run_id in run_ids))
                else:
                    await asyncio.sleep(self._poll_interval_s)

                now = loop.time()
                if now - last_reap >= self._reap_interval_s:
                    await store.reap_stale_locks(lock_timeout)
                    last_reap = now

            except asyncio.CancelledError:
                logger.info("worker_cancelled", worker_id=self.worker_id)
                break
            except Exception as e:
                logger.error(
                    "worker_loop_error", error=str(e), traceback=traceback.format_exc()
                )
                await asyncio.sleep(self._poll_interval_s)

        logger.info("worker_stopped", worker_id=self.worker_id)

    async def stop(self):
        """Stop the worker loop gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _advance(self, run_id: str):
        self._inflight.add(run_id)
        try:
            async with self._semaphore:
                result = await self._engine.advance(run_id)
            logger.debug(
                "worker_advanced",
                run_id=run_id,
                status=result.status.value,
                run_status=result.run_status.value if result.run_status else None,
            )
        except Exception as e:
            logger.error("worker_advance_failed", run_id=run_id, error=str(e))
        finally:
            self._inflight.discard(run_id)
