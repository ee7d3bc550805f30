"""Periodic driver for reconciliation passes.

Runs a pass as soon as it starts and then every fixed interval. Passes,
scheduled or triggered by hand, never overlap.
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from postpulse.core.logging import get_logger
from postpulse.ingestor.pipeline import PassResult

logger = get_logger(__name__)


class ReconcileScheduler:
    """Owns the periodic task and serializes passes."""

    def __init__(
        self,
        run_pass: Callable[[], Awaitable[PassResult]],
        interval_seconds: float,
        history_size: int = 20,
    ) -> None:
        self.run_pass = run_pass
        self.interval_seconds = interval_seconds
        self.history: Deque[PassResult] = deque(maxlen=history_size)
        self.passes_run = 0
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def last_result(self) -> Optional[PassResult]:
        return self.history[-1] if self.history else None

    def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        self._task = asyncio.create_task(self._run_forever(), name="reconcile-scheduler")
        logger.info(f"Scheduler started, interval {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Scheduler stopped")

    async def _run_forever(self) -> None:
        while True:
            await self.trigger(wait=True)
            await asyncio.sleep(self.interval_seconds)

    async def trigger(self, wait: bool = True) -> Optional[PassResult]:
        """
        Run one pass now.

        With ``wait=False`` returns None instead of queueing when a pass
        is already in progress.
        """
        if not wait and self._lock.locked():
            return None

        async with self._lock:
            try:
                result = await self.run_pass()
            except Exception:
                # A pass must never kill the periodic loop
                logger.exception("Reconciliation pass crashed")
                return None

            self.passes_run += 1
            self.history.append(result)
            return result

    def status(self) -> Dict[str, Any]:
        recent: List[Dict[str, Any]] = [result.to_dict() for result in reversed(self.history)]
        return {
            "running": self.running,
            "busy": self.busy,
            "interval_seconds": self.interval_seconds,
            "passes_run": self.passes_run,
            "last_result": recent[0] if recent else None,
            "history": recent,
        }
