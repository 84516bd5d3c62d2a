"""
Worker pool for multi-store refresh.

A fixed set of asyncio workers drains a queue of store numbers, so at most
``concurrency`` refreshes are in flight. Every submitted store yields exactly
one RefreshResult; duplicates are collapsed before queueing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .orchestrator import RefreshOrchestrator, RefreshResult
from .progress import Phase, Progress, ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)


@dataclass
class PoolSummary:
    """Per-store results plus aggregate tallies."""

    results: Dict[str, RefreshResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> List[str]:
        return [sn for sn, r in self.results.items() if r.success]

    @property
    def failed(self) -> List[str]:
        return [sn for sn, r in self.results.items() if not r.success]

    @property
    def products_added(self) -> int:
        return sum(r.products_added for r in self.results.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "products_added": self.products_added,
            "stores": {sn: r.to_dict() for sn, r in self.results.items()},
        }


class WorkerPool:
    """Bounded-concurrency fan-out of RefreshOrchestrator.refresh."""

    def __init__(self, orchestrator: RefreshOrchestrator, concurrency: int = 100):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.orchestrator = orchestrator
        self.concurrency = concurrency

    async def run(
        self,
        store_numbers: Iterable[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> PoolSummary:
        """Refresh every store; one store's failure never stops the others."""
        stores = list(dict.fromkeys(str(sn) for sn in store_numbers))
        total = len(stores)
        results: Dict[str, RefreshResult] = {}
        if not stores:
            return PoolSummary()

        queue: asyncio.Queue = asyncio.Queue()
        for store_number in stores:
            queue.put_nowait(store_number)

        reporter = ProgressReporter(on_progress)
        logger.info(
            f"Refreshing {total} stores with {min(self.concurrency, total)} workers"
        )

        async def worker(worker_id: int):
            while True:
                try:
                    store_number = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    result = await self.orchestrator.refresh(
                        store_number, on_progress=on_progress
                    )
                except Exception as e:
                    logger.exception(
                        f"Worker {worker_id}: store {store_number} crashed: {e}"
                    )
                    result = RefreshResult(
                        store_number=store_number,
                        success=False,
                        error=str(e),
                        error_kind=type(e).__name__,
                    )
                finally:
                    queue.task_done()

                results[store_number] = result
                done = len(results)
                reporter.emit(
                    Progress(
                        Phase.COMMITTING,
                        done,
                        total,
                        f"{done} of {total} stores complete",
                    )
                )

        workers = [
            asyncio.create_task(worker(i))
            for i in range(min(self.concurrency, total))
        ]
        await asyncio.gather(*workers)

        summary = PoolSummary(results={sn: results[sn] for sn in stores})
        logger.info(
            f"Refresh complete: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed, {summary.products_added} products"
        )
        return summary
