"""Bounded worker pool for fire-and-forget ingestion.

Request handlers that create documents call :meth:`IngestionQueue.submit`
and return immediately; a fixed number of worker tasks drain the queue
through :meth:`IngestionCoordinator.ingest`.  A full queue applies
backpressure (``submit`` waits, ``submit_nowait`` raises), and every
outcome is logged and optionally handed to ``on_result`` so failures
are observable instead of disappearing with a detached task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from knowledge_base.exceptions import QueueFullError
from knowledge_base.ingestion.coordinator import IngestionCoordinator
from knowledge_base.models import IngestionResult

logger = logging.getLogger(__name__)

ResultCallback = Callable[[IngestionResult], Awaitable[None] | None]


@dataclass(frozen=True)
class IngestionRequest:
    """One queued ingestion."""

    document_id: str
    tenant_id: str


class IngestionQueue:
    """Run ingestions on a pool of background workers.

    Parameters
    ----------
    coordinator:
        Coordinator executing each request.
    workers:
        Number of concurrent worker tasks.
    maxsize:
        Queue capacity; ``submit`` blocks once this many requests wait.
    on_result:
        Optional (sync or async) callback receiving every result.

    Usage::

        async with IngestionQueue(coordinator, workers=4) as queue:
            await queue.submit(doc.id, doc.tenant_id)
            ...
            await queue.join()
    """

    def __init__(
        self,
        coordinator: IngestionCoordinator,
        *,
        workers: int = 4,
        maxsize: int = 100,
        on_result: ResultCallback | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self._coordinator = coordinator
        self._num_workers = workers
        self._queue: asyncio.Queue[IngestionRequest] = asyncio.Queue(maxsize=maxsize)
        self._on_result = on_result
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Spawn the worker tasks.  Must be called from a running event loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"ingestion-worker-{i}")
            for i in range(self._num_workers)
        ]
        logger.info("Started %d ingestion workers", self._num_workers)

    async def join(self) -> None:
        """Wait until every submitted request has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers.  Requests still queued are dropped."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Stopped ingestion workers (%d requests dropped)", self._queue.qsize())

    async def __aenter__(self) -> IngestionQueue:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # -- submission -----------------------------------------------------------

    async def submit(self, document_id: str, tenant_id: str) -> None:
        """Enqueue an ingestion, waiting for room if the queue is full."""
        await self._queue.put(IngestionRequest(document_id, tenant_id))

    def submit_nowait(self, document_id: str, tenant_id: str) -> None:
        """Enqueue an ingestion or raise :class:`QueueFullError` immediately."""
        try:
            self._queue.put_nowait(IngestionRequest(document_id, tenant_id))
        except asyncio.QueueFull as exc:
            raise QueueFullError(
                "Ingestion queue is full",
                {"document_id": document_id, "capacity": self._queue.maxsize},
            ) from exc

    # -- internals ------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        while True:
            request = await self._queue.get()
            try:
                result = await self._coordinator.ingest(request.document_id, request.tenant_id)
                if result.success:
                    logger.info(
                        "worker-%d ingested %s (%d chunks)",
                        index,
                        request.document_id,
                        result.chunks_created,
                    )
                else:
                    logger.warning("worker-%d failed to ingest %s: %s", index, request.document_id, result.error)
                await self._deliver(result)
            except Exception:
                logger.exception("worker-%d crashed on %s", index, request.document_id)
            finally:
                self._queue.task_done()

    async def _deliver(self, result: IngestionResult) -> None:
        if self._on_result is None:
            return
        outcome = self._on_result(result)
        if asyncio.iscoroutine(outcome):
            await outcome
