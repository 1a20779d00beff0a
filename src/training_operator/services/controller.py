"""Background controller delivering job keys to a reconciler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from training_operator.core.config import Settings, get_settings
from training_operator.core.errors import InvalidSpecError, OperatorError
from training_operator.services.workqueue import WorkQueue

if TYPE_CHECKING:
    from training_operator.services.cluster import ClusterClient
    from training_operator.services.reconciler import JobReconciler

logger = logging.getLogger(__name__)

# Seconds to wait for in-flight reconciles when stopping
SHUTDOWN_GRACE_SECONDS = 30.0


@dataclass
class ControllerMetrics:
    """Counters of one job controller."""

    started_at: datetime | None = None
    reconciles: int = 0
    errors: int = 0
    requeues: int = 0
    last_error: str | None = None
    last_resync: datetime | None = None
    last_duration_seconds: float = 0.0
    jobs_seen: set[str] = field(default_factory=set)


class JobController:
    """Runs reconciles for one job kind on a bounded pool of workers.

    A resync loop lists the kind's jobs at a fixed interval and queues every
    key; workers take keys from the queue and run the blocking reconcile in
    a thread. Errors are retried with capped exponential backoff; a job
    whose spec is invalid is retried at the maximum backoff.

    Example:
        ```python
        controller = JobController(reconciler, cluster)
        await controller.start()  # Start background reconciles
        # ... operator runs ...
        await controller.stop()   # Stop on shutdown
        ```
    """

    def __init__(
        self,
        reconciler: JobReconciler,
        cluster: ClusterClient,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            reconciler: Reconciler for the controller's job kind
            cluster: Cluster client used to list jobs
            settings: Operator settings (uses default if not provided)
        """
        self.reconciler = reconciler
        self.cluster = cluster
        self.settings = settings or get_settings()
        self.metrics = ControllerMetrics()
        self.queue: WorkQueue | None = None
        self._resync_task: asyncio.Task | None = None
        self._workers: list[asyncio.Task] = []
        self._running = False

    @property
    def kind(self) -> str:
        return self.reconciler.kind

    @property
    def is_running(self) -> bool:
        """Check if the controller is running."""
        return self._running and self._resync_task is not None

    def list_job_keys(self) -> list[str]:
        """Keys of every job of this kind in the watched namespace."""
        adapter = self.reconciler.adapter
        items = self.cluster.list_custom_objects(
            adapter.group, adapter.version, adapter.plural, self.settings.namespace
        )
        return [
            f"{item['metadata'].get('namespace', 'default')}/{item['metadata']['name']}"
            for item in items
        ]

    async def resync(self) -> int:
        """List all jobs once and queue their keys.

        Returns:
            Number of keys queued
        """
        assert self.queue is not None
        keys = await asyncio.to_thread(self.list_job_keys)
        for key in keys:
            self.queue.add(key)
        self.metrics.jobs_seen = set(keys)
        self.metrics.last_resync = datetime.now(UTC)
        return len(keys)

    async def _resync_loop(self) -> None:
        """Background loop that relists jobs at the configured interval."""
        interval = self.settings.resync_interval_seconds
        logger.info("%s controller started, resyncing every %d seconds", self.kind, interval)

        while self._running:
            try:
                await self.resync()
            except Exception as e:
                logger.error("Error listing %s jobs: %s", self.kind, e)

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

    async def _worker(self, worker_id: int) -> None:
        assert self.queue is not None
        while True:
            key = await self.queue.get()
            if key is None:
                break
            try:
                await self.process(key)
            finally:
                self.queue.done(key)
        logger.debug("%s worker %d exited", self.kind, worker_id)

    async def process(self, key: str) -> None:
        """Reconcile one job key and schedule its next visit."""
        assert self.queue is not None
        namespace, name = key.split("/", 1)
        started = time.monotonic()
        self.metrics.reconciles += 1
        try:
            result = await asyncio.to_thread(self.reconciler.reconcile, namespace, name)
        except InvalidSpecError as e:
            self._record_error(key, e)
            self.queue.add_after(key, self.settings.requeue_max_seconds)
            return
        except OperatorError as e:
            self._record_error(key, e)
            delay = self.queue.add_rate_limited(key)
            self.metrics.requeues += 1
            logger.info("Requeued %s %s in %.1fs after error", self.kind, key, delay)
            return
        except Exception as e:
            logger.exception("Unexpected error reconciling %s %s", self.kind, key)
            self._record_error(key, e)
            self.queue.add_rate_limited(key)
            self.metrics.requeues += 1
            return
        finally:
            self.metrics.last_duration_seconds = time.monotonic() - started

        self.queue.forget(key)
        if result.requeue_after is not None:
            self.queue.add_after(key, result.requeue_after)
            self.metrics.requeues += 1

    def _record_error(self, key: str, error: Exception) -> None:
        self.metrics.errors += 1
        self.metrics.last_error = f"{key}: {error}"
        logger.warning("Error reconciling %s %s: %s", self.kind, key, error)

    async def start(self) -> None:
        """Start the resync loop and the worker pool.

        Does nothing if the controller is already running.
        """
        if self._running:
            logger.warning("%s controller is already running", self.kind)
            return

        self._running = True
        self.queue = WorkQueue(
            base_delay=self.settings.requeue_base_seconds,
            max_delay=self.settings.requeue_max_seconds,
        )
        self.metrics.started_at = datetime.now(UTC)
        self._workers = [
            asyncio.create_task(self._worker(i)) for i in range(self.settings.workers)
        ]
        self._resync_task = asyncio.create_task(self._resync_loop())
        logger.info("%s controller started with %d workers", self.kind, self.settings.workers)

    async def stop(self) -> None:
        """Stop taking new keys and wait for in-flight reconciles to finish."""
        if not self._running:
            return

        self._running = False

        if self._resync_task is not None:
            self._resync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._resync_task
            self._resync_task = None

        if self.queue is not None:
            self.queue.shutdown(len(self._workers))
        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._workers = []

        logger.info("%s controller stopped", self.kind)
