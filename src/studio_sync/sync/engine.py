"""
Sync Engine - drains the offline queue when connectivity returns.

Each pass replays queued requests one at a time in creation order and
reconciles the outcome into the store:

- success: the placeholder artifact becomes completed and the queued
  request is removed
- failure: retry_count goes up by one; once it exceeds the sync retry
  budget the artifact is marked failed and the request becomes a dead
  letter

Only one pass runs at a time.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from studio_sync.connectivity.monitor import ConnectivityMonitor
from studio_sync.core.exceptions import StorageError, StudioSyncError
from studio_sync.core.models import ArtifactRecord, DeadLetterRecord, QueuedRequestRecord
from studio_sync.store.database import LocalStore
from studio_sync.sync.submission import SubmissionService

logger = logging.getLogger(__name__)

MAX_SYNC_RETRIES = 3


@dataclass
class SyncReport:
    """Outcome of one queue drain."""

    completed: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def processed(self) -> int:
        return len(self.completed) + len(self.retried) + len(self.failed)

    def to_summary(self) -> dict[str, int | bool]:
        return {
            "processed": self.processed,
            "completed": len(self.completed),
            "retried": len(self.retried),
            "failed": len(self.failed),
            "skipped": self.skipped,
        }


def _error_text(error: BaseException) -> str:
    if isinstance(error, StudioSyncError):
        return error.message
    return str(error) or error.__class__.__name__


class SyncEngine:
    """
    Replays queued requests through the submission path.

    Example:
        >>> engine = SyncEngine(store, submission)
        >>> engine.attach(monitor)  # drain on every recovery
        >>> report = await engine.process_sync_queue()
    """

    def __init__(
        self,
        store: LocalStore,
        submission: SubmissionService,
        *,
        max_sync_retries: int = MAX_SYNC_RETRIES,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Store holding artifacts and the queue
            submission: Path used to execute each replay
            max_sync_retries: Failed attempts tolerated before giving up
        """
        self._store = store
        self._submission = submission
        self._max_sync_retries = max_sync_retries
        self._pass_lock = asyncio.Lock()
        self._rerun = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        """True while a pass is in progress."""
        return self._pass_lock.locked()

    def attach(self, monitor: ConnectivityMonitor) -> None:
        """Schedule a pass whenever the monitor reports recovery."""
        monitor.subscribe(self.schedule)

    def detach(self, monitor: ConnectivityMonitor) -> None:
        monitor.unsubscribe(self.schedule)

    def schedule(self) -> asyncio.Task:
        """Start a pass in the background and keep a reference to it."""
        task = asyncio.create_task(self.process_sync_queue())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every scheduled pass to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def process_sync_queue(self) -> SyncReport:
        """
        Drain the queue once.

        A call made while another pass is running returns immediately
        with a skipped report, so no queued request is replayed twice
        concurrently. The running pass then re-reads the queue before it
        finishes and picks up anything enqueued in the meantime; requests
        it already attempted are left for the next pass.

        Raises:
            StorageError: If the store fails; the pass stops there
        """
        if self._pass_lock.locked():
            self._rerun = True
            logger.info("Sync pass already in progress, it will re-read the queue")
            return SyncReport(skipped=True)

        async with self._pass_lock:
            report = SyncReport()
            attempted: set[str] = set()
            self._rerun = True
            while self._rerun:
                self._rerun = False
                requests = [
                    r for r in await self._store.queue.get_all_by_time() if r.id not in attempted
                ]
                if not requests:
                    break

                logger.info("Found %d item(s) in the sync queue", len(requests))
                for request in requests:
                    attempted.add(request.id)
                    await self._sync_one(request.id, report)

            if attempted:
                logger.info("Sync pass finished: %s", report.to_summary())
            else:
                logger.info("Sync queue is empty")
            return report

    async def resurrect(self, artifact_id: str) -> ArtifactRecord:
        """
        Put a given-up request back in the queue.

        Raises:
            RecordNotFoundError: If the artifact has no dead letter
        """
        artifact = await self._store.resurrect(artifact_id)
        logger.info("Resurrected request %s", artifact_id)
        return artifact

    async def dead_letters(self) -> list[DeadLetterRecord]:
        return await self._store.dead_letters.get_all_by_time()

    async def _sync_one(self, request_id: str, report: SyncReport) -> None:
        # Re-read: the record may have changed or gone since the listing.
        request = await self._store.queue.get(request_id)
        if request is None:
            return

        logger.info("Processing request %s of type %s", request.id, request.request_type.value)
        try:
            result = await self._submission.execute(
                request.request_type, request.payload, force_online=True
            )
        except StorageError:
            raise
        except Exception as e:
            await self._record_failure(request, e, report)
            return

        artifact = await self._store.complete(request.id, result)
        if artifact is None:
            logger.warning("Artifact %s vanished before sync completed", request.id)
        logger.info("Synced request %s", request.id)
        report.completed.append(request.id)

    async def _record_failure(
        self, request: QueuedRequestRecord, error: Exception, report: SyncReport
    ) -> None:
        message = _error_text(error)
        updated = await self._store.queue.update(
            request.id,
            lambda current: {"retry_count": current.retry_count + 1, "last_error": message},
        )
        if updated is None:
            return

        if updated.retry_count > self._max_sync_retries:
            await self._store.give_up(request.id, message)
            logger.error(
                "Request %s failed after %d sync attempts and was removed from the queue: %s",
                request.id,
                updated.retry_count,
                message,
            )
            report.failed.append(request.id)
        else:
            logger.warning(
                "Request %s failed, will retry (attempt %d/%d): %s",
                request.id,
                updated.retry_count,
                self._max_sync_retries,
                message,
            )
            report.retried.append(request.id)
