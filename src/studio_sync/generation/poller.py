"""
Operation Poller - drives long-running remote jobs to completion.

Checks an operation's status at a fixed cadence until it reports done,
then downloads the finished artifact. A CancellationToken lets callers
abandon a stale poll; there is no other timeout.
"""

import asyncio
import logging
from typing import Callable

from studio_sync.core.exceptions import GenerationError, OperationCancelledError
from studio_sync.core.models import GenerationResult, OperationHandle
from studio_sync.generation.client import GenerationClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

DEFAULT_POLL_INTERVAL = 10.0  # seconds

CHECKING_STATUS = "Checking status..."
PROCESSING_COMPLETE = "Processing complete."
FETCHING_DATA = "Fetching data..."


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a poll."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """Wait up to timeout seconds; return True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class OperationPoller:
    """Polls one operation at a time until it finishes."""

    def __init__(self, client: GenerationClient, *, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        """
        Initialize the poller.

        Args:
            client: Client used for status checks and the final download
            interval: Seconds to wait between status checks
        """
        self._client = client
        self._interval = interval

    async def poll_until_done(
        self,
        handle: OperationHandle,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult:
        """
        Wait for an operation to finish and fetch its artifact.

        Args:
            handle: Handle returned when the job was submitted
            on_progress: Called with a message at each phase boundary
            cancel_token: Token that abandons the poll when cancelled

        Returns:
            GenerationResult holding the downloaded bytes

        Raises:
            OperationCancelledError: If the token is cancelled before completion
            GenerationError: If the operation failed or produced no artifact
            ExhaustedRetriesError: If a status check or download keeps failing
        """
        token = cancel_token or CancellationToken()
        report = on_progress or (lambda message: None)
        current = handle

        while not current.done:
            if token.cancelled or await token.wait(self._interval):
                logger.info("Poll of %s cancelled", handle.name)
                raise OperationCancelledError(operation=handle.name)
            report(CHECKING_STATUS)
            current = await self._client.get_operation_status(current)

        if current.error:
            raise GenerationError(
                f"Operation failed: {current.error}", request_type=current.request_type.value
            )

        report(PROCESSING_COMPLETE)
        descriptor = current.result
        if descriptor is None:
            raise GenerationError(
                "Operation completed but no download link was found",
                request_type=current.request_type.value,
            )

        report(FETCHING_DATA)
        data = await self._client.download(descriptor)
        if not data:
            raise GenerationError(
                "Downloaded artifact is empty", request_type=current.request_type.value
            )
        logger.info("Fetched result of %s (%d bytes)", handle.name, len(data))
        return GenerationResult.from_bytes(data, descriptor.mime_type, source_uri=descriptor.uri)

    def start(
        self,
        handle: OperationHandle,
        on_progress: ProgressCallback | None = None,
    ) -> tuple[asyncio.Task, CancellationToken]:
        """Run a poll as a task; returns the task and the token that stops it."""
        token = CancellationToken()
        task = asyncio.create_task(self.poll_until_done(handle, on_progress, token))
        return task, token
