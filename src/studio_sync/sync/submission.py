"""
Submission path for generation requests.

Online submissions run immediately and are stored as completed artifacts.
Offline submissions become a queued placeholder artifact plus a queued
request sharing one id, to be delivered later by the SyncEngine.
"""

import logging
import uuid

from studio_sync.connectivity.monitor import ConnectivityMonitor
from studio_sync.core.exceptions import OfflineError
from studio_sync.core.models import (
    ArtifactRecord,
    ArtifactStatus,
    GenerationResult,
    OperationHandle,
    QueuedRequestRecord,
    RequestPayload,
    RequestType,
)
from studio_sync.generation.client import GenerationClient
from studio_sync.generation.poller import CancellationToken, OperationPoller, ProgressCallback
from studio_sync.store.database import LocalStore

logger = logging.getLogger(__name__)


class SubmissionService:
    """Routes requests to the generation client or to the offline queue."""

    def __init__(
        self,
        store: LocalStore,
        client: GenerationClient,
        poller: OperationPoller,
        monitor: ConnectivityMonitor,
    ) -> None:
        self._store = store
        self._client = client
        self._poller = poller
        self._monitor = monitor

    async def submit(
        self,
        request_type: RequestType,
        payload: RequestPayload,
        *,
        force_online: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> ArtifactRecord:
        """
        Submit a request and record its artifact.

        Args:
            request_type: Kind of request
            payload: Parameters of the request
            force_online: Ignore the monitor's offline state
            on_progress: Progress callback for asynchronous jobs

        Returns:
            The completed artifact, or the queued placeholder when offline

        Raises:
            CredentialError, InvalidRequestError, ExhaustedRetriesError,
            GenerationError: On online failures; nothing is stored then
        """
        try:
            result = await self.execute(
                request_type, payload, force_online=force_online, on_progress=on_progress
            )
        except OfflineError:
            return await self._enqueue(request_type, payload)

        artifact = ArtifactRecord(
            id=str(uuid.uuid4()),
            prompt_text=payload.prompt,
            request_type=request_type,
            status=ArtifactStatus.COMPLETED,
            payload=result,
        )
        await self._store.artifacts.put(artifact)
        logger.info("Stored completed %s artifact %s", request_type.value, artifact.id)
        return artifact

    async def execute(
        self,
        request_type: RequestType,
        payload: RequestPayload,
        *,
        force_online: bool = False,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult:
        """
        Run a request against the service without touching the store.

        Asynchronous request types are polled to completion.

        Raises:
            OfflineError: If offline and force_online is False
        """
        if not force_online and not self._monitor.is_online:
            raise OfflineError()

        outcome = await self._client.run(request_type, payload)
        if isinstance(outcome, OperationHandle):
            return await self._poller.poll_until_done(outcome, on_progress, cancel_token)
        return outcome

    async def _enqueue(self, request_type: RequestType, payload: RequestPayload) -> ArtifactRecord:
        record_id = str(uuid.uuid4())
        artifact = ArtifactRecord(
            id=record_id,
            prompt_text=payload.prompt,
            request_type=request_type,
            status=ArtifactStatus.QUEUED,
        )
        request = QueuedRequestRecord(
            id=record_id,
            request_type=request_type,
            payload=payload,
            created_at=artifact.created_at,
        )
        await self._store.enqueue(artifact, request)
        logger.info("Offline: queued %s request %s", request_type.value, record_id)
        return artifact
