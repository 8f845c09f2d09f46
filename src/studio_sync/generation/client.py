"""
Generation Client - narrow adapter to the generation service.

One coroutine per request type. Every remote call goes through the retry
policy and looks the credential up at call time. The client never touches
the local store.
"""

import logging
from typing import Callable

from studio_sync.core.exceptions import (
    CredentialError,
    GenerationError,
    InvalidRequestError,
)
from studio_sync.core.models import (
    ArtifactDescriptor,
    GenerationResult,
    OperationHandle,
    RequestPayload,
    RequestType,
)
from studio_sync.generation.retry import RetryPolicy
from studio_sync.generation.service import GenerationService

logger = logging.getLogger(__name__)

CredentialLookup = Callable[[str], str | None]

DEFAULT_CREDENTIAL_SERVICE = "API_KEY"


def script_prompt(topic: str, platform: str) -> str:
    """Build the instruction used for short-form video script requests."""
    return (
        f"Write an engaging short-form video script for {platform} about: {topic}. "
        "Include a hook, scene-by-scene narration and a call to action."
    )


class GenerationClient:
    """
    Adapter exposing one operation per request type.

    Synchronous types return a GenerationResult; video types return an
    OperationHandle to be driven by the OperationPoller.
    """

    def __init__(
        self,
        service: GenerationService,
        credentials: CredentialLookup,
        *,
        retry_policy: RetryPolicy | None = None,
        credential_service: str = DEFAULT_CREDENTIAL_SERVICE,
    ) -> None:
        """
        Initialize the client.

        Args:
            service: Remote generation service
            credentials: Lookup from service id to secret (None if unset)
            retry_policy: Backoff settings for every remote call
            credential_service: Service id passed to the credential lookup
        """
        self._service = service
        self._credentials = credentials
        self._retry = retry_policy or RetryPolicy()
        self._credential_service = credential_service

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    async def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> GenerationResult:
        return await self.run(
            RequestType.GENERATE_IMAGE, RequestPayload(prompt=prompt, aspect_ratio=aspect_ratio)
        )

    async def edit_image(self, prompt: str, image_base64: str, mime_type: str) -> GenerationResult:
        return await self.run(
            RequestType.EDIT_IMAGE,
            RequestPayload(prompt=prompt, image_base64=image_base64, mime_type=mime_type),
        )

    async def generate_script(self, topic: str, platform: str = "TikTok") -> GenerationResult:
        return await self.run(
            RequestType.GENERATE_SCRIPT,
            RequestPayload(prompt=script_prompt(topic, platform), topic=topic, platform=platform),
        )

    async def generate_video(
        self,
        prompt: str,
        *,
        aspect_ratio: str = "16:9",
        resolution: str = "720p",
        image_base64: str | None = None,
        mime_type: str | None = None,
    ) -> OperationHandle:
        return await self.run(
            RequestType.GENERATE_VIDEO,
            RequestPayload(
                prompt=prompt,
                aspect_ratio=aspect_ratio,
                resolution=resolution,
                image_base64=image_base64,
                mime_type=mime_type,
            ),
        )

    async def extend_video(
        self, prompt: str, video_uri: str, *, aspect_ratio: str = "16:9"
    ) -> OperationHandle:
        return await self.run(
            RequestType.EXTEND_VIDEO,
            RequestPayload(prompt=prompt, video_uri=video_uri, aspect_ratio=aspect_ratio),
        )

    async def run(
        self, request_type: RequestType, payload: RequestPayload
    ) -> GenerationResult | OperationHandle:
        """
        Submit a request of any type.

        Raises:
            InvalidRequestError: If the payload lacks a required field
            CredentialError: If no credential is configured or it is rejected
            ExhaustedRetriesError: If transient failures outlast the policy
            GenerationError: If the service answers with an unexpected shape
        """
        _validate(request_type, payload)

        async def attempt() -> GenerationResult | OperationHandle:
            return await self._service.submit(request_type, payload, self._credential())

        result = await self._retry.run(attempt)

        expected = OperationHandle if request_type.is_async else GenerationResult
        if not isinstance(result, expected):
            raise GenerationError(
                f"Service returned {type(result).__name__}, expected {expected.__name__}",
                request_type=request_type.value,
            )
        logger.debug("Submitted %s request", request_type.value)
        return result

    async def get_operation_status(self, handle: OperationHandle) -> OperationHandle:
        """Refresh an operation handle."""

        async def attempt() -> OperationHandle:
            return await self._service.get_operation_status(handle, self._credential())

        return await self._retry.run(attempt)

    async def download(self, descriptor: ArtifactDescriptor) -> bytes:
        """Download the bytes of a finished artifact."""

        async def attempt() -> bytes:
            return await self._service.download_artifact(descriptor, self._credential())

        return await self._retry.run(attempt)

    def _credential(self) -> str:
        credential = self._credentials(self._credential_service)
        if not credential:
            raise CredentialError(
                f"No credential configured. Set the {self._credential_service} environment variable.",
                service=self._credential_service,
            )
        return credential


def _validate(request_type: RequestType, payload: RequestPayload) -> None:
    missing = []
    if not payload.prompt.strip():
        missing.append("prompt")
    if request_type is RequestType.EDIT_IMAGE:
        if not payload.image_base64:
            missing.append("image_base64")
        if not payload.mime_type:
            missing.append("mime_type")
    if request_type is RequestType.EXTEND_VIDEO and not payload.video_uri:
        missing.append("video_uri")

    if missing:
        raise InvalidRequestError(
            f"Missing required fields for {request_type.value}: {', '.join(missing)}",
            request_type=request_type.value,
            details={"missing": missing},
        )
