"""
Core data models for Studio Sync.

Artifacts, queued requests and the shapes exchanged with the
generation service. All persisted records are pydantic models so they
round-trip through the store as JSON.
"""

import base64
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class RequestType(Enum):
    """Kinds of remote operation that can be submitted or replayed."""

    GENERATE_IMAGE = "generate_image"
    EDIT_IMAGE = "edit_image"
    GENERATE_VIDEO = "generate_video"
    EXTEND_VIDEO = "extend_video"
    GENERATE_SCRIPT = "generate_script"

    @property
    def is_async(self) -> bool:
        """Return True if the service answers with an operation handle."""
        return self in (RequestType.GENERATE_VIDEO, RequestType.EXTEND_VIDEO)


class ArtifactStatus(Enum):
    """Lifecycle states of an artifact."""

    QUEUED = "queued"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ArtifactStatus.QUEUED


class RequestPayload(BaseModel):
    """Exact parameters needed to replay a request."""

    prompt: str
    aspect_ratio: str | None = None
    resolution: str | None = None
    image_base64: str | None = None
    mime_type: str | None = None
    video_uri: str | None = None
    topic: str | None = None
    platform: str | None = None


class GenerationResult(BaseModel):
    """Result data of a completed request."""

    mime_type: str
    data_base64: str | None = None
    text: str | None = None
    source_uri: str | None = None

    @model_validator(mode="after")
    def _require_content(self) -> "GenerationResult":
        if not self.data_base64 and not self.text:
            raise ValueError("GenerationResult needs data_base64 or text")
        return self

    @classmethod
    def from_bytes(
        cls, data: bytes, mime_type: str, source_uri: str | None = None
    ) -> "GenerationResult":
        """Build a result from raw bytes."""
        return cls(
            mime_type=mime_type,
            data_base64=base64.b64encode(data).decode("ascii"),
            source_uri=source_uri,
        )

    @property
    def data(self) -> bytes | None:
        """Decoded binary content, if any."""
        if self.data_base64 is None:
            return None
        return base64.b64decode(self.data_base64)

    def to_data_url(self) -> str | None:
        """Render binary content as a data URL for display."""
        if self.data_base64 is None:
            return None
        return f"data:{self.mime_type};base64,{self.data_base64}"


class ArtifactDescriptor(BaseModel):
    """Downloadable reference to a finished remote artifact."""

    uri: str
    mime_type: str = "video/mp4"


class OperationHandle(BaseModel):
    """Opaque reference to an in-progress asynchronous remote job."""

    name: str
    request_type: RequestType
    done: bool = False
    result: ArtifactDescriptor | None = None
    error: str | None = None


class ArtifactRecord(BaseModel):
    """A single requested creative output."""

    id: str
    prompt_text: str
    request_type: RequestType
    status: ArtifactStatus
    payload: GenerationResult | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: _utc_now())
    updated_at: datetime = Field(default_factory=lambda: _utc_now())

    @model_validator(mode="after")
    def _check_status_fields(self) -> "ArtifactRecord":
        if self.payload is not None and self.status is not ArtifactStatus.COMPLETED:
            raise ValueError("payload is only set on completed artifacts")
        if self.error_message is not None and self.status is not ArtifactStatus.FAILED:
            raise ValueError("error_message is only set on failed artifacts")
        return self

    def to_summary(self) -> dict[str, str | None]:
        """Convert to summary for listing."""
        return {
            "id": self.id,
            "prompt": self.prompt_text,
            "type": self.request_type.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "error": self.error_message,
        }


class QueuedRequestRecord(BaseModel):
    """A durable work item awaiting delivery."""

    id: str
    request_type: RequestType
    payload: RequestPayload
    created_at: datetime = Field(default_factory=lambda: _utc_now())
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None


class DeadLetterRecord(BaseModel):
    """A queued request that exhausted its sync retry budget."""

    id: str
    request_type: RequestType
    payload: RequestPayload
    created_at: datetime
    retry_count: int = 0
    error_message: str
    failed_at: datetime = Field(default_factory=lambda: _utc_now())

    @classmethod
    def from_request(
        cls, request: QueuedRequestRecord, error_message: str
    ) -> "DeadLetterRecord":
        return cls(
            id=request.id,
            request_type=request.request_type,
            payload=request.payload,
            created_at=request.created_at,
            retry_count=request.retry_count,
            error_message=error_message,
        )

    def to_request(self) -> QueuedRequestRecord:
        """Rebuild a fresh queued request, keeping the original enqueue time."""
        return QueuedRequestRecord(
            id=self.id,
            request_type=self.request_type,
            payload=self.payload,
            created_at=self.created_at,
        )


def _utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)
