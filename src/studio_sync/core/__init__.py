"""
Studio Sync Core Module.

Provides the record types, configuration and exception hierarchy.
"""

__all__ = [
    "ArtifactRecord",
    "ArtifactStatus",
    "QueuedRequestRecord",
    "RequestPayload",
    "RequestType",
    "StudioConfig",
    "load_config",
    # Exceptions
    "StudioSyncError",
    "ConfigurationError",
    "StorageError",
    "StorageUnavailableError",
    "RecordNotFoundError",
    "RecordExistsError",
    "GenerationError",
    "TransientGenerationError",
    "CredentialError",
    "InvalidRequestError",
    "ExhaustedRetriesError",
    "OfflineError",
    "OperationCancelledError",
]

from studio_sync.core.config import StudioConfig, load_config
from studio_sync.core.exceptions import (
    ConfigurationError,
    CredentialError,
    ExhaustedRetriesError,
    GenerationError,
    InvalidRequestError,
    OfflineError,
    OperationCancelledError,
    RecordExistsError,
    RecordNotFoundError,
    StorageError,
    StorageUnavailableError,
    StudioSyncError,
    TransientGenerationError,
)
from studio_sync.core.models import (
    ArtifactRecord,
    ArtifactStatus,
    QueuedRequestRecord,
    RequestPayload,
    RequestType,
)
