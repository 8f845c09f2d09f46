"""
Studio Sync Exception Hierarchy.

Every error raised by the store, the generation client and the sync
engine derives from StudioSyncError and carries a details mapping, so a
failure can be logged, displayed or persisted with its context.
"""

from typing import Any

import httpx


class StudioSyncError(Exception):
    """
    Root of the package's error hierarchy.

    Catch this to handle any failure raised by studio_sync itself.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Args:
            message: Text shown to users and written to logs
            details: Structured context (ids, status codes, ...)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} ({context})"

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, used for logs and CLI output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


def _with_context(details: dict[str, Any] | None, **context: Any) -> dict[str, Any]:
    """Merge the non-empty context values into a details mapping."""
    merged = dict(details or {})
    merged.update({key: value for key, value in context.items() if value})
    return merged


class ConfigurationError(StudioSyncError):
    """A STUDIO_* environment variable holds a value that cannot be used."""

    def __init__(
        self,
        message: str,
        *,
        env_var: str | None = None,
        config_key: str | None = None,
    ):
        super().__init__(message, details=_with_context(None, env_var=env_var, config_key=config_key))
        self.env_var = env_var
        self.config_key = config_key


class StorageError(StudioSyncError):
    """
    A local store operation failed.

    Carries the collection (artifacts, sync_queue, dead_letters), the
    record id and the store operation involved, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        collection: str | None = None,
        record_id: str | None = None,
        operation: str | None = None,
    ):
        super().__init__(
            message,
            details=_with_context(
                None, collection=collection, record_id=record_id, operation=operation
            ),
        )
        self.collection = collection
        self.record_id = record_id
        self.operation = operation


class StorageUnavailableError(StorageError):
    """The database could not be opened, read or written, or a row is corrupt."""


class RecordNotFoundError(StorageError):
    def __init__(
        self,
        message: str = "Record not found",
        *,
        collection: str | None = None,
        record_id: str | None = None,
    ):
        super().__init__(message, collection=collection, record_id=record_id, operation="read")


class RecordExistsError(StorageError):
    def __init__(
        self,
        message: str = "Record already exists",
        *,
        collection: str | None = None,
        record_id: str | None = None,
    ):
        super().__init__(message, collection=collection, record_id=record_id, operation="add")


class GenerationError(StudioSyncError):
    """
    The generation service failed or answered with something unusable.

    Subclasses split failures into transient ones (retried) and fatal
    ones (credential and validation problems). A plain GenerationError is
    fatal unless its status code is one of TRANSIENT_STATUS_CODES.
    """

    def __init__(
        self,
        message: str,
        *,
        request_type: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            details=_with_context(details, request_type=request_type, status_code=status_code),
        )
        self.request_type = request_type
        self.status_code = status_code


class TransientGenerationError(GenerationError):
    """Service overloaded or temporarily unavailable."""


class CredentialError(GenerationError):
    """No credential is configured, or the service rejected it."""

    def __init__(
        self,
        message: str = "Credential missing or rejected",
        *,
        service: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, status_code=status_code, details=_with_context(None, service=service))
        self.service = service


class InvalidRequestError(GenerationError):
    """The request parameters are incomplete or were rejected by the service."""


class ExhaustedRetriesError(StudioSyncError):
    """
    Raised when a transient failure persists past the retry budget.

    Wraps the last underlying error so callers can inspect or persist it.
    """

    def __init__(self, last_error: BaseException, *, attempts: int):
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}",
            details={"attempts": attempts},
        )
        self.last_error = last_error
        self.attempts = attempts


class OfflineError(StudioSyncError):
    """Raised when a request is executed while connectivity is down."""

    def __init__(self, message: str = "Network is unreachable"):
        super().__init__(message)


class OperationCancelledError(StudioSyncError):
    """Raised when a caller abandons a long-running operation poll."""

    def __init__(self, message: str = "Operation poll cancelled", *, operation: str | None = None):
        details = {"operation": operation} if operation else None
        super().__init__(message, details=details)
        self.operation = operation


TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

TRANSIENT_MARKERS = (
    "overloaded",
    "unavailable",
    "resource exhausted",
    "resource_exhausted",
    "try again later",
    "503",
)


def format_exception(error: BaseException) -> str:
    """Render an error for the terminal, naming the type of foreign errors."""
    if isinstance(error, StudioSyncError):
        return str(error)
    return f"{type(error).__name__}: {error}"


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether a failed remote call is worth another attempt.

    Credential, validation, offline, cancellation and storage failures are
    never retried, and neither is an already exhausted retry. Otherwise an
    error counts as transient by type, by HTTP status code, or by a message
    saying the service is overloaded or briefly out of reach.
    """
    if isinstance(
        error,
        (
            CredentialError,
            InvalidRequestError,
            OfflineError,
            ExhaustedRetriesError,
            OperationCancelledError,
            StorageError,
        ),
    ):
        return False
    if isinstance(error, TransientGenerationError):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, GenerationError) and error.status_code in TRANSIENT_STATUS_CODES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)
