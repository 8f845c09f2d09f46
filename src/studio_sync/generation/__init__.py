"""
Studio Sync Generation Module.

Provides the generation service boundary, the retrying client and the
long-running operation poller.
"""

__all__ = [
    "CancellationToken",
    "GenerationClient",
    "GenerationService",
    "HttpGenerationService",
    "OperationPoller",
    "RetryPolicy",
    "with_retry",
]

from studio_sync.generation.client import GenerationClient
from studio_sync.generation.poller import CancellationToken, OperationPoller
from studio_sync.generation.retry import RetryPolicy, with_retry
from studio_sync.generation.service import GenerationService, HttpGenerationService
