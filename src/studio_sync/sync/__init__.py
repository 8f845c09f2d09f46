"""
Studio Sync Sync Module.

Provides the submission path and the queue-draining sync engine.
"""

__all__ = ["SubmissionService", "SyncEngine", "SyncReport"]

from studio_sync.sync.engine import SyncEngine, SyncReport
from studio_sync.sync.submission import SubmissionService
