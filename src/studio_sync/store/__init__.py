"""
Studio Sync Store Module.

Provides durable storage for artifacts, queued requests and dead letters.
"""

__all__ = ["Collection", "LocalStore"]

from studio_sync.store.database import Collection, LocalStore
