"""
Studio Sync - Offline-resilient generation request queue.

Durably records generation requests made while disconnected, replays
them when connectivity returns and reconciles the results into a local
store. Every remote call runs under a bounded retry/backoff policy.
"""

__version__ = "0.1.0"

__all__ = []
