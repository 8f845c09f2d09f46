"""
Studio Sync Connectivity Module.

Observes network reachability and signals recovery.
"""

__all__ = ["ConnectivityMonitor", "ConnectivityProbe"]

from studio_sync.connectivity.monitor import ConnectivityMonitor
from studio_sync.connectivity.probe import ConnectivityProbe
