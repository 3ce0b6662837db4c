"""
Sync engine — single-flight coordination and the sync orchestrator.
"""

from .active_runs import ActiveRun, ActiveRunRegistry
from .orchestrator import SyncOrchestrator

__all__ = ["ActiveRun", "ActiveRunRegistry", "SyncOrchestrator"]
