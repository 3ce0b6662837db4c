"""
Models — Image references, credentials, runs and outcomes.
"""

from .credentials import REQUIRED_SCOPES, Credentials, DeviceSession, parse_scopes
from .reference import ImageReference
from .run import (
    ProgressEvent,
    RunState,
    RunStateEvent,
    StepEvent,
    StepStatus,
    SyncFailure,
    SyncOutcome,
    SyncRun,
    SyncStatus,
)

__all__ = [
    "Credentials",
    "DeviceSession",
    "REQUIRED_SCOPES",
    "parse_scopes",
    "ImageReference",
    "ProgressEvent",
    "RunState",
    "RunStateEvent",
    "StepEvent",
    "StepStatus",
    "SyncFailure",
    "SyncOutcome",
    "SyncRun",
    "SyncStatus",
]
