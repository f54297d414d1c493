"""
PyHashLib - Concurrent multi-algorithm file hashing engine
"""

__version__ = "0.1.0"

from .models import (
    AlgorithmId, RunRequest, FileTask, DigestResult, FileFailure, ProgressSnapshot,
    RunState, RunPolicy, RunSummary, EventType, Event, TraversalError,
    TraversalErrorKind, EngineConfig,
)
from .errors import PyHashLibError, InvalidRunRequest, DigestError, DigestTimeout, DigestAborted
from .digest_engine import DigestEngine, MultiDigest
from .file_walker import FileWalker
from .progress import ProgressTracker, ProgressCadence
from .scheduler import TaskScheduler
from .events import EventBus
from .hash_manager import HashManager, HashRun
from .async_logger import AsyncLogger

__all__ = [
    "AlgorithmId",
    "RunRequest",
    "FileTask",
    "DigestResult",
    "FileFailure",
    "ProgressSnapshot",
    "RunState",
    "RunPolicy",
    "RunSummary",
    "EventType",
    "Event",
    "TraversalError",
    "TraversalErrorKind",
    "EngineConfig",
    "PyHashLibError",
    "InvalidRunRequest",
    "DigestError",
    "DigestTimeout",
    "DigestAborted",
    "DigestEngine",
    "MultiDigest",
    "FileWalker",
    "ProgressTracker",
    "ProgressCadence",
    "TaskScheduler",
    "EventBus",
    "HashManager",
    "HashRun",
    "AsyncLogger",
]
