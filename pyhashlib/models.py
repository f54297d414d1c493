import json
import os
from dataclasses import dataclass, asdict, field
from typing import Optional, Dict, List, FrozenSet, Tuple, Any
from enum import StrEnum

from .errors import InvalidRunRequest


class AlgorithmId(StrEnum):
    """Digest algorithms the engine can compute"""
    BLAKE3 = "blake3"
    SHA3_256 = "sha3-256"
    SHA3_512 = "sha3-512"
    SHA256 = "sha256"
    SHA512 = "sha512"
    SHA1 = "sha1"
    MD5 = "md5"

    @property
    def hex_length(self) -> int:
        return _HEX_LENGTHS[self]

    @property
    def field_name(self) -> str:
        """Key used for this algorithm in ``file-updated`` payloads."""
        return self.value.replace("-", "_")

    @classmethod
    def parse(cls, name: "str | AlgorithmId") -> "AlgorithmId":
        if isinstance(name, AlgorithmId):
            return name
        normalized = str(name).strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidRunRequest(
                f"Unsupported algorithm: {name}. "
                f"Supported: {', '.join(a.value for a in cls)}"
            ) from None


_HEX_LENGTHS = {
    AlgorithmId.BLAKE3: 64,
    AlgorithmId.SHA3_256: 64,
    AlgorithmId.SHA3_512: 128,
    AlgorithmId.SHA256: 64,
    AlgorithmId.SHA512: 128,
    AlgorithmId.SHA1: 40,
    AlgorithmId.MD5: 32,
}


def ordered_algorithms(algorithms) -> Tuple[AlgorithmId, ...]:
    """Return *algorithms* in declaration order of :class:`AlgorithmId`."""
    wanted = set(algorithms)
    return tuple(a for a in AlgorithmId if a in wanted)


class RunState(StrEnum):
    """Lifecycle of a single hashing run"""
    IDLE = "idle"
    DISCOVERING = "discovering"
    HASHING = "hashing"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


class RunPolicy(StrEnum):
    """What happens to an active run when a new request arrives"""
    SUPERSEDE = "supersede"
    QUEUE = "queue"


class EventType(StrEnum):
    FILE_DISCOVERED = "file-discovered"
    FILE_UPDATED = "file-updated"
    HASH_PROGRESS = "hash-progress"
    TRAVERSAL_ERROR = "traversal-error"
    RUN_STATE = "run-state"


class TraversalErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    BROKEN_LINK = "broken_link"
    SYMLINK_CYCLE = "symlink_cycle"
    UNSUPPORTED_TYPE = "unsupported_type"
    IO_ERROR = "io_error"


class DictSerializable:
    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict):
        return cls(**data)


@dataclass(frozen=True)
class RunRequest(DictSerializable):
    """
    One user-initiated request: which paths to hash and with which algorithms.

    Immutable for the lifetime of the run. Use :meth:`create` to validate
    raw UI input (strings) into a request.
    """

    roots: Tuple[str, ...]
    algorithms: FrozenSet[AlgorithmId]

    @classmethod
    def create(cls, paths, algorithms) -> "RunRequest":
        if isinstance(paths, (str, os.PathLike)):
            paths = [paths]
        if isinstance(algorithms, str):
            algorithms = [algorithms]
        roots = tuple(os.fspath(p) for p in paths)
        parsed = frozenset(AlgorithmId.parse(a) for a in algorithms)
        if not parsed:
            raise InvalidRunRequest("At least one algorithm must be selected")
        if not roots:
            raise InvalidRunRequest("No paths were selected")
        return cls(roots=roots, algorithms=parsed)

    def to_dict(self) -> dict:
        return {
            "roots": list(self.roots),
            "algorithms": [a.value for a in ordered_algorithms(self.algorithms)],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunRequest":
        return cls.create(data["roots"], data["algorithms"])


@dataclass(frozen=True)
class FileTask(DictSerializable):
    """A discovered regular file awaiting digest computation."""

    path: str
    size: int
    canonical_path: str = ""

    def to_payload(self) -> dict:
        return {"path": self.path, "size": self.size}


@dataclass(frozen=True)
class DigestResult(DictSerializable):
    path: str
    per_algorithm: Dict[AlgorithmId, str]

    def to_payload(self) -> dict:
        payload = {"path": self.path}
        for algorithm in ordered_algorithms(self.per_algorithm):
            payload[algorithm.field_name] = self.per_algorithm[algorithm]
        return payload


@dataclass(frozen=True)
class FileFailure(DictSerializable):
    """Per-file failure marker, sent in place of a :class:`DigestResult`."""
    path: str
    error: str

    def to_payload(self) -> dict:
        return {"path": self.path, "error": self.error}


@dataclass(frozen=True)
class TraversalError(DictSerializable):
    path: str
    kind: TraversalErrorKind
    message: str

    def to_payload(self) -> dict:
        return {"path": self.path, "kind": str(self.kind), "message": self.message}


@dataclass(frozen=True)
class ProgressSnapshot(DictSerializable):
    files_discovered: int = 0
    files_completed: int = 0
    files_failed: int = 0
    bytes_processed: int = 0
    bytes_total: int = 0

    @property
    def files_finished(self) -> int:
        return self.files_completed + self.files_failed

    def to_payload(self) -> dict:
        return {
            "filesDiscovered": self.files_discovered,
            "filesCompleted": self.files_completed,
            "filesFailed": self.files_failed,
            "bytesProcessed": self.bytes_processed,
            "bytesTotal": self.bytes_total,
        }


@dataclass(frozen=True)
class Event:
    """A single message on the engine → UI channel."""
    type: EventType
    payload: Dict[str, Any]
    run_id: Optional[str] = None
    sequence: int = 0

    def to_dict(self) -> dict:
        return {
            "event": str(self.type),
            "runId": self.run_id,
            "sequence": self.sequence,
            "payload": self.payload,
        }


@dataclass
class RunSummary(DictSerializable):
    run_id: str
    state: RunState
    progress: ProgressSnapshot
    request: RunRequest
    traversal_errors: List[TraversalError] = field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return (
            self.state == RunState.COMPLETED
            and self.progress.files_failed == 0
            and self.progress.files_finished == self.progress.files_discovered
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE = 1 << 20
DEFAULT_PROGRESS_BYTES = 8 << 20
DEFAULT_PROGRESS_INTERVAL = 0.25


@dataclass
class EngineConfig(DictSerializable):
    """
    Tunables for :class:`~pyhashlib.hash_manager.HashManager`.

    ``max_concurrent``  – number of files hashed in parallel (``None`` → CPU count)
    ``queue_size``      – capacity of the pending-task queue (``None`` → 2 × workers)
    ``file_timeout``    – seconds before a single file is abandoned (``None`` → no limit)

    Either progress trigger may be set to ``None`` to disable it.
    """

    max_concurrent: Optional[int] = None
    queue_size: Optional[int] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    progress_bytes_interval: Optional[int] = DEFAULT_PROGRESS_BYTES
    progress_interval: Optional[float] = DEFAULT_PROGRESS_INTERVAL
    file_timeout: Optional[float] = None
    run_policy: RunPolicy = RunPolicy.SUPERSEDE

    def __post_init__(self) -> None:
        self.run_policy = RunPolicy(self.run_policy)
        if self.max_concurrent is not None and self.max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if self.queue_size is not None and self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.file_timeout is not None and self.file_timeout <= 0:
            raise ValueError("file_timeout must be > 0")

    @property
    def workers(self) -> int:
        return self.max_concurrent or os.cpu_count() or 1

    @property
    def pending_capacity(self) -> int:
        return self.queue_size or 2 * self.workers

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        data = dict(data)
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown config option(s): {', '.join(sorted(unknown))}")
        return cls(**data)

    @classmethod
    def load(cls, path: str) -> "EngineConfig":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))
