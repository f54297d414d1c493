import asyncio
import functools
import hashlib
import threading
from concurrent.futures import Executor, Future
from typing import BinaryIO, Callable, Dict, Iterable, Optional, Protocol

import blake3

from .errors import DigestAborted, DigestTimeout
from .models import AlgorithmId, DEFAULT_CHUNK_SIZE, ordered_algorithms


class DigestAccumulator(Protocol):
    def update(self, data: bytes, /) -> object: ...

    def hexdigest(self) -> str: ...


_FACTORIES: Dict[AlgorithmId, Callable[[], DigestAccumulator]] = {
    AlgorithmId.BLAKE3: blake3.blake3,
    AlgorithmId.SHA3_256: hashlib.sha3_256,
    AlgorithmId.SHA3_512: hashlib.sha3_512,
    AlgorithmId.SHA256: hashlib.sha256,
    AlgorithmId.SHA512: hashlib.sha512,
    AlgorithmId.SHA1: functools.partial(hashlib.sha1, usedforsecurity=False),
    AlgorithmId.MD5: functools.partial(hashlib.md5, usedforsecurity=False),
}


class MultiDigest:
    """
    Feeds one byte stream into several independent digest accumulators.

    Every chunk passed to :meth:`ingest` reaches all requested algorithms
    before the caller reads the next one.
    """

    def __init__(self, algorithms: Iterable[AlgorithmId]) -> None:
        self._accumulators = {
            algorithm: _FACTORIES[algorithm]()
            for algorithm in ordered_algorithms(algorithms)
        }
        if not self._accumulators:
            raise ValueError("MultiDigest needs at least one algorithm")
        self._finalized = False

    @property
    def algorithms(self):
        return tuple(self._accumulators)

    def ingest(self, chunk: bytes) -> None:
        if self._finalized:
            raise RuntimeError("MultiDigest already finalized")
        for accumulator in self._accumulators.values():
            accumulator.update(chunk)

    def finalize(self) -> Dict[AlgorithmId, str]:
        if self._finalized:
            raise RuntimeError("MultiDigest already finalized")
        self._finalized = True
        return {
            algorithm: accumulator.hexdigest().lower()
            for algorithm, accumulator in self._accumulators.items()
        }


class DigestEngine:
    """Single-pass, multi-algorithm file digests"""

    SUPPORTED_ALGORITHMS = tuple(AlgorithmId)

    @classmethod
    def digest_bytes(cls, data: bytes, algorithms: Iterable[AlgorithmId]) -> Dict[AlgorithmId, str]:
        digest = MultiDigest(algorithms)
        digest.ingest(data)
        return digest.finalize()

    @staticmethod
    def digest_stream(
            stream: BinaryIO,
            algorithms: Iterable[AlgorithmId],
            chunk_size: int = DEFAULT_CHUNK_SIZE,
            on_progress: Optional[Callable[[int], None]] = None,
            should_abort: Optional[Callable[[], bool]] = None,
    ) -> Dict[AlgorithmId, str]:
        """
        Digest *stream* with every algorithm in one sequential read.

        Args:
            stream:       Binary file-like object, read until EOF
            algorithms:   Algorithms to compute
            chunk_size:   Bytes per read; memory use is bounded by this value
            on_progress:  Called with the length of each chunk after it is ingested
            should_abort: Checked before every read; a true result raises DigestAborted

        Returns:
            Mapping of algorithm to lowercase hex digest
        """
        digest = MultiDigest(algorithms)
        while True:
            if should_abort is not None and should_abort():
                raise DigestAborted("Digest pass aborted")
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            digest.ingest(chunk)
            if on_progress is not None:
                on_progress(len(chunk))
        return digest.finalize()

    @classmethod
    async def digest_file(
            cls,
            filepath: str,
            algorithms: Iterable[AlgorithmId],
            chunk_size: int = DEFAULT_CHUNK_SIZE,
            on_progress: Optional[Callable[[int], None]] = None,
            timeout: Optional[float] = None,
            executor: Optional[Executor] = None,
    ) -> Dict[AlgorithmId, str]:
        """
        Digest a file on a worker thread so the event loop stays responsive.

        Without a timeout the pass runs on *executor*. With one, it runs on a
        dedicated daemon thread and the clock starts when that thread begins
        reading, so a pass stuck in ``read()`` holds only its own thread and
        never delays or times out other files.

        ``on_progress`` is invoked from the worker thread.

        Raises:
            OSError:       If the file cannot be opened or read
            DigestTimeout: If ``timeout`` elapses before the pass completes
        """
        algorithms = ordered_algorithms(algorithms)
        abort = threading.Event()

        def report(n: int) -> None:
            if on_progress is not None and not abort.is_set():
                on_progress(n)

        loop = asyncio.get_running_loop()
        run_pass = functools.partial(
            cls._digest_file_sync, filepath, algorithms, chunk_size, report, abort.is_set
        )
        started = asyncio.Event()
        if timeout is None:
            future = loop.run_in_executor(executor, run_pass)
        else:
            future = cls._start_pass_thread(loop, run_pass, started)
        try:
            if timeout is None:
                return await future
            await started.wait()
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            abort.set()
            raise DigestTimeout(
                f"Timed out after {timeout:g}s while hashing {filepath}"
            ) from None
        except asyncio.CancelledError:
            abort.set()
            future.cancel()
            raise

    @staticmethod
    def _start_pass_thread(
            loop: asyncio.AbstractEventLoop,
            run_pass: Callable[[], Dict[AlgorithmId, str]],
            started: asyncio.Event,
    ) -> "asyncio.Future[Dict[AlgorithmId, str]]":
        result: Future = Future()

        def target() -> None:
            if not result.set_running_or_notify_cancel():
                return
            loop.call_soon_threadsafe(started.set)
            try:
                digests = run_pass()
            except BaseException as e:
                result.set_exception(e)
            else:
                result.set_result(digests)

        threading.Thread(target=target, name="pyhashlib-timed-pass", daemon=True).start()
        return asyncio.wrap_future(result, loop=loop)

    @staticmethod
    def _digest_file_sync(
            filepath: str,
            algorithms,
            chunk_size: int,
            on_progress: Callable[[int], None],
            should_abort: Callable[[], bool],
    ) -> Dict[AlgorithmId, str]:
        """Synchronous pass, run on a worker thread."""
        with open(filepath, "rb") as f:
            return DigestEngine.digest_stream(
                f, algorithms, chunk_size, on_progress, should_abort
            )
