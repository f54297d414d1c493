import asyncio
import errno
import os
import stat
from typing import AsyncIterator, Callable, FrozenSet, List, Optional, Sequence, Set, Tuple

import aiofiles.os

from .async_logger import AsyncLogger
from .models import FileTask, TraversalError, TraversalErrorKind


class FileWalker:
    """
    Expands selected paths into a stream of regular files.

    Each call to :meth:`walk` is an independent pass with its own
    deduplication state. Traversal problems never stop a pass; they are
    reported through ``on_error`` and the offending entry or subtree is
    skipped.
    """

    def __init__(
            self,
            logger: Optional[AsyncLogger] = None,
            on_error: Optional[Callable[[TraversalError], None]] = None,
    ) -> None:
        self._log = logger
        self._on_error = on_error

    async def walk(self, roots: Sequence[str]) -> AsyncIterator[FileTask]:
        seen_files: Set[str] = set()
        seen_dirs: Set[str] = set()

        for root in roots:
            path = os.path.abspath(os.fspath(root))
            try:
                canonical = await asyncio.to_thread(os.path.realpath, path, strict=True)
                st = await aiofiles.os.stat(canonical)
            except OSError as e:
                self._report(path, self._kind_for(e, path), e.strerror or str(e))
                continue

            if stat.S_ISREG(st.st_mode):
                if canonical in seen_files:
                    self._debug("Skipping duplicate file %s", path)
                    continue
                seen_files.add(canonical)
                yield FileTask(path=path, size=st.st_size, canonical_path=canonical)
            elif stat.S_ISDIR(st.st_mode):
                async for task in self._walk_directory(path, canonical, seen_files, seen_dirs):
                    yield task
            else:
                self._report(path, TraversalErrorKind.UNSUPPORTED_TYPE,
                             "Not a regular file or directory")

    async def _walk_directory(
            self,
            path: str,
            canonical: str,
            seen_files: Set[str],
            seen_dirs: Set[str],
    ) -> AsyncIterator[FileTask]:
        # (path as reached, canonical path, canonical ancestors of this branch)
        stack: List[Tuple[str, str, FrozenSet[str]]] = [(path, canonical, frozenset())]

        while stack:
            dir_path, dir_canonical, ancestry = stack.pop()
            if dir_canonical in seen_dirs:
                self._debug("Directory already walked: %s", dir_path)
                continue
            seen_dirs.add(dir_canonical)
            branch = ancestry | {dir_canonical}

            try:
                names = sorted(await aiofiles.os.listdir(dir_path))
            except OSError as e:
                self._report(dir_path, self._kind_for(e, dir_path), e.strerror or str(e))
                continue

            subdirs: List[Tuple[str, str, FrozenSet[str]]] = []
            for name in names:
                child = os.path.join(dir_path, name)
                entry = await self._stat_child(child, dir_canonical)
                if entry is None:
                    continue
                child_canonical, st = entry

                if stat.S_ISREG(st.st_mode):
                    if child_canonical in seen_files:
                        self._debug("Skipping duplicate file %s", child)
                        continue
                    seen_files.add(child_canonical)
                    yield FileTask(path=child, size=st.st_size, canonical_path=child_canonical)
                elif stat.S_ISDIR(st.st_mode):
                    if child_canonical in branch:
                        self._report(child, TraversalErrorKind.SYMLINK_CYCLE,
                                     f"Symlink cycle back to {child_canonical}")
                        continue
                    subdirs.append((child, child_canonical, branch))
                else:
                    self._report(child, TraversalErrorKind.UNSUPPORTED_TYPE,
                                 "Not a regular file or directory")

            # Reversed so the first subdirectory is walked first.
            stack.extend(reversed(subdirs))

    async def _stat_child(self, child: str, parent_canonical: str) -> Optional[Tuple[str, os.stat_result]]:
        """Return (canonical path, stat following links) or None if skipped."""
        try:
            lst = await aiofiles.os.stat(child, follow_symlinks=False)
        except OSError as e:
            self._report(child, self._kind_for(e, child), e.strerror or str(e))
            return None

        if not stat.S_ISLNK(lst.st_mode):
            return os.path.join(parent_canonical, os.path.basename(child)), lst

        try:
            canonical = await asyncio.to_thread(os.path.realpath, child, strict=True)
            st = await aiofiles.os.stat(canonical)
        except OSError as e:
            if e.errno == errno.ELOOP:
                self._report(child, TraversalErrorKind.SYMLINK_CYCLE, "Symlink loop")
            else:
                self._report(child, TraversalErrorKind.BROKEN_LINK,
                             f"Unresolvable symlink: {e.strerror or e}")
            return None
        return canonical, st

    @staticmethod
    def _kind_for(error: OSError, path: str) -> TraversalErrorKind:
        if isinstance(error, PermissionError):
            return TraversalErrorKind.PERMISSION_DENIED
        if error.errno == errno.ELOOP:
            return TraversalErrorKind.SYMLINK_CYCLE
        if isinstance(error, FileNotFoundError):
            if os.path.islink(path):
                return TraversalErrorKind.BROKEN_LINK
            return TraversalErrorKind.NOT_FOUND
        return TraversalErrorKind.IO_ERROR

    def _report(self, path: str, kind: TraversalErrorKind, message: str) -> None:
        error = TraversalError(path=path, kind=kind, message=message)
        if self._log is not None:
            self._log.warning("Skipped %s (%s): %s", path, kind, message)
        if self._on_error is not None:
            self._on_error(error)

    def _debug(self, msg: str, *args) -> None:
        if self._log is not None:
            self._log.debug(msg, *args)
