"""Advisory single-writer lock for a storage directory."""

from __future__ import annotations

import os
from pathlib import Path
from types import TracebackType

from treeguard.errors import LockHeldError, WriteFailedError


class RunLock:
    """Exclusive lock file created with O_CREAT | O_EXCL.

    The lock is advisory: it only excludes other treeguard runs against the
    same storage directory. A storage directory created solely to hold the
    lock is removed again on release when it is still empty.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._created_dir = False
        self._held = False

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> None:
        directory = self._path.parent
        if not directory.exists():
            try:
                directory.mkdir(parents=True)
            except OSError as error:
                raise WriteFailedError(
                    reason=f"Could not create storage directory: {error}",
                    hint="Check permissions of the scanned root.",
                ) from error
            self._created_dir = True
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as error:
            self._cleanup_dir()
            raise LockHeldError(
                reason=f"Lock file {self._path} is held by another run.",
                hint="Wait for the other run to finish, or remove a stale lock file manually.",
            ) from error
        except OSError as error:
            self._cleanup_dir()
            raise WriteFailedError(
                reason=f"Could not create lock file: {error}",
                hint="Check permissions of the storage directory.",
            ) from error
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()}\n")
        self._held = True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self._path.unlink(missing_ok=True)
        self._cleanup_dir()

    def _cleanup_dir(self) -> None:
        if not self._created_dir:
            return
        self._created_dir = False
        try:
            self._path.parent.rmdir()
        except OSError:
            # Directory gained content during the run; keep it.
            return

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()
