"""Temp-file-then-rename persistence."""

from __future__ import annotations

import os
from pathlib import Path

from treeguard.errors import WriteFailedError


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write payload to a sibling temp file, fsync it, then rename over path.

    On failure the temp file is removed and the canonical path keeps its
    previous contents.
    """
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp.open("wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        tmp.replace(path)
    except OSError as error:
        tmp.unlink(missing_ok=True)
        raise WriteFailedError(
            reason=f"Could not write {path.name}: {error}",
            hint="Check free space and permissions of the storage directory.",
        ) from error
    _fsync_directory(path.parent)


def _fsync_directory(directory: Path) -> None:
    if os.name != "posix":
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)
