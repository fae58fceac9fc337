"""Bounded parallel hashing of scanned files."""

from __future__ import annotations

import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from treeguard.digest import DigestEngine


@dataclass(slots=True, frozen=True)
class HashOutcome:
    """Result slot filled by exactly one worker task."""

    path: str
    digest: str | None
    error: str | None


def hash_paths(
    root: Path,
    keys: Iterable[str],
    engine: DigestEngine,
    workers: int = 4,
    io_budget_seconds: float | None = None,
) -> tuple[dict[str, str], dict[str, str]]:
    """Hash keys under root; return (digests, unreadable reasons).

    Every task owns its result slot. Results are merged only after all tasks
    have completed, so no mapping is mutated from worker threads.
    """
    resolved_root = root.resolve()
    pool = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="treeguard-hash")
    with pool:
        futures = [
            pool.submit(_hash_one, resolved_root, key, engine, io_budget_seconds)
            for key in keys
        ]
        outcomes = [future.result() for future in futures]

    digests: dict[str, str] = {}
    unreadable: dict[str, str] = {}
    for outcome in outcomes:
        if outcome.digest is not None:
            digests[outcome.path] = outcome.digest
        else:
            unreadable[outcome.path] = outcome.error or "unreadable"
    return digests, unreadable


def _hash_one(
    root: Path,
    key: str,
    engine: DigestEngine,
    io_budget_seconds: float | None,
) -> HashOutcome:
    deadline = None
    if io_budget_seconds is not None:
        deadline = time.monotonic() + io_budget_seconds
    try:
        digest = engine.hash_file(root / key, deadline=deadline)
    except OSError as error:
        return HashOutcome(path=key, digest=None, error=_describe(error))
    return HashOutcome(path=key, digest=digest, error=None)


def _describe(error: OSError) -> str:
    if isinstance(error, FileNotFoundError):
        return "file disappeared during scan"
    if isinstance(error, PermissionError):
        return "permission denied"
    return str(error) or type(error).__name__
