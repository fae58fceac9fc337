"""Run orchestration: verified loads, backup, scan, reconcile and persist."""

from __future__ import annotations

import os
import time
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from treeguard.config import TreeguardConfig
from treeguard.digest import DigestEngine
from treeguard.errors import (
    BanlistCorruptError,
    ConfigError,
    ManifestCorruptError,
    TreeguardError,
)
from treeguard.inspection import find_duplicates, relative_checksum
from treeguard.lock import RunLock
from treeguard.models import (
    Banlist,
    Manifest,
    ReconciliationReport,
    ScanResult,
    VerificationReport,
)
from treeguard.paths import PathKeyError, normalize_path_key, storage_key
from treeguard.reconcile import reconcile
from treeguard.scan import hash_paths, scan_tree, symlink_rejection
from treeguard.store import (
    BanlistStore,
    ManifestStore,
    default_banlist,
    matches,
    with_patterns,
    without_patterns,
)


class RunState(str, Enum):
    """Phases of a single update or verify run."""

    IDLE = "idle"
    BANLIST_LOADING = "banlist_loading"
    BANLIST_VERIFIED = "banlist_verified"
    BANLIST_CORRUPT = "banlist_corrupt"
    MANIFEST_LOADING = "manifest_loading"
    MANIFEST_VERIFIED = "manifest_verified"
    MANIFEST_CORRUPT = "manifest_corrupt"
    BACKUP = "backup"
    SCANNING = "scanning"
    HASHING = "hashing"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    VERIFYING = "verifying"
    DONE = "done"
    CONFIG_INVALID = "config_invalid"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        RunState.DONE,
        RunState.BANLIST_CORRUPT,
        RunState.MANIFEST_CORRUPT,
        RunState.CONFIG_INVALID,
        RunState.FAILED,
    }
)

_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.BANLIST_LOADING, RunState.FAILED}),
    RunState.BANLIST_LOADING: frozenset(
        {RunState.BANLIST_VERIFIED, RunState.BANLIST_CORRUPT, RunState.CONFIG_INVALID}
    ),
    RunState.BANLIST_VERIFIED: frozenset({RunState.MANIFEST_LOADING}),
    RunState.MANIFEST_LOADING: frozenset(
        {RunState.MANIFEST_VERIFIED, RunState.MANIFEST_CORRUPT, RunState.CONFIG_INVALID}
    ),
    RunState.MANIFEST_VERIFIED: frozenset({RunState.BACKUP, RunState.VERIFYING}),
    RunState.BACKUP: frozenset({RunState.SCANNING, RunState.FAILED}),
    RunState.SCANNING: frozenset({RunState.HASHING, RunState.FAILED}),
    RunState.HASHING: frozenset({RunState.RECONCILING, RunState.FAILED}),
    RunState.RECONCILING: frozenset({RunState.PERSISTING, RunState.FAILED}),
    RunState.PERSISTING: frozenset({RunState.DONE, RunState.FAILED}),
    RunState.VERIFYING: frozenset({RunState.DONE, RunState.FAILED}),
}


class RunStateMachine:
    """Checked state progression for one run; records every state visited."""

    def __init__(self) -> None:
        self._history: list[RunState] = [RunState.IDLE]

    @property
    def state(self) -> RunState:
        return self._history[-1]

    @property
    def history(self) -> tuple[RunState, ...]:
        return tuple(self._history)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: RunState) -> None:
        """Move to target, refusing any transition not in the table."""
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if target not in allowed:
            raise RuntimeError(f"Illegal run transition {self.state} -> {target}.")
        self._history.append(target)

    def abort(self, error: BaseException) -> None:
        """Enter the terminal state matching error, unless already terminal."""
        if self.finished:
            return
        target = RunState.FAILED
        if isinstance(error, BanlistCorruptError):
            target = RunState.BANLIST_CORRUPT
        elif isinstance(error, ManifestCorruptError):
            target = RunState.MANIFEST_CORRUPT
        elif isinstance(error, ConfigError):
            target = RunState.CONFIG_INVALID
        if target not in _TRANSITIONS.get(self.state, frozenset()):
            target = RunState.FAILED
        self._history.append(target)


@dataclass(slots=True, frozen=True)
class UpdateResult:
    """Outcome of a completed update run."""

    report: ReconciliationReport
    scan: ScanResult
    backup_path: Path | None
    manifest_entries: int
    banlist_created: bool
    states: tuple[RunState, ...]
    elapsed_ms: int


@dataclass(slots=True, frozen=True)
class StoreStatus:
    """On-disk state of the storage directory, gathered without hashing."""

    manifest_state: str
    manifest_entries: int
    banlist_state: str
    ban_patterns: int
    backups: tuple[Path, ...]
    lock_held: bool
    error: str | None


class IntegrityRunner:
    """Drives manifest and banlist operations for one configured root."""

    def __init__(self, config: TreeguardConfig) -> None:
        self._config = config
        self._engine = DigestEngine(config.hashing.algorithm, config.hashing.chunk_bytes)
        self._banlist_store = BanlistStore(config.banlist_path, config.hashing.algorithm)
        self._manifest_store = ManifestStore(
            config.manifest_path,
            config.backup_dir,
            config.hashing.algorithm,
            max_backups=config.storage.max_backups,
        )
        self._storage_key = storage_key(config.root, config.storage_dir)
        self._machine = RunStateMachine()

    @property
    def config(self) -> TreeguardConfig:
        return self._config

    @property
    def machine(self) -> RunStateMachine:
        """State machine of the most recent update or verify run."""
        return self._machine

    @property
    def manifest_store(self) -> ManifestStore:
        return self._manifest_store

    @property
    def banlist_store(self) -> BanlistStore:
        return self._banlist_store

    def update(self) -> UpdateResult:
        """Verify both files, back up the manifest, rescan and persist the successor.

        Any fatal error before PERSISTING leaves manifest, banlist and backups
        exactly as they were. Old backups are pruned only once the successor
        manifest is on disk.
        """
        started = time.perf_counter()
        self._machine = RunStateMachine()
        machine = self._machine
        try:
            with self._locked():
                banlist, manifest = self._load_verified(machine)

                machine.advance(RunState.BACKUP)
                backup_path = self._manifest_store.backup()

                machine.advance(RunState.SCANNING)
                ignored: dict[str, str] = {}
                keys = self._scan_keys(banlist, ignored)

                machine.advance(RunState.HASHING)
                digests, unreadable = hash_paths(
                    self._config.root,
                    keys,
                    self._engine,
                    workers=self._config.hashing.workers,
                    io_budget_seconds=self._config.hashing.io_budget_seconds,
                )
                scan = ScanResult(digests=digests, unreadable=unreadable, ignored=ignored)

                machine.advance(RunState.RECONCILING)
                report, successor = reconcile(
                    manifest,
                    scan,
                    expiry_runs=self._config.reconcile.unreadable_expiry_runs,
                )

                machine.advance(RunState.PERSISTING)
                self._manifest_store.save(successor)
                banlist_created = False
                if not self._banlist_store.exists():
                    self._banlist_store.save(banlist)
                    banlist_created = True
                self._manifest_store.prune_backups()
                machine.advance(RunState.DONE)
        except Exception as error:
            machine.abort(error)
            raise
        return UpdateResult(
            report=report,
            scan=scan,
            backup_path=backup_path,
            manifest_entries=len(successor),
            banlist_created=banlist_created,
            states=machine.history,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )

    def verify(self, prefix: str | None = None) -> VerificationReport:
        """Re-hash tracked files and compare them with the manifest; never writes."""
        self._machine = RunStateMachine()
        machine = self._machine
        try:
            normalized_prefix = _normalize_prefix(prefix)
            banlist, manifest = self._load_verified(machine)
            machine.advance(RunState.VERIFYING)
            report = self._verify_entries(banlist, manifest, normalized_prefix)
            machine.advance(RunState.DONE)
        except Exception as error:
            machine.abort(error)
            raise
        return report

    def status(self) -> StoreStatus:
        """Describe stored files; corruption is reported instead of raised."""
        error: str | None = None
        banlist_state = "missing"
        ban_patterns = 0
        if self._banlist_store.exists():
            try:
                ban_patterns = len(self._banlist_store.load().entries)
                banlist_state = "verified"
            except TreeguardError as load_error:
                banlist_state = "corrupt"
                error = load_error.code
        manifest_state = "missing"
        manifest_entries = 0
        if self._manifest_store.exists():
            try:
                manifest_entries = len(self._manifest_store.load())
                manifest_state = "verified"
            except ConfigError as load_error:
                manifest_state = "mismatch"
                error = error or load_error.code
            except TreeguardError as load_error:
                manifest_state = "corrupt"
                error = error or load_error.code
        return StoreStatus(
            manifest_state=manifest_state,
            manifest_entries=manifest_entries,
            banlist_state=banlist_state,
            ban_patterns=ban_patterns,
            backups=tuple(self._manifest_store.list_backups()),
            lock_held=self._config.lock_path.exists(),
            error=error,
        )

    def init(self) -> tuple[Banlist, bool]:
        """Create the default banlist when none exists; return (banlist, created)."""
        with self._locked():
            if self._banlist_store.exists():
                return self._banlist_store.load(), False
            banlist = default_banlist(self._config.hashing.algorithm)
            self._banlist_store.save(banlist)
            return banlist, True

    def ban_list(self) -> Banlist:
        return self._load_banlist_or_default()

    def ban_add(self, patterns: list[str]) -> Banlist:
        """Add patterns to the verified banlist and persist it."""
        with self._locked():
            banlist = with_patterns(self._load_banlist_or_default(), patterns)
            self._banlist_store.save(banlist)
            return banlist

    def ban_remove(self, patterns: list[str]) -> tuple[Banlist, tuple[str, ...]]:
        """Remove patterns; return the new banlist and the patterns that were absent."""
        with self._locked():
            banlist, missing = without_patterns(self._load_banlist_or_default(), patterns)
            self._banlist_store.save(banlist)
            return banlist, missing

    def duplicates(self) -> dict[str, tuple[str, ...]]:
        return find_duplicates(self._manifest_store.load())

    def relative_checksum(self, prefix: str) -> str | None:
        return relative_checksum(self._manifest_store.load(), prefix, self._engine)

    def _load_verified(self, machine: RunStateMachine) -> tuple[Banlist, Manifest]:
        machine.advance(RunState.BANLIST_LOADING)
        banlist = self._load_banlist_or_default()
        machine.advance(RunState.BANLIST_VERIFIED)
        machine.advance(RunState.MANIFEST_LOADING)
        manifest = self._manifest_store.load()
        machine.advance(RunState.MANIFEST_VERIFIED)
        return banlist, manifest

    def _load_banlist_or_default(self) -> Banlist:
        if not self._banlist_store.exists():
            return default_banlist(self._config.hashing.algorithm)
        return self._banlist_store.load()

    def _scan_keys(self, banlist: Banlist, ignored: dict[str, str]) -> list[str]:
        try:
            return list(
                scan_tree(
                    self._config.root,
                    banlist,
                    storage_key=self._storage_key,
                    ignored=ignored,
                )
            )
        except OSError as error:
            raise ConfigError(
                reason=f"Root {self._config.root} could not be listed: {error}",
                hint="Check permissions of the scanned root.",
            ) from error

    def _verify_entries(
        self,
        banlist: Banlist,
        manifest: Manifest,
        prefix: str | None,
    ) -> VerificationReport:
        banned: list[str] = []
        missing: list[str] = []
        rejected: list[str] = []
        candidates: list[str] = []
        resolved_root = self._config.root.resolve()
        for entry in manifest.sorted_entries():
            if prefix is not None and not entry.path.startswith(prefix):
                continue
            if matches(banlist, entry.path):
                banned.append(entry.path)
                continue
            full_path = resolved_root / entry.path
            if not os.path.lexists(full_path):
                missing.append(entry.path)
                continue
            if full_path.is_symlink() and symlink_rejection(
                resolved_root, full_path, banlist, self._storage_key
            ):
                rejected.append(entry.path)
                continue
            candidates.append(entry.path)

        digests, unreadable = hash_paths(
            self._config.root,
            candidates,
            self._engine,
            workers=self._config.hashing.workers,
            io_budget_seconds=self._config.hashing.io_budget_seconds,
        )
        verified: list[str] = []
        modified: list[str] = []
        for path in candidates:
            if path in unreadable:
                continue
            if digests[path] == manifest.entries[path].digest:
                verified.append(path)
            else:
                modified.append(path)
        return VerificationReport(
            verified=tuple(verified),
            modified=tuple(modified),
            missing=tuple(missing),
            unreadable=tuple(sorted([*unreadable, *rejected])),
            banned=tuple(banned),
        )

    @contextmanager
    def _locked(self) -> Iterator[None]:
        lock = RunLock(self._config.lock_path) if self._config.storage.lock else nullcontext()
        with lock:
            yield


def _normalize_prefix(prefix: str | None) -> str | None:
    """Canonicalize a verify prefix, keeping a trailing '/' when given."""
    if prefix is None or prefix in ("", ".", "./", "/"):
        return None
    try:
        normalized = normalize_path_key(prefix)
    except PathKeyError as error:
        raise ConfigError(
            reason=f"Invalid prefix {prefix!r}: {error.reason}", hint=error.hint
        ) from error
    if prefix.replace("\\", "/").endswith("/"):
        return f"{normalized}/"
    return normalized
