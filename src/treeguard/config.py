"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

from treeguard.digest import DEFAULT_ALGORITHM, DEFAULT_CHUNK_BYTES, supported_algorithms
from treeguard.errors import ConfigError

CONFIG_FILE_NAME = "treeguard.toml"
DEFAULT_STORAGE_DIR_NAME = ".treeguard"

MAX_WORKERS_CAP = 64
MAX_BACKUPS_CAP = 1_000
MAX_CHUNK_BYTES_CAP = 64 * 1024 * 1024
MAX_EXPIRY_RUNS_CAP = 10_000

DEFAULT_WORKERS = 4
DEFAULT_IO_BUDGET_SECONDS = 60.0
DEFAULT_MAX_BACKUPS = 10


@dataclass(slots=True, frozen=True)
class HashingConfig:
    """Digest algorithm and worker pool settings."""

    algorithm: str = DEFAULT_ALGORITHM
    workers: int = DEFAULT_WORKERS
    io_budget_seconds: float = DEFAULT_IO_BUDGET_SECONDS
    chunk_bytes: int = DEFAULT_CHUNK_BYTES


@dataclass(slots=True, frozen=True)
class StorageConfig:
    """Backup retention and locking."""

    max_backups: int = DEFAULT_MAX_BACKUPS
    lock: bool = True


@dataclass(slots=True, frozen=True)
class ReconcileConfig:
    """Reconciliation policy; zero disables unreadable-entry expiry."""

    unreadable_expiry_runs: int = 0


@dataclass(slots=True, frozen=True)
class TreeguardConfig:
    """Fully merged configuration for one root."""

    root: Path
    storage_dir: Path
    hashing: HashingConfig
    storage: StorageConfig
    reconcile: ReconcileConfig

    @property
    def manifest_path(self) -> Path:
        return self.storage_dir / "manifest"

    @property
    def banlist_path(self) -> Path:
        return self.storage_dir / "banlist"

    @property
    def backup_dir(self) -> Path:
        return self.storage_dir / "backups"

    @property
    def audit_path(self) -> Path:
        return self.storage_dir / "audit.jsonl"

    @property
    def lock_path(self) -> Path:
        return self.storage_dir / "lock"

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot for status output."""
        return {
            "root": str(self.root),
            "storage_dir": str(self.storage_dir),
            "hashing": {
                "algorithm": self.hashing.algorithm,
                "workers": self.hashing.workers,
                "io_budget_seconds": self.hashing.io_budget_seconds,
                "chunk_bytes": self.hashing.chunk_bytes,
            },
            "storage": {
                "max_backups": self.storage.max_backups,
                "lock": self.storage.lock,
            },
            "reconcile": {
                "unreadable_expiry_runs": self.reconcile.unreadable_expiry_runs,
            },
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    storage_dir: Path | None = None
    algorithm: str | None = None
    workers: int | None = None
    io_budget_seconds: float | None = None
    max_backups: int | None = None
    lock: bool | None = None
    unreadable_expiry_runs: int | None = None


def default_config(root: Path) -> TreeguardConfig:
    """Build default config for a given root."""
    resolved_root = root.resolve()
    return TreeguardConfig(
        root=resolved_root,
        storage_dir=resolved_root / DEFAULT_STORAGE_DIR_NAME,
        hashing=HashingConfig(),
        storage=StorageConfig(),
        reconcile=ReconcileConfig(),
    )


def load_config_file(root: Path) -> dict[str, object]:
    """Load optional treeguard.toml from the root."""
    config_path = root / CONFIG_FILE_NAME
    if not config_path.exists():
        return {}
    try:
        with config_path.open("rb") as handle:
            payload = tomllib.load(handle)
    except tomllib.TOMLDecodeError as error:
        raise ConfigError(reason=f"{CONFIG_FILE_NAME} is not valid TOML: {error}") from error
    return payload


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(reason=f"Config section '{key}' must be a table.")
    return value


def merge_config(
    base: TreeguardConfig, file_payload: dict[str, object], overrides: CliOverrides
) -> TreeguardConfig:
    """Merge defaults, file config, then CLI overrides."""
    hashing_payload = _get_table(file_payload, "hashing")
    storage_payload = _get_table(file_payload, "storage")
    reconcile_payload = _get_table(file_payload, "reconcile")

    storage_dir = base.storage_dir
    if "dir" in storage_payload:
        raw_dir = storage_payload["dir"]
        if not isinstance(raw_dir, str) or not raw_dir:
            raise ConfigError(reason="Config field 'storage.dir' must be a non-empty string.")
        storage_dir = base.root / raw_dir

    merged = TreeguardConfig(
        root=base.root,
        storage_dir=storage_dir,
        hashing=HashingConfig(
            algorithm=_optional_algorithm(
                hashing_payload.get("algorithm"), "hashing.algorithm", base.hashing.algorithm
            ),
            workers=_optional_positive_int_with_cap(
                hashing_payload.get("workers"),
                "hashing.workers",
                base.hashing.workers,
                MAX_WORKERS_CAP,
            ),
            io_budget_seconds=_optional_positive_float(
                hashing_payload.get("io_budget_seconds"),
                "hashing.io_budget_seconds",
                base.hashing.io_budget_seconds,
            ),
            chunk_bytes=_optional_positive_int_with_cap(
                hashing_payload.get("chunk_bytes"),
                "hashing.chunk_bytes",
                base.hashing.chunk_bytes,
                MAX_CHUNK_BYTES_CAP,
            ),
        ),
        storage=StorageConfig(
            max_backups=_optional_positive_int_with_cap(
                storage_payload.get("max_backups"),
                "storage.max_backups",
                base.storage.max_backups,
                MAX_BACKUPS_CAP,
            ),
            lock=_optional_bool(storage_payload.get("lock"), "storage.lock", base.storage.lock),
        ),
        reconcile=ReconcileConfig(
            unreadable_expiry_runs=_optional_non_negative_int_with_cap(
                reconcile_payload.get("unreadable_expiry_runs"),
                "reconcile.unreadable_expiry_runs",
                base.reconcile.unreadable_expiry_runs,
                MAX_EXPIRY_RUNS_CAP,
            ),
        ),
    )
    return apply_cli_overrides(merged, overrides)


def apply_cli_overrides(config: TreeguardConfig, overrides: CliOverrides) -> TreeguardConfig:
    """Apply startup overrides at highest precedence."""
    hashing = HashingConfig(
        algorithm=_optional_algorithm(
            overrides.algorithm, "overrides.algorithm", config.hashing.algorithm
        ),
        workers=_optional_positive_int_with_cap(
            overrides.workers, "overrides.workers", config.hashing.workers, MAX_WORKERS_CAP
        ),
        io_budget_seconds=_optional_positive_float(
            overrides.io_budget_seconds,
            "overrides.io_budget_seconds",
            config.hashing.io_budget_seconds,
        ),
        chunk_bytes=config.hashing.chunk_bytes,
    )
    storage = StorageConfig(
        max_backups=_optional_positive_int_with_cap(
            overrides.max_backups,
            "overrides.max_backups",
            config.storage.max_backups,
            MAX_BACKUPS_CAP,
        ),
        lock=overrides.lock if overrides.lock is not None else config.storage.lock,
    )
    reconcile = ReconcileConfig(
        unreadable_expiry_runs=_optional_non_negative_int_with_cap(
            overrides.unreadable_expiry_runs,
            "overrides.unreadable_expiry_runs",
            config.reconcile.unreadable_expiry_runs,
            MAX_EXPIRY_RUNS_CAP,
        )
    )
    storage_dir = (overrides.storage_dir or config.storage_dir).resolve()
    if storage_dir == config.root:
        raise ConfigError(
            reason="Storage directory must not be the scanned root itself.",
            hint="Use a dedicated subdirectory such as '.treeguard'.",
        )
    return TreeguardConfig(
        root=config.root,
        storage_dir=storage_dir,
        hashing=hashing,
        storage=storage,
        reconcile=reconcile,
    )


def load_effective_config(root: Path, overrides: CliOverrides | None = None) -> TreeguardConfig:
    """Load effective config using merge order defaults -> file -> overrides."""
    resolved_root = root.resolve()
    if not resolved_root.is_dir():
        raise ConfigError(reason=f"Root {resolved_root} is not a directory.")
    base = default_config(resolved_root)
    payload = load_config_file(resolved_root)
    return merge_config(base, payload, overrides or CliOverrides())


def _optional_algorithm(value: object, name: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or value not in supported_algorithms():
        raise ConfigError(
            reason=f"Config field '{name}' must be one of: {', '.join(supported_algorithms())}."
        )
    return value


def _optional_bool(value: object, name: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(reason=f"Config field '{name}' must be a boolean.")
    return value


def _optional_positive_float(value: object, name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(reason=f"Config field '{name}' must be a positive number.")
    return float(value)


def _optional_positive_int_with_cap(
    value: object,
    name: str,
    default: int,
    cap: int | None,
) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(reason=f"Config field '{name}' must be a positive integer.")
    if cap is not None and value > cap:
        raise ConfigError(reason=f"Config field '{name}' must be <= {cap}.")
    return value


def _optional_non_negative_int_with_cap(value: object, name: str, default: int, cap: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(reason=f"Config field '{name}' must be a non-negative integer.")
    if value > cap:
        raise ConfigError(reason=f"Config field '{name}' must be <= {cap}.")
    return value
