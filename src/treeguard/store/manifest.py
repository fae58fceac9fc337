"""Manifest persistence with verified load, atomic save and backup rotation."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from pathlib import Path

from treeguard.digest import DigestEngine
from treeguard.errors import AlgorithmMismatchError, ManifestCorruptError, WriteFailedError
from treeguard.models import Manifest, ManifestEntry
from treeguard.paths import is_canonical_key
from treeguard.store.atomic import atomic_write_bytes
from treeguard.store.codec import (
    FramingError,
    append_checksum,
    escape_field,
    serialize_body,
    unescape_field,
    verify_framed,
)

MANIFEST_FORMAT = "treeguard-manifest/1"
BACKUP_PREFIX = "manifest-"
_HEX_PATTERN = re.compile(r"^[0-9a-f]+$")
_COUNTER_PATTERN = re.compile(r"^(0|[1-9][0-9]*)$")


def serialize_manifest_body(manifest: Manifest) -> bytes:
    """Serialize entries sorted by path; excludes the checksum trailer."""
    records = [
        f"{entry.digest} {entry.misses} {escape_field(entry.path)}"
        for entry in manifest.sorted_entries()
    ]
    return serialize_body(MANIFEST_FORMAT, manifest.algorithm, records)


def encode_manifest(manifest: Manifest) -> bytes:
    """Return the full on-disk bytes: body followed by its checksum trailer."""
    return append_checksum(serialize_manifest_body(manifest), DigestEngine(manifest.algorithm))


def decode_manifest(raw: bytes) -> Manifest:
    """Verify the trailer checksum, then parse entries."""
    framed = verify_framed(raw, MANIFEST_FORMAT)
    hex_length = DigestEngine(framed.algorithm).digest_size * 2
    entries: dict[str, ManifestEntry] = {}
    for line_number, record in enumerate(framed.records, start=3):
        parts = record.split(" ", 2)
        if len(parts) != 3:
            raise FramingError(f"Line {line_number} does not have three fields.")
        digest, misses_text, escaped_path = parts
        if len(digest) != hex_length or not _HEX_PATTERN.match(digest):
            raise FramingError(f"Line {line_number} has a malformed digest.")
        if not _COUNTER_PATTERN.match(misses_text):
            raise FramingError(f"Line {line_number} has a malformed miss counter.")
        path = unescape_field(escaped_path)
        if not is_canonical_key(path):
            raise FramingError(f"Line {line_number} holds a non-canonical path.")
        if path in entries:
            raise FramingError(f"Line {line_number} repeats path {path!r}.")
        entries[path] = ManifestEntry(path=path, digest=digest, misses=int(misses_text))
    return Manifest(algorithm=framed.algorithm, entries=entries)


class ManifestStore:
    """Loads, backs up and saves the checksum-protected manifest file."""

    def __init__(
        self,
        path: Path,
        backup_dir: Path,
        algorithm: str,
        max_backups: int = 10,
    ) -> None:
        self._path = path
        self._backup_dir = backup_dir
        self._algorithm = algorithm
        self._max_backups = max_backups
        self._verified_bytes: bytes | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> Manifest:
        """Verify and parse the manifest; a missing file yields an empty manifest."""
        self._verified_bytes = None
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return Manifest(algorithm=self._algorithm)
        except OSError as error:
            raise ManifestCorruptError(
                reason=f"Manifest could not be read: {error}",
                hint="Check permissions of the storage directory.",
            ) from error
        try:
            manifest = decode_manifest(raw)
        except FramingError as error:
            raise ManifestCorruptError(
                reason=f"Manifest failed verification: {error}",
                hint="Inspect the tree manually, then restore a backup from the backups folder.",
            ) from error
        if manifest.algorithm != self._algorithm:
            raise AlgorithmMismatchError(stored=manifest.algorithm, configured=self._algorithm)
        self._verified_bytes = raw
        return manifest

    def backup(self) -> Path | None:
        """Write a byte-identical copy of the verified on-disk manifest.

        Only legal after a successful ``load``. Returns None when no manifest
        existed at load time.
        """
        if self._verified_bytes is None:
            if self._path.exists():
                raise RuntimeError("Manifest must be loaded and verified before backup.")
            return None
        target = self._next_backup_path()
        atomic_write_bytes(target, self._verified_bytes)
        return target

    def save(self, manifest: Manifest) -> None:
        payload = encode_manifest(manifest)
        atomic_write_bytes(self._path, payload)
        self._verified_bytes = payload

    def list_backups(self) -> list[Path]:
        """Return backup files oldest first."""
        if not self._backup_dir.is_dir():
            return []
        return sorted(
            (
                item
                for item in self._backup_dir.iterdir()
                if item.is_file()
                and item.name.startswith(BACKUP_PREFIX)
                and not item.name.endswith(".tmp")
            ),
            key=lambda item: item.name,
        )

    def _next_backup_path(self) -> Path:
        stamp = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%fZ")
        candidate = self._backup_dir / f"{BACKUP_PREFIX}{stamp}"
        counter = 0
        while candidate.exists():
            counter += 1
            candidate = self._backup_dir / f"{BACKUP_PREFIX}{stamp}-{counter:03d}"
        return candidate

    def prune_backups(self) -> list[Path]:
        """Delete the oldest backups beyond the limit; return the removed paths.

        Only legal after the successor manifest has been saved.
        """
        backups = self.list_backups()
        excess = len(backups) - self._max_backups
        stale_backups = backups[: max(excess, 0)]
        for stale in stale_backups:
            try:
                stale.unlink()
            except OSError as error:
                raise WriteFailedError(
                    reason=f"Could not remove old backup {stale.name}: {error}",
                    hint="Check permissions of the backups folder.",
                ) from error
        return stale_backups
