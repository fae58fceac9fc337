"""Typed models for manifest, banlist and run state."""

from __future__ import annotations

from dataclasses import dataclass, field

BAN_EXACT = "exact"
BAN_PREFIX = "prefix"
BAN_GLOB = "glob"


@dataclass(slots=True, frozen=True)
class ManifestEntry:
    """Last known digest of a tracked file."""

    path: str
    digest: str
    misses: int = 0


@dataclass(slots=True, frozen=True)
class Manifest:
    """Path-keyed digest table written with a trailing self-checksum."""

    algorithm: str
    entries: dict[str, ManifestEntry] = field(default_factory=dict)

    def sorted_entries(self) -> list[ManifestEntry]:
        """Return entries in canonical serialization order."""
        return [self.entries[key] for key in sorted(self.entries)]

    def digests(self) -> dict[str, str]:
        """Map each tracked path to its digest."""
        return {key: entry.digest for key, entry in self.entries.items()}

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(slots=True, frozen=True)
class BanEntry:
    """One validated exclusion pattern."""

    pattern: str
    kind: str


@dataclass(slots=True, frozen=True)
class Banlist:
    """Ordered exclusion patterns written with a trailing self-checksum."""

    algorithm: str
    entries: tuple[BanEntry, ...] = ()

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(entry.pattern for entry in self.entries)


@dataclass(slots=True, frozen=True)
class ScanResult:
    """Digests gathered from one scan, plus per-file failures."""

    digests: dict[str, str]
    unreadable: dict[str, str]
    ignored: dict[str, str]


@dataclass(slots=True, frozen=True)
class ReconciliationReport:
    """Deterministic change classification for one run."""

    added: tuple[str, ...]
    removed: tuple[str, ...]
    modified: tuple[str, ...]
    unchanged: tuple[str, ...]
    unreadable: tuple[str, ...]
    expired: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)


@dataclass(slots=True, frozen=True)
class VerificationReport:
    """Read-only comparison of tracked files against the manifest."""

    verified: tuple[str, ...]
    modified: tuple[str, ...]
    missing: tuple[str, ...]
    unreadable: tuple[str, ...]
    banned: tuple[str, ...]

    @property
    def ok(self) -> bool:
        return not (self.modified or self.missing or self.unreadable or self.banned)
