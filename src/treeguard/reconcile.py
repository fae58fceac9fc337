"""Scan-versus-manifest diff and next-manifest construction."""

from __future__ import annotations

from treeguard.models import Manifest, ManifestEntry, ReconciliationReport, ScanResult


def reconcile(
    old: Manifest,
    live: ScanResult,
    expiry_runs: int = 0,
) -> tuple[ReconciliationReport, Manifest]:
    """Classify live digests against the previous manifest and build its successor.

    Unreadable files are excluded from the four change sets. Their previous
    entry is carried forward with its miss counter incremented; once the
    counter reaches ``expiry_runs`` (when positive) the entry is dropped and
    reported as removed and expired.
    """
    previous_paths = set(old.entries)
    live_paths = set(live.digests)
    unreadable_paths = set(live.unreadable) - live_paths

    added = sorted(live_paths - previous_paths)
    modified: list[str] = []
    unchanged: list[str] = []
    for path in sorted(previous_paths & live_paths):
        if old.entries[path].digest == live.digests[path]:
            unchanged.append(path)
            continue
        modified.append(path)

    entries: dict[str, ManifestEntry] = {
        path: ManifestEntry(path=path, digest=digest) for path, digest in live.digests.items()
    }

    expired: list[str] = []
    for path in sorted(previous_paths & unreadable_paths):
        previous = old.entries[path]
        misses = previous.misses + 1
        if expiry_runs > 0 and misses >= expiry_runs:
            expired.append(path)
            continue
        entries[path] = ManifestEntry(path=path, digest=previous.digest, misses=misses)

    removed = sorted((previous_paths - live_paths - unreadable_paths) | set(expired))

    report = ReconciliationReport(
        added=tuple(added),
        removed=tuple(removed),
        modified=tuple(modified),
        unchanged=tuple(unchanged),
        unreadable=tuple(sorted(unreadable_paths)),
        expired=tuple(expired),
    )
    return report, Manifest(algorithm=old.algorithm, entries=entries)
