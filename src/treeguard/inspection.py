"""Read-only views over a verified manifest."""

from __future__ import annotations

from collections import defaultdict

from treeguard.digest import DigestEngine
from treeguard.errors import ConfigError
from treeguard.models import Manifest


def find_duplicates(manifest: Manifest) -> dict[str, tuple[str, ...]]:
    """Group paths by digest, keeping only digests shared by two or more paths."""
    groups: dict[str, list[str]] = defaultdict(list)
    for entry in manifest.sorted_entries():
        groups[entry.digest].append(entry.path)
    return {
        digest: tuple(paths)
        for digest, paths in sorted(groups.items())
        if len(paths) > 1
    }


def relative_checksum(manifest: Manifest, prefix: str, engine: DigestEngine) -> str | None:
    """Digest a subtree independently of where it is located.

    The prefix must end with '/'. Every entry under it contributes its path with
    the prefix stripped and its digest, in sorted order, so two identical
    subtrees at different locations produce the same value. Returns None when
    no entry lives under the prefix.
    """
    normalized = prefix.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if not normalized.endswith("/"):
        raise ConfigError(
            reason="Relative checksum prefix must end with '/'.",
            hint="Pass a directory prefix such as 'photos/2024/'.",
        )
    if normalized == "/":
        normalized = ""
    pairs = [
        (entry.path[len(normalized) :], entry.digest)
        for entry in manifest.sorted_entries()
        if entry.path.startswith(normalized)
    ]
    if not pairs:
        return None
    return engine.hash_pairs(pairs)
