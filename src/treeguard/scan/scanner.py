"""Deterministic tree walk filtered by the banlist."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

from treeguard.models import Banlist
from treeguard.paths import is_under, relative_key
from treeguard.store.banlist import matches, matches_directory


def scan_tree(
    root: Path,
    banlist: Banlist,
    storage_key: str | None = None,
    ignored: dict[str, str] | None = None,
) -> Iterator[str]:
    """Yield the key of every non-banned file under root in a deterministic order.

    Banned directories and the storage directory are pruned without
    descending. Symlinks are never traversed: a link resolving to a regular,
    non-banned file inside root is yielded as a leaf; every other link, and
    every non-regular file, is recorded in ``ignored`` with a reason.
    """
    resolved_root = root.resolve()
    sink = ignored if ignored is not None else {}
    stack: list[Path] = [resolved_root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                ordered_entries = sorted(entries, key=lambda item: item.name)
        except OSError as error:
            if current != resolved_root:
                sink[relative_key(resolved_root, current)] = f"directory unreadable: {error}"
                continue
            raise
        subdirectories: list[Path] = []
        for entry in ordered_entries:
            full_path = Path(entry.path)
            key = relative_key(resolved_root, full_path)
            if storage_key is not None and is_under(key, storage_key):
                continue
            if entry.is_symlink():
                if matches(banlist, key):
                    continue
                reason = symlink_rejection(resolved_root, full_path, banlist, storage_key)
                if reason is not None:
                    sink[key] = reason
                    continue
                yield key
                continue
            if entry.is_dir(follow_symlinks=False):
                if matches_directory(banlist, key):
                    continue
                subdirectories.append(full_path)
                continue
            if matches(banlist, key):
                continue
            if not entry.is_file(follow_symlinks=False):
                sink[key] = "not a regular file"
                continue
            yield key
        # Pushed in reverse so the smallest name is popped first.
        stack.extend(reversed(subdirectories))


def symlink_rejection(
    root: Path,
    link: Path,
    banlist: Banlist,
    storage_key: str | None,
) -> str | None:
    """Return why link must not be hashed, or None when it may stand in for its target."""
    try:
        target = link.resolve(strict=True)
    except (OSError, RuntimeError):
        return "broken symlink"
    if not target.is_relative_to(root):
        return "symlink target outside root"
    target_key = relative_key(root, target) if target != root else ""
    if not target_key or (storage_key is not None and is_under(target_key, storage_key)):
        return "symlink target is internal"
    if not target.is_file():
        return "symlink target is not a regular file"
    if matches(banlist, target_key):
        return "symlink target is banned"
    return None
