"""Canonical root-relative path keys."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Final

WINDOWS_ABSOLUTE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z]:[\\/]")


class PathKeyError(ValueError):
    """Raised when a candidate cannot be expressed as a root-relative key."""

    def __init__(self, reason: str, hint: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.hint = hint


def is_absolute_style(candidate: str) -> bool:
    """Detect POSIX and Windows absolute-style inputs."""
    normalized = candidate.replace("\\", "/")
    return normalized.startswith("/") or WINDOWS_ABSOLUTE_PATTERN.match(normalized) is not None


def normalize_path_key(candidate: str) -> str:
    """Normalize separators and drop '.' segments; reject traversal and absolute paths."""
    if is_absolute_style(candidate):
        raise PathKeyError(
            reason="Absolute paths cannot be used as keys.",
            hint="Use a path relative to the scanned root such as 'docs/readme.md'.",
        )
    parts = [part for part in candidate.replace("\\", "/").split("/") if part not in ("", ".")]
    if any(part == ".." for part in parts):
        raise PathKeyError(
            reason="Path traversal is blocked.",
            hint="Remove '..' segments and use a root-relative path.",
        )
    if not parts:
        raise PathKeyError(
            reason="Path is empty.",
            hint="Provide a root-relative path such as 'src/module.py'.",
        )
    return "/".join(parts)


def relative_key(root: Path, full_path: Path) -> str:
    """Return the key of a path located under an already-resolved root."""
    return full_path.relative_to(root).as_posix()


def storage_key(root: Path, storage_dir: Path) -> str | None:
    """Return the storage directory key when it lives inside root."""
    resolved_root = root.resolve()
    resolved_storage = storage_dir.resolve()
    if resolved_storage == resolved_root or not resolved_storage.is_relative_to(resolved_root):
        return None
    return resolved_storage.relative_to(resolved_root).as_posix()


def is_under(key: str, directory: str) -> bool:
    """Return True when key equals directory or lives beneath it."""
    return key == directory or key.startswith(f"{directory}/")


def parent_keys(key: str) -> list[str]:
    """Ancestor directory keys from the top down, excluding the key itself."""
    parts = key.split("/")
    return ["/".join(parts[:index]) for index in range(1, len(parts))]


def is_canonical_key(key: str) -> bool:
    """Return True for a key as produced by a tree walk: relative, no empty or dot segments."""
    if not key or key.startswith("/"):
        return False
    return all(part not in ("", ".", "..") for part in key.split("/"))
