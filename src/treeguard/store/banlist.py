"""Banlist parsing, matching and checksum-protected persistence."""

from __future__ import annotations

import fnmatch
from pathlib import Path

from treeguard.digest import DigestEngine
from treeguard.errors import BanlistCorruptError, InvalidBanPatternError
from treeguard.models import BAN_EXACT, BAN_GLOB, BAN_PREFIX, BanEntry, Banlist
from treeguard.paths import PathKeyError, is_absolute_style, normalize_path_key, parent_keys
from treeguard.store.atomic import atomic_write_bytes
from treeguard.store.codec import (
    FramingError,
    append_checksum,
    escape_field,
    serialize_body,
    unescape_field,
    verify_framed,
)

BANLIST_FORMAT = "treeguard-banlist/1"
DEFAULT_BAN_PATTERNS = ("lost+found/", ".Trash-1000/")
_GLOB_CHARS = "*?["


def parse_ban_pattern(raw: str) -> BanEntry:
    """Validate one pattern and classify it as exact, prefix or glob."""
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in raw):
        raise InvalidBanPatternError(raw, "control characters are not allowed")
    normalized = raw.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if not normalized:
        raise InvalidBanPatternError(raw, "pattern is empty")
    if is_absolute_style(normalized):
        raise InvalidBanPatternError(raw, "absolute paths are not allowed")

    if any(char in normalized for char in _GLOB_CHARS):
        segments = normalized.split("/")
        if ".." in segments:
            raise InvalidBanPatternError(raw, "'..' segments are not allowed")
        if not _brackets_balanced(normalized):
            raise InvalidBanPatternError(raw, "unbalanced '[' in glob")
        return BanEntry(pattern=normalized, kind=BAN_GLOB)

    try:
        key = normalize_path_key(normalized)
    except PathKeyError as error:
        raise InvalidBanPatternError(raw, error.reason.rstrip(".").lower()) from error
    if normalized.endswith("/"):
        return BanEntry(pattern=f"{key}/", kind=BAN_PREFIX)
    return BanEntry(pattern=key, kind=BAN_EXACT)


def build_banlist(patterns: list[str] | tuple[str, ...], algorithm: str) -> Banlist:
    """Parse patterns in order, keeping the first occurrence of duplicates."""
    entries: list[BanEntry] = []
    seen: set[str] = set()
    for raw in patterns:
        entry = parse_ban_pattern(raw)
        if entry.pattern in seen:
            continue
        seen.add(entry.pattern)
        entries.append(entry)
    return Banlist(algorithm=algorithm, entries=tuple(entries))


def default_banlist(algorithm: str) -> Banlist:
    return build_banlist(DEFAULT_BAN_PATTERNS, algorithm)


def with_patterns(banlist: Banlist, patterns: list[str]) -> Banlist:
    """Return a banlist with patterns appended."""
    return build_banlist([*banlist.patterns, *patterns], banlist.algorithm)


def without_patterns(banlist: Banlist, patterns: list[str]) -> tuple[Banlist, tuple[str, ...]]:
    """Return a banlist without the given patterns, plus those that were not present."""
    targets = {parse_ban_pattern(raw).pattern for raw in patterns}
    kept = tuple(entry for entry in banlist.entries if entry.pattern not in targets)
    present = {entry.pattern for entry in banlist.entries}
    missing = tuple(sorted(targets - present))
    return Banlist(algorithm=banlist.algorithm, entries=kept), missing


def entry_matches(entry: BanEntry, key: str, is_dir: bool = False) -> bool:
    """Match one entry against a key; directory mode also tries 'key/'."""
    if entry.kind == BAN_EXACT:
        return key == entry.pattern
    if entry.kind == BAN_PREFIX:
        if is_dir and key == entry.pattern[:-1]:
            return True
        return key.startswith(entry.pattern)
    anchored = f"/{key}"
    candidates = [key, anchored]
    if is_dir:
        candidates.extend((f"{key}/", f"{anchored}/"))
    return any(fnmatch.fnmatch(candidate, entry.pattern) for candidate in candidates)


def matches_directory(banlist: Banlist, key: str) -> bool:
    """Return True when a directory key itself is banned, pruning its subtree."""
    return any(entry_matches(entry, key, is_dir=True) for entry in banlist.entries)


def matches(banlist: Banlist, candidate: str, is_dir: bool = False) -> bool:
    """Return True when the candidate or any ancestor directory is banned."""
    if not banlist.entries:
        return False
    for ancestor in parent_keys(candidate):
        if matches_directory(banlist, ancestor):
            return True
    return any(entry_matches(entry, candidate, is_dir=is_dir) for entry in banlist.entries)


def serialize_banlist_body(banlist: Banlist) -> bytes:
    records = [_encode_pattern(entry.pattern) for entry in banlist.entries]
    return serialize_body(BANLIST_FORMAT, banlist.algorithm, records)


class BanlistStore:
    """Loads and saves the checksum-protected banlist file."""

    def __init__(self, path: Path, algorithm: str) -> None:
        self._path = path
        self._algorithm = algorithm

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> Banlist:
        """Verify and parse the banlist; a missing file yields an empty banlist."""
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return Banlist(algorithm=self._algorithm)
        except OSError as error:
            raise BanlistCorruptError(
                reason=f"Banlist could not be read: {error}",
                hint="Check permissions of the storage directory.",
            ) from error
        try:
            framed = verify_framed(raw, BANLIST_FORMAT)
            patterns = [
                unescape_field(record)
                for record in framed.records
                if record and not record.startswith("#")
            ]
        except FramingError as error:
            raise BanlistCorruptError(
                reason=f"Banlist failed verification: {error}",
                hint="Restore the banlist from a trusted copy, or delete it to start over.",
            ) from error
        return build_banlist(patterns, framed.algorithm)

    def save(self, banlist: Banlist) -> None:
        engine = DigestEngine(banlist.algorithm)
        atomic_write_bytes(self._path, append_checksum(serialize_banlist_body(banlist), engine))


def _encode_pattern(pattern: str) -> str:
    escaped = escape_field(pattern)
    if escaped.startswith("#"):
        return f"\\{escaped}"
    return escaped


def _brackets_balanced(pattern: str) -> bool:
    index = 0
    while index < len(pattern):
        if pattern[index] == "[":
            close = pattern.find("]", index + 2)
            if close == -1:
                return False
            index = close
        index += 1
    return True
