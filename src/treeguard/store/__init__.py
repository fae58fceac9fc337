"""Checksum-protected persistence for the manifest and banlist."""

from .banlist import (
    BanlistStore,
    build_banlist,
    default_banlist,
    matches,
    parse_ban_pattern,
    with_patterns,
    without_patterns,
)
from .manifest import ManifestStore, decode_manifest, encode_manifest

__all__ = [
    "BanlistStore",
    "ManifestStore",
    "build_banlist",
    "decode_manifest",
    "default_banlist",
    "encode_manifest",
    "matches",
    "parse_ban_pattern",
    "with_patterns",
    "without_patterns",
]
