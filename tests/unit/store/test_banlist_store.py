from __future__ import annotations

from pathlib import Path

import pytest

from treeguard.digest import DigestEngine
from treeguard.errors import InvalidBanPatternError
from treeguard.store import BanlistStore, build_banlist
from treeguard.store.banlist import BANLIST_FORMAT
from treeguard.store.codec import append_checksum, serialize_body


def test_missing_banlist_loads_empty(tmp_path: Path) -> None:
    store = BanlistStore(tmp_path / "banlist", "blake2b-256")

    banlist = store.load()

    assert banlist.entries == ()
    assert banlist.algorithm == "blake2b-256"
    assert not store.exists()


def test_save_load_roundtrip_keeps_order_and_hash_prefixed_patterns(tmp_path: Path) -> None:
    store = BanlistStore(tmp_path / "banlist", "blake2b-256")
    banlist = build_banlist(["#notes.txt", "tmp/", "*.swp", "odd\\name"], "blake2b-256")

    store.save(banlist)
    loaded = store.load()

    assert loaded == banlist
    text = store.path.read_text(encoding="utf-8")
    assert "\\#notes.txt\n" in text
    assert text.startswith(f"FORMAT = {BANLIST_FORMAT}\nALGORITHM = blake2b-256\n")


def test_comment_and_blank_lines_are_ignored(tmp_path: Path) -> None:
    engine = DigestEngine("sha256")
    body = serialize_body(BANLIST_FORMAT, "sha256", ["# scratch files", "", "*.tmp"])
    path = tmp_path / "banlist"
    path.write_bytes(append_checksum(body, engine))

    banlist = BanlistStore(path, "blake2b-256").load()

    assert banlist.patterns == ("*.tmp",)
    assert banlist.algorithm == "sha256"


def test_checksummed_but_invalid_pattern_is_reported(tmp_path: Path) -> None:
    engine = DigestEngine()
    body = serialize_body(BANLIST_FORMAT, engine.algorithm, ["../escape"])
    path = tmp_path / "banlist"
    path.write_bytes(append_checksum(body, engine))

    with pytest.raises(InvalidBanPatternError):
        BanlistStore(path, engine.algorithm).load()
