from __future__ import annotations

from pathlib import Path

import pytest

from treeguard.errors import BanlistCorruptError, ManifestCorruptError
from treeguard.models import Manifest, ManifestEntry
from treeguard.store import BanlistStore, ManifestStore, build_banlist, encode_manifest
from treeguard.store.codec import FramingError
from treeguard.store.manifest import decode_manifest


def _sample_bytes() -> bytes:
    manifest = Manifest(
        algorithm="blake2b-256",
        entries={
            "a.txt": ManifestEntry(path="a.txt", digest="0" * 64),
            "dir/b.bin": ManifestEntry(path="dir/b.bin", digest="f" * 64, misses=3),
        },
    )
    return encode_manifest(manifest)


def test_every_single_byte_flip_is_detected() -> None:
    raw = _sample_bytes()
    decode_manifest(raw)

    for index in range(len(raw)):
        tampered = bytearray(raw)
        tampered[index] ^= 0x01
        with pytest.raises(FramingError):
            decode_manifest(bytes(tampered))


def test_truncation_and_appended_bytes_are_detected() -> None:
    raw = _sample_bytes()

    for cut in (1, 2, len(raw) // 2):
        with pytest.raises(FramingError):
            decode_manifest(raw[:-cut])
    with pytest.raises(FramingError):
        decode_manifest(raw + b"extra\n")


def test_store_load_raises_corrupt_and_leaves_file_untouched(tmp_path: Path) -> None:
    path = tmp_path / "manifest"
    raw = bytearray(_sample_bytes())
    raw[40] ^= 0x20
    path.write_bytes(bytes(raw))
    store = ManifestStore(path, tmp_path / "backups", "blake2b-256")

    with pytest.raises(ManifestCorruptError):
        store.load()

    assert path.read_bytes() == bytes(raw)
    with pytest.raises(RuntimeError):
        store.backup()
    assert not (tmp_path / "backups").exists()


def test_tampered_banlist_is_corrupt(tmp_path: Path) -> None:
    store = BanlistStore(tmp_path / "banlist", "blake2b-256")
    store.save(build_banlist(["*.log"], "blake2b-256"))
    raw = store.path.read_bytes()
    store.path.write_bytes(raw.replace(b"*.log", b"*.txt"))

    with pytest.raises(BanlistCorruptError) as error:
        store.load()

    assert error.value.code == "BANLIST_CORRUPT"


def test_every_single_byte_flip_in_banlist_is_detected(tmp_path: Path) -> None:
    store = BanlistStore(tmp_path / "banlist", "blake2b-256")
    store.save(build_banlist(["*.log", "cache/", "#hash-named"], "blake2b-256"))
    raw = store.path.read_bytes()
    assert store.load().patterns == ("*.log", "cache/", "#hash-named")

    for index in range(len(raw)):
        tampered = bytearray(raw)
        tampered[index] ^= 0x01
        store.path.write_bytes(bytes(tampered))
        with pytest.raises(BanlistCorruptError):
            store.load()
