from __future__ import annotations

import hashlib
import time
from pathlib import Path

import pytest

from treeguard.digest import DEFAULT_ALGORITHM, DigestEngine, supported_algorithms
from treeguard.errors import ConfigError, HashBudgetExceededError


def test_default_algorithm_is_blake2b_256() -> None:
    engine = DigestEngine()

    assert engine.algorithm == DEFAULT_ALGORITHM == "blake2b-256"
    assert engine.digest_size == 32
    assert engine.hash_bytes(b"abc") == hashlib.blake2b(b"abc", digest_size=32).hexdigest()


def test_supported_algorithms_are_sorted_and_match_hashlib() -> None:
    names = supported_algorithms()

    assert names == tuple(sorted(names))
    assert DigestEngine("sha256").hash_bytes(b"x") == hashlib.sha256(b"x").hexdigest()
    assert DigestEngine("sha3-256").hash_bytes(b"x") == hashlib.sha3_256(b"x").hexdigest()
    assert DigestEngine("sha512").digest_size == 64


def test_unknown_algorithm_is_config_error() -> None:
    with pytest.raises(ConfigError) as error:
        DigestEngine("md5")

    assert error.value.code == "CONFIG_INVALID"
    assert "md5" in error.value.reason


def test_hash_file_streams_in_chunks_and_matches_in_memory_digest(tmp_path: Path) -> None:
    payload = bytes(range(256)) * 41
    target = tmp_path / "blob.bin"
    target.write_bytes(payload)
    engine = DigestEngine(chunk_bytes=7)

    assert engine.hash_file(target) == engine.hash_bytes(payload)


def test_hash_file_honors_expired_deadline(tmp_path: Path) -> None:
    target = tmp_path / "slow.bin"
    target.write_bytes(b"data")
    engine = DigestEngine()

    with pytest.raises(HashBudgetExceededError):
        engine.hash_file(target, deadline=time.monotonic() - 1.0)


def test_hash_pairs_framing_is_unambiguous() -> None:
    engine = DigestEngine()

    joined = engine.hash_pairs([("ab", "c")])
    split = engine.hash_pairs([("a", "bc")])

    assert joined != split
    assert engine.hash_pairs([]) == engine.hash_bytes(b"")
