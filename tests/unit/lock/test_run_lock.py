from __future__ import annotations

from pathlib import Path

import pytest

from treeguard.errors import LockHeldError
from treeguard.lock import RunLock


def test_lock_is_exclusive_and_released(tmp_path: Path) -> None:
    path = tmp_path / "store" / "lock"

    with RunLock(path):
        assert path.exists()
        with pytest.raises(LockHeldError) as error:
            RunLock(path).acquire()
        assert error.value.code == "LOCK_HELD"

    assert not path.exists()


def test_lock_removes_directory_it_created_when_empty(tmp_path: Path) -> None:
    store = tmp_path / "store"

    with RunLock(store / "lock"):
        assert store.is_dir()

    assert not store.exists()


def test_lock_keeps_directory_that_gained_files(tmp_path: Path) -> None:
    store = tmp_path / "store"

    with RunLock(store / "lock"):
        (store / "manifest").write_text("m", encoding="utf-8")

    assert (store / "manifest").exists()
    assert not (store / "lock").exists()


def test_stale_lock_blocks_until_removed(tmp_path: Path) -> None:
    path = tmp_path / "lock"
    path.write_text("12345\n", encoding="utf-8")

    with pytest.raises(LockHeldError):
        RunLock(path).acquire()
    assert path.read_text(encoding="utf-8") == "12345\n"

    path.unlink()
    lock = RunLock(path)
    lock.acquire()
    lock.release()
    assert not path.exists()
