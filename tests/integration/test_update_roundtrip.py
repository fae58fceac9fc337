from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from treeguard.config import CliOverrides, load_effective_config
from treeguard.runner import IntegrityRunner, RunState


def _runner(root: Path, **overrides: object) -> IntegrityRunner:
    return IntegrityRunner(load_effective_config(root, CliOverrides(**overrides)))


def test_first_update_creates_manifest_and_default_banlist(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("print('a')\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("# Title\n", encoding="utf-8")
    runner = _runner(tmp_path)

    result = runner.update()

    assert result.report.added == ("README.md", "src/a.py")
    assert result.backup_path is None
    assert result.banlist_created is True
    assert result.manifest_entries == 2
    assert result.states[-1] == RunState.DONE
    assert RunState.BACKUP in result.states
    storage = tmp_path / ".treeguard"
    assert (storage / "manifest").is_file()
    assert (storage / "banlist").is_file()
    assert not (storage / "lock").exists()


def test_second_update_is_idempotent_and_byte_identical(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "b.txt").write_text("b", encoding="utf-8")
    _runner(tmp_path).update()
    manifest_path = tmp_path / ".treeguard" / "manifest"
    first_bytes = manifest_path.read_bytes()

    second = _runner(tmp_path).update()

    assert not second.report.has_changes
    assert second.report.unchanged == ("a.txt", "b.txt")
    assert manifest_path.read_bytes() == first_bytes
    assert second.backup_path is not None
    assert second.backup_path.read_bytes() == first_bytes


def test_add_remove_and_modify_are_reported(tmp_path: Path) -> None:
    (tmp_path / "A").write_text("alpha", encoding="utf-8")
    (tmp_path / "B").write_text("beta", encoding="utf-8")
    _runner(tmp_path).update()

    (tmp_path / "B").unlink()
    (tmp_path / "C").write_text("gamma", encoding="utf-8")
    first = _runner(tmp_path).update()

    assert first.report.added == ("C",)
    assert first.report.removed == ("B",)
    assert first.report.unchanged == ("A",)

    (tmp_path / "A").write_text("alpha changed", encoding="utf-8")
    second = _runner(tmp_path).update()

    assert second.report.modified == ("A",)
    assert second.report.unchanged == ("C",)


def test_algorithm_from_manifest_header_is_used_for_new_runs(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    _runner(tmp_path, algorithm="sha256").update()

    text = (tmp_path / ".treeguard" / "manifest").read_text(encoding="utf-8")

    assert text.splitlines()[1] == "ALGORITHM = sha256"
    assert len(text.splitlines()[2].split(" ")[0]) == 64


def test_custom_storage_dir_outside_root(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    (root / "f.txt").write_text("f", encoding="utf-8")
    storage = tmp_path / "state"

    result = _runner(root, storage_dir=storage).update()

    assert result.report.added == ("f.txt",)
    assert (storage / "manifest").is_file()
    assert not (root / ".treeguard").exists()


@pytest.mark.skipif(
    os.name != "posix" or sys.getfilesystemencoding() != "utf-8",
    reason="requires byte-oriented POSIX filenames",
)
def test_undecodable_filename_round_trips(tmp_path: Path) -> None:
    (tmp_path / "ok.txt").write_text("ok", encoding="utf-8")
    try:
        with open(os.fsencode(tmp_path) + b"/bad\xff.txt", "wb") as handle:
            handle.write(b"bytes")
    except OSError as error:
        pytest.skip(f"filesystem rejects undecodable names: {error}")
    key = os.fsdecode(b"bad\xff.txt")

    first = _runner(tmp_path).update()
    second = _runner(tmp_path).update()
    report = _runner(tmp_path).verify()

    assert first.report.added == (key, "ok.txt")
    assert b"bad\\xff.txt" in (tmp_path / ".treeguard" / "manifest").read_bytes()
    assert second.report.has_changes is False
    assert second.report.unchanged == (key, "ok.txt")
    assert report.verified == (key, "ok.txt")
