from __future__ import annotations

from pathlib import Path

import pytest

from treeguard.config import CliOverrides, load_effective_config
from treeguard.errors import ConfigError, ManifestCorruptError
from treeguard.runner import IntegrityRunner, RunState


def _runner(root: Path) -> IntegrityRunner:
    return IntegrityRunner(load_effective_config(root, CliOverrides()))


def _seed(root: Path) -> IntegrityRunner:
    for rel, text in {
        "docs/a.txt": "a",
        "docs/b.txt": "b",
        "photos/c.jpg": "c",
        "photos/d.jpg": "d",
    }.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    runner = _runner(root)
    runner.update()
    return runner


def _storage_bytes(root: Path) -> dict[str, bytes]:
    storage = root / ".treeguard"
    return {
        item.relative_to(storage).as_posix(): item.read_bytes()
        for item in sorted(storage.rglob("*"))
        if item.is_file()
    }


def test_clean_tree_verifies(tmp_path: Path) -> None:
    runner = _seed(tmp_path)

    report = runner.verify()

    assert report.ok
    assert report.verified == ("docs/a.txt", "docs/b.txt", "photos/c.jpg", "photos/d.jpg")
    assert runner.machine.history[-2:] == (RunState.VERIFYING, RunState.DONE)
    assert RunState.BACKUP not in runner.machine.history


def test_modified_missing_and_banned_are_classified_without_writes(tmp_path: Path) -> None:
    runner = _seed(tmp_path)
    (tmp_path / "docs" / "a.txt").write_text("tampered", encoding="utf-8")
    (tmp_path / "photos" / "c.jpg").unlink()
    (tmp_path / "new.txt").write_text("untracked", encoding="utf-8")
    runner.ban_add(["*.jpg"])
    (tmp_path / "photos" / "c.jpg").write_text("c", encoding="utf-8")
    (tmp_path / "docs" / "b.txt").unlink()
    before = _storage_bytes(tmp_path)

    report = runner.verify()

    assert not report.ok
    assert report.modified == ("docs/a.txt",)
    assert report.missing == ("docs/b.txt",)
    assert report.banned == ("photos/c.jpg", "photos/d.jpg")
    assert report.verified == ()
    assert _storage_bytes(tmp_path) == before


def test_prefix_limits_the_checked_entries(tmp_path: Path) -> None:
    runner = _seed(tmp_path)
    (tmp_path / "photos" / "d.jpg").write_text("changed", encoding="utf-8")

    docs = runner.verify(prefix="docs/")
    photos = runner.verify(prefix="./photos/")

    assert docs.ok
    assert docs.verified == ("docs/a.txt", "docs/b.txt")
    assert photos.modified == ("photos/d.jpg",)
    assert photos.verified == ("photos/c.jpg",)


def test_prefix_traversal_is_rejected(tmp_path: Path) -> None:
    runner = _seed(tmp_path)

    with pytest.raises(ConfigError):
        runner.verify(prefix="../elsewhere")


def test_corrupt_manifest_fails_verify(tmp_path: Path) -> None:
    runner = _seed(tmp_path)
    manifest = tmp_path / ".treeguard" / "manifest"
    manifest.write_bytes(manifest.read_bytes().replace(b"docs/a.txt", b"docs/x.txt"))

    with pytest.raises(ManifestCorruptError):
        runner.verify()

    assert runner.machine.state == RunState.MANIFEST_CORRUPT


def test_status_reports_without_raising(tmp_path: Path) -> None:
    runner = _seed(tmp_path)
    runner.update()

    healthy = runner.status()
    manifest = tmp_path / ".treeguard" / "manifest"
    manifest.write_bytes(b"garbage\n")
    broken = runner.status()

    assert healthy.manifest_state == "verified"
    assert healthy.manifest_entries == 4
    assert healthy.banlist_state == "verified"
    assert healthy.ban_patterns == 2
    assert len(healthy.backups) == 1
    assert healthy.lock_held is False
    assert broken.manifest_state == "corrupt"
    assert broken.error == "MANIFEST_CORRUPT"


def test_duplicates_and_relative_checksum_through_runner(tmp_path: Path) -> None:
    runner = _seed(tmp_path)
    (tmp_path / "copy").mkdir()
    (tmp_path / "copy" / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "copy" / "b.txt").write_text("b", encoding="utf-8")
    runner.update()

    groups = runner.duplicates()

    assert sorted(groups.values()) == [("copy/a.txt", "docs/a.txt"), ("copy/b.txt", "docs/b.txt")]
    assert runner.relative_checksum("copy/") == runner.relative_checksum("docs/")
    assert runner.relative_checksum("copy/") != runner.relative_checksum("photos/")


def test_relinked_symlink_is_not_hashed_through_outside_target(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    (root / "real.txt").write_text("same", encoding="utf-8")
    outside = tmp_path / "outside.txt"
    outside.write_text("same", encoding="utf-8")
    try:
        (root / "alias.txt").symlink_to(root / "real.txt")
    except (OSError, NotImplementedError) as error:
        pytest.skip(f"symlink creation not permitted: {error}")
    runner = _runner(root)
    runner.update()

    (root / "alias.txt").unlink()
    (root / "alias.txt").symlink_to(outside)
    report = runner.verify()

    assert report.unreadable == ("alias.txt",)
    assert report.verified == ("real.txt",)
    assert not report.ok
