from __future__ import annotations

import os
from pathlib import Path

import pytest

from treeguard.models import Banlist
from treeguard.scan import scan_tree
from treeguard.store import build_banlist

pytestmark = pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")


def _symlink(link: Path, target: Path) -> None:
    try:
        link.symlink_to(target)
    except OSError as error:
        pytest.skip(f"symlink creation not permitted: {error}")


def _scan(root: Path, banlist: Banlist | None = None) -> tuple[list[str], dict[str, str]]:
    ignored: dict[str, str] = {}
    keys = list(
        scan_tree(
            root,
            banlist or Banlist(algorithm="blake2b-256"),
            storage_key=".treeguard",
            ignored=ignored,
        )
    )
    return keys, ignored


def test_link_to_regular_file_inside_root_is_yielded(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    (root / "real.txt").write_text("data", encoding="utf-8")
    _symlink(root / "alias.txt", root / "real.txt")

    keys, ignored = _scan(root)

    assert sorted(keys) == ["alias.txt", "real.txt"]
    assert ignored == {}


def test_escaping_broken_and_directory_links_are_ignored(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    (tmp_path / "outside.txt").write_text("secret", encoding="utf-8")
    (root / "sub").mkdir()
    (root / "sub" / "inner.txt").write_text("inner", encoding="utf-8")
    _symlink(root / "escape", tmp_path / "outside.txt")
    _symlink(root / "dangling", root / "missing.txt")
    _symlink(root / "dirlink", root / "sub")

    keys, ignored = _scan(root)

    assert keys == ["sub/inner.txt"]
    assert ignored == {
        "dangling": "broken symlink",
        "dirlink": "symlink target is not a regular file",
        "escape": "symlink target outside root",
    }


def test_links_into_storage_or_banned_targets_are_ignored(tmp_path: Path) -> None:
    root = tmp_path / "root"
    (root / ".treeguard").mkdir(parents=True)
    (root / ".treeguard" / "manifest").write_text("m", encoding="utf-8")
    (root / "private").mkdir()
    (root / "private" / "key.pem").write_text("k", encoding="utf-8")
    _symlink(root / "to-manifest", root / ".treeguard" / "manifest")
    _symlink(root / "to-key", root / "private" / "key.pem")

    keys, ignored = _scan(root, build_banlist(["private/"], "blake2b-256"))

    assert keys == []
    assert ignored == {
        "to-key": "symlink target is banned",
        "to-manifest": "symlink target is internal",
    }
