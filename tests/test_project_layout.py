from __future__ import annotations

from pathlib import Path


def test_required_package_paths_exist() -> None:
    root = Path(__file__).resolve().parents[1]
    required = [
        "src/treeguard/cli.py",
        "src/treeguard/runner.py",
        "src/treeguard/store/__init__.py",
        "src/treeguard/scan/__init__.py",
        "src/treeguard/logging/__init__.py",
        "pyproject.toml",
    ]
    for rel in required:
        assert (root / rel).exists(), rel
