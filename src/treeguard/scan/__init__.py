"""Tree traversal and parallel hashing."""

from .hashing import hash_paths
from .scanner import scan_tree, symlink_rejection

__all__ = ["hash_paths", "scan_tree", "symlink_rejection"]
