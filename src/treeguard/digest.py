"""Digest engine over the standard library hash primitives."""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from treeguard.errors import ConfigError, HashBudgetExceededError

DEFAULT_ALGORITHM = "blake2b-256"
DEFAULT_CHUNK_BYTES = 1024 * 1024

_ALGORITHMS: dict[str, Callable[[], Any]] = {
    "blake2b-256": lambda: hashlib.blake2b(digest_size=32),
    "blake2s-256": lambda: hashlib.blake2s(digest_size=32),
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
    "sha3-256": hashlib.sha3_256,
}


def supported_algorithms() -> tuple[str, ...]:
    """Return accepted algorithm names in stable order."""
    return tuple(sorted(_ALGORITHMS))


def is_supported_algorithm(name: str) -> bool:
    return name in _ALGORITHMS


class DigestEngine:
    """Computes hex digests for byte strings and streamed files."""

    def __init__(
        self,
        algorithm: str = DEFAULT_ALGORITHM,
        chunk_bytes: int = DEFAULT_CHUNK_BYTES,
    ) -> None:
        if algorithm not in _ALGORITHMS:
            raise ConfigError(
                reason=f"Unsupported digest algorithm {algorithm!r}.",
                hint=f"Choose one of: {', '.join(supported_algorithms())}.",
            )
        if chunk_bytes < 1:
            raise ConfigError(reason="chunk_bytes must be a positive integer.")
        self._algorithm = algorithm
        self._factory = _ALGORITHMS[algorithm]
        self._chunk_bytes = chunk_bytes

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def digest_size(self) -> int:
        return self._factory().digest_size

    def hash_bytes(self, data: bytes) -> str:
        """Digest an in-memory byte string."""
        digest = self._factory()
        digest.update(data)
        return digest.hexdigest()

    def hash_file(self, path: Path, deadline: float | None = None) -> str:
        """Stream a file in fixed chunks; enforce an optional monotonic deadline."""
        digest = self._factory()
        with path.open("rb") as handle:
            while True:
                if deadline is not None and time.monotonic() > deadline:
                    raise HashBudgetExceededError(f"I/O budget exceeded while hashing {path}")
                chunk = handle.read(self._chunk_bytes)
                if not chunk:
                    break
                digest.update(chunk)
        return digest.hexdigest()

    def hash_pairs(self, pairs: list[tuple[str, str]]) -> str:
        """Digest ordered (name, value) pairs with unambiguous framing."""
        digest = self._factory()
        for name, value in pairs:
            encoded_name = name.encode("utf-8", "surrogateescape")
            digest.update(len(encoded_name).to_bytes(8, "little"))
            digest.update(encoded_name)
            encoded_value = value.encode("utf-8", "surrogateescape")
            digest.update(len(encoded_value).to_bytes(8, "little"))
            digest.update(encoded_value)
        return digest.hexdigest()
