"""Typed error hierarchy with stable codes for presentation layers."""

from __future__ import annotations


class TreeguardError(Exception):
    """Base class for every fatal treeguard error."""

    code = "INTERNAL_ERROR"

    def __init__(self, reason: str, hint: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.hint = hint


class IntegrityError(TreeguardError):
    """Raised when a self-checksummed file fails verification."""

    code = "INTEGRITY_ERROR"


class ManifestCorruptError(IntegrityError):
    """Stored manifest does not match its trailing checksum."""

    code = "MANIFEST_CORRUPT"


class BanlistCorruptError(IntegrityError):
    """Stored banlist does not match its trailing checksum."""

    code = "BANLIST_CORRUPT"


class ConfigError(TreeguardError, ValueError):
    """Invalid configuration; aborts before any mutation."""

    code = "CONFIG_INVALID"


class InvalidBanPatternError(ConfigError):
    """A banlist pattern cannot be parsed safely."""

    code = "INVALID_BAN_PATTERN"

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(
            reason=f"Invalid ban pattern {pattern!r}: {reason}",
            hint="Use a root-relative path, a 'dir/' prefix or a glob such as '*.log'.",
        )
        self.pattern = pattern


class AlgorithmMismatchError(ConfigError):
    """Verified manifest was written with a different digest algorithm."""

    code = "ALGORITHM_MISMATCH"

    def __init__(self, stored: str, configured: str) -> None:
        super().__init__(
            reason=f"Manifest uses {stored!r} but {configured!r} is configured.",
            hint=f"Set hashing.algorithm = {stored!r} or start a new manifest.",
        )
        self.stored = stored
        self.configured = configured


class WriteFailedError(TreeguardError):
    """Atomic persist of manifest, banlist or backup failed."""

    code = "WRITE_FAILED"


class LockHeldError(TreeguardError):
    """Another run holds the advisory lock for this storage directory."""

    code = "LOCK_HELD"


class UnreadableFileError(OSError):
    """Per-file read failure collected into the scan result."""


class HashBudgetExceededError(UnreadableFileError):
    """File hashing did not finish within its I/O budget."""
