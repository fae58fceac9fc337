"""Self-checksummed text framing shared by the manifest and banlist files.

A framed file is a UTF-8 body followed by one trailer line::

    FORMAT = <format id>
    ALGORITHM = <digest algorithm>
    <record lines>
    CHECKSUM = <hex digest of every preceding byte>

Writing is split into two pure phases, ``serialize_body`` and
``append_checksum``. Verification splits the trailer off, recomputes the digest
over the exact body bytes and only then decodes records.
"""

from __future__ import annotations

from dataclasses import dataclass

from treeguard.digest import DigestEngine, is_supported_algorithm

FORMAT_PREFIX = "FORMAT = "
ALGORITHM_PREFIX = "ALGORITHM = "
CHECKSUM_PREFIX = "CHECKSUM = "

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r", "#": "#"}
_HEX_DIGITS = frozenset("0123456789abcdef")
# Undecodable filename bytes arrive as lone surrogates U+DC80..U+DCFF
# (the surrogateescape error handler) and are written as \xNN.
_SURROGATE_BASE = 0xDC00
_FIRST_RAW_BYTE = 0x80


class FramingError(ValueError):
    """Raised when framed bytes are malformed or fail checksum verification."""


@dataclass(slots=True, frozen=True)
class FramedBody:
    """Verified contents of a framed file."""

    format_id: str
    algorithm: str
    records: tuple[str, ...]


def escape_field(text: str) -> str:
    """Escape characters that would break line framing or UTF-8 encoding."""
    output: list[str] = []
    for char in text:
        raw_byte = ord(char) - _SURROGATE_BASE
        if _FIRST_RAW_BYTE <= raw_byte <= 0xFF:
            output.append(f"\\x{raw_byte:02x}")
            continue
        output.append(_ESCAPES.get(char, char))
    return "".join(output)


def unescape_field(text: str) -> str:
    """Invert escape_field; reject dangling or unknown escapes."""
    output: list[str] = []
    chars = iter(text)
    for char in chars:
        if char != "\\":
            output.append(char)
            continue
        escaped = next(chars, None)
        if escaped is None:
            raise FramingError("Dangling escape character at end of field.")
        if escaped == "x":
            output.append(_unescape_raw_byte(next(chars, ""), next(chars, "")))
            continue
        if escaped not in _UNESCAPES:
            raise FramingError(f"Unknown escape sequence '\\{escaped}'.")
        output.append(_UNESCAPES[escaped])
    return "".join(output)


def _unescape_raw_byte(high: str, low: str) -> str:
    if high not in _HEX_DIGITS or low not in _HEX_DIGITS:
        raise FramingError("Byte escape needs two lowercase hex digits.")
    value = int(high + low, 16)
    if value < _FIRST_RAW_BYTE:
        raise FramingError(f"Byte escape '\\x{high}{low}' is not an undecodable byte.")
    return chr(_SURROGATE_BASE + value)


def serialize_body(format_id: str, algorithm: str, records: list[str]) -> bytes:
    """Serialize the header and record lines; excludes the checksum trailer."""
    lines = [f"{FORMAT_PREFIX}{format_id}", f"{ALGORITHM_PREFIX}{algorithm}", *records]
    return "".join(f"{line}\n" for line in lines).encode("utf-8")


def append_checksum(body: bytes, engine: DigestEngine) -> bytes:
    """Return body followed by the checksum trailer computed over body."""
    return body + f"{CHECKSUM_PREFIX}{engine.hash_bytes(body)}\n".encode("ascii")


def split_checksum(raw: bytes) -> tuple[bytes, str]:
    """Separate body bytes from the stored checksum value."""
    if not raw.endswith(b"\n"):
        raise FramingError("Missing trailing newline after checksum line.")
    content = raw[:-1]
    cut = content.rfind(b"\n") + 1
    trailer = content[cut:]
    prefix = CHECKSUM_PREFIX.encode("ascii")
    if not trailer.startswith(prefix):
        raise FramingError("Missing checksum trailer line.")
    try:
        stored = trailer[len(prefix) :].decode("ascii")
    except UnicodeDecodeError as error:
        raise FramingError("Checksum value is not ASCII.") from error
    return raw[:cut], stored


def verify_framed(raw: bytes, expected_format: str) -> FramedBody:
    """Verify the trailer checksum and decode the body of a framed file."""
    body, stored = split_checksum(raw)
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as error:
        raise FramingError("Body is not valid UTF-8.") from error
    lines = text.split("\n")
    # The body always ends with a newline, leaving one empty tail element.
    if len(lines) < 3 or lines[-1] != "":
        raise FramingError("Header lines are missing.")
    lines = lines[:-1]
    format_line, algorithm_line, records = lines[0], lines[1], lines[2:]
    if not algorithm_line.startswith(ALGORITHM_PREFIX):
        raise FramingError("Missing algorithm header.")
    algorithm = algorithm_line[len(ALGORITHM_PREFIX) :]
    if not is_supported_algorithm(algorithm):
        raise FramingError(f"Unrecognized checksum algorithm {algorithm!r}.")
    computed = DigestEngine(algorithm).hash_bytes(body)
    if computed != stored:
        raise FramingError("Stored checksum does not match file contents.")
    if format_line != f"{FORMAT_PREFIX}{expected_format}":
        raise FramingError(f"Unexpected format header {format_line!r}.")
    return FramedBody(format_id=expected_format, algorithm=algorithm, records=tuple(records))
