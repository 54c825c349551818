"""
Sequential tar member extraction.

GeoLite2 databases ship as ``.tar.gz`` with a single interesting member.
Rather than loading the archive into structured form, the decompressed
stream is walked header by header in one forward pass:

    READ_HEADER -> EMIT (target found, return payload)
                -> SKIP (other member, discard block-aligned payload)
                -> END  (terminator block or clean end of stream)
"""

from __future__ import annotations

import enum
import posixpath
from dataclasses import dataclass
from typing import BinaryIO, Optional

from geosync.errors import FormatError, NotFoundError

BLOCK_SIZE = 512

NAME_FIELD = slice(0, 100)
SIZE_FIELD = slice(124, 136)
MAGIC_FIELD = slice(257, 262)
PREFIX_FIELD = slice(345, 500)

USTAR_MAGIC = b"ustar"

# Chunk size used when discarding payloads of non-matching members
SKIP_CHUNK = 64 * 1024


class _State(enum.Enum):
    READ_HEADER = "read_header"
    EMIT = "emit"
    SKIP = "skip"
    END = "end"


@dataclass
class TarHeader:
    """The fields of a tar header block needed for extraction."""
    name: str
    size: int

    @property
    def padded_size(self) -> int:
        """Payload size rounded up to the next block boundary."""
        return -(-self.size // BLOCK_SIZE) * BLOCK_SIZE

    def matches(self, target: str) -> bool:
        """A member matches by full path or by its final path component."""
        return self.name == target or posixpath.basename(self.name) == target


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` bytes, looping over short reads."""
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _discard(stream: BinaryIO, size: int) -> int:
    """Read and drop ``size`` bytes; returns how many were actually consumed."""
    consumed = 0
    while consumed < size:
        chunk = stream.read(min(SKIP_CHUNK, size - consumed))
        if not chunk:
            break
        consumed += len(chunk)
    return consumed


def parse_header(block: bytes) -> TarHeader:
    """
    Decode a 512-byte header block.

    Raises FormatError when the size field is not ASCII octal.
    """
    name = block[NAME_FIELD].split(b"\0", 1)[0].decode("utf-8", errors="replace")

    if block[MAGIC_FIELD] == USTAR_MAGIC:
        prefix = block[PREFIX_FIELD].split(b"\0", 1)[0].decode("utf-8", errors="replace")
        if prefix and name:
            name = f"{prefix}/{name}"

    raw_size = block[SIZE_FIELD].strip(b"\0 ").decode("ascii", errors="replace")
    try:
        size = int(raw_size, 8)
    except ValueError:
        raise FormatError(f"Invalid size field {raw_size!r} in tar header for '{name}'")
    if size < 0:
        raise FormatError(f"Negative size in tar header for '{name}'")

    return TarHeader(name=name, size=size)


def extract_member(stream: BinaryIO, target: str) -> bytes:
    """
    Return the exact payload of ``target`` from a forward-only tar stream.

    Raises NotFoundError when the archive ends without the member and
    FormatError on a malformed header or a truncated stream.
    """
    state = _State.READ_HEADER
    header: Optional[TarHeader] = None

    while True:
        if state is _State.READ_HEADER:
            block = _read_exact(stream, BLOCK_SIZE)
            if not block:
                state = _State.END
                continue
            if len(block) < BLOCK_SIZE:
                raise FormatError(f"Truncated tar header ({len(block)} of {BLOCK_SIZE} bytes)")
            if not block[NAME_FIELD].strip(b"\0"):
                state = _State.END
                continue
            header = parse_header(block)
            state = _State.EMIT if header.matches(target) else _State.SKIP

        elif state is _State.EMIT:
            payload = _read_exact(stream, header.size)
            if len(payload) != header.size:
                raise FormatError(
                    f"Truncated payload for '{header.name}' "
                    f"({len(payload)} of {header.size} bytes)"
                )
            return payload

        elif state is _State.SKIP:
            skipped = _discard(stream, header.padded_size)
            if skipped != header.padded_size:
                raise FormatError(f"Truncated payload for '{header.name}'")
            state = _State.READ_HEADER

        else:
            raise NotFoundError(target)
