"""
Wire Protocol

Design Decision: Framing
========================

Options Considered:
1. Length-prefixed JSON header + binary body
   - Self-describing, easy to extend
   - Needs a JSON parser on both ends, larger header

2. Fixed binary header + name + optional digest
   - Tiny, trivial to parse in any language
   - Header size is implicit, both ends must agree on layout

Decision: Fixed binary header, one frame per connection
- The connection carries exactly one file, so the header is sent once
- No magic number, no version byte, no acknowledgement
- End of stream is signalled by the sender closing its write side

Frame Format:
```
+-------------------+-------------------+-------------+----------------+------------------+
| payload len (4B)  | name len (4B)     | file name   | digest (20B)   | file content ... |
| int32 LE, signed  | int32 LE, signed  | UTF-8       | SHA-1 or zeros | payload len bytes|
+-------------------+-------------------+-------------+----------------+------------------+
```

The digest field is only on the wire when both ends run with
``digest_field=True``. When it is present but the sender was not asked
for a checksum, it is 20 zero bytes and means "no checksum".
"""

import asyncio
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from .errors import FileTooLargeError, MalformedFrameError

logger = logging.getLogger(__name__)

# Default network chunk size for socket and disk I/O
DEFAULT_BUFFER_SIZE = 8192

# payload length + name length, both little-endian signed int32
LENGTHS_FORMAT = '<ii'
FIXED_HEADER_SIZE = struct.calcsize(LENGTHS_FORMAT)

# SHA-1 digest
DIGEST_SIZE = 20
ZERO_DIGEST = bytes(DIGEST_SIZE)

# Largest payload the signed 32-bit length field can describe (~2 GiB)
MAX_PAYLOAD_LENGTH = 2 ** 31 - 1

# Upper bound accepted for the declared name length
MAX_NAME_LENGTH = 1024

NAME_ENCODING = 'utf-8'


@dataclass
class FrameHeader:
    """
    Header sent once at the start of a transfer.

    Attributes:
        payload_length: Byte length of the file content that follows
        file_name: Name component of the file (no directories)
        digest: 20-byte SHA-1 of the file, ZERO_DIGEST or None
        digest_field: Whether the digest field is part of the wire layout
    """
    payload_length: int
    file_name: str
    digest: Optional[bytes] = None
    digest_field: bool = True

    def __post_init__(self):
        if self.payload_length < 0:
            raise MalformedFrameError(f"Negative payload length: {self.payload_length}")
        if self.payload_length > MAX_PAYLOAD_LENGTH:
            raise FileTooLargeError(
                f"File of {self.payload_length:,} bytes exceeds the "
                f"{MAX_PAYLOAD_LENGTH:,} byte limit of the length field"
            )
        if self.digest is not None and len(self.digest) != DIGEST_SIZE:
            raise MalformedFrameError(
                f"Digest must be {DIGEST_SIZE} bytes, got {len(self.digest)}"
            )

    @property
    def name_bytes(self) -> bytes:
        return self.file_name.encode(NAME_ENCODING)

    @property
    def size(self) -> int:
        """Total encoded header length in bytes."""
        size = FIXED_HEADER_SIZE + len(self.name_bytes)
        if self.digest_field:
            size += DIGEST_SIZE
        return size

    @property
    def has_checksum(self) -> bool:
        """True when a real digest (not the zero placeholder) is carried."""
        return (
            self.digest_field
            and self.digest is not None
            and self.digest != ZERO_DIGEST
        )

    def to_bytes(self) -> bytes:
        """Assemble the header into one contiguous block."""
        name = self.name_bytes
        data = struct.pack(LENGTHS_FORMAT, self.payload_length, len(name)) + name
        if self.digest_field:
            data += self.digest if self.digest is not None else ZERO_DIGEST
        return data

    @classmethod
    def from_bytes(cls, data: bytes, digest_field: bool = True) -> 'FrameHeader':
        """
        Parse a complete header block.

        Raises:
            MalformedFrameError: if the block is short or inconsistent
        """
        if len(data) < FIXED_HEADER_SIZE:
            raise MalformedFrameError(
                f"Header needs at least {FIXED_HEADER_SIZE} bytes, got {len(data)}"
            )

        payload_length, name_length = struct.unpack_from(LENGTHS_FORMAT, data)
        if name_length < 0:
            raise MalformedFrameError(f"Negative name length: {name_length}")

        expected = FIXED_HEADER_SIZE + name_length + (DIGEST_SIZE if digest_field else 0)
        if len(data) < expected:
            raise MalformedFrameError(
                f"Header declares {expected} bytes but only {len(data)} are available"
            )

        name_end = FIXED_HEADER_SIZE + name_length
        file_name = _decode_name(data[FIXED_HEADER_SIZE:name_end])
        digest = bytes(data[name_end:name_end + DIGEST_SIZE]) if digest_field else None

        return cls(
            payload_length=payload_length,
            file_name=file_name,
            digest=digest,
            digest_field=digest_field,
        )


def _decode_name(raw: bytes) -> str:
    try:
        return raw.decode(NAME_ENCODING)
    except UnicodeDecodeError as e:
        raise MalformedFrameError(f"File name is not valid {NAME_ENCODING}: {e}") from e


async def read_header(reader: asyncio.StreamReader, digest_field: bool = True,
                      max_name_length: int = MAX_NAME_LENGTH) -> FrameHeader:
    """
    Read a frame header from a stream.

    TCP may deliver the header in any number of segments, so each field
    is read with readexactly() until it is fully buffered.

    Raises:
        MalformedFrameError: stream ended early or lengths are out of range
        FileTooLargeError: declared payload exceeds the 32-bit limit
    """
    fixed = await reader.readexactly(FIXED_HEADER_SIZE)
    payload_length, name_length = struct.unpack(LENGTHS_FORMAT, fixed)

    if payload_length < 0:
        raise MalformedFrameError(f"Negative payload length: {payload_length}")
    if name_length <= 0 or name_length > max_name_length:
        raise MalformedFrameError(
            f"Declared name length {name_length} outside 1..{max_name_length}"
        )

    name = await reader.readexactly(name_length)
    digest = await reader.readexactly(DIGEST_SIZE) if digest_field else None

    header = FrameHeader(
        payload_length=payload_length,
        file_name=_decode_name(name),
        digest=digest,
        digest_field=digest_field,
    )
    logger.debug(f"Header: {header.file_name!r}, {payload_length:,} bytes, "
                 f"checksum={'yes' if header.has_checksum else 'no'}")
    return header


def sanitize_file_name(name: str) -> str:
    """
    Reduce a received file name to a safe, bare name component.

    Both '/' and '\\' are treated as separators, since the peer may run
    on any platform. Only the last component is kept.

    Raises:
        MalformedFrameError: if nothing usable remains
    """
    if '\x00' in name:
        raise MalformedFrameError("File name contains NUL byte")

    bare = name.replace('\\', '/').rstrip('/').rsplit('/', 1)[-1].strip()
    if bare in ('', '.', '..'):
        raise MalformedFrameError(f"Unusable file name: {name!r}")

    if bare != name:
        logger.warning(f"Sanitized file name {name!r} to {bare!r}")
    return bare


def check_buffer_size(value: int) -> int:
    """Validate a buffer size setting."""
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"Buffer size must be a positive integer, got {value!r}")
    return value
