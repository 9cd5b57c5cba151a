"""
Core Component: Byte Stream Contexts (Big-Endian)

Write/read contexts over a caller-owned binary stream.
Every codec talks to the stream through these two classes only.

Framing (frozen):
  - Unsigned integers: big-endian, fixed width given by the caller
  - int64: big-endian two's complement
  - float64: IEEE-754 big-endian
  - bool: one byte, 0x00 or 0x01
  - string: [length: uint32 BE][UTF-8 bytes]
  - binary block: [length: uint32 BE][payload: length bytes]

The contexts never close, seek or reopen the stream.
"""

import struct
from typing import Any, BinaryIO

from .registry import param_registry


_FLOAT64 = struct.Struct(">d")


class WriteContext:
    """
    Append-only writer over a binary stream.

    Attributes:
        stream: Any object with write(bytes) (io.BytesIO, open file, socket file).
        bytes_written: Running count of bytes appended through this context.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.bytes_written = 0
        registry = param_registry()
        self._prefix_size = registry["length_prefix_bytes"]
        self._max_block = registry["max_block_bytes"]
        self._encoding = registry["string_encoding"]

    def write_raw(self, data: bytes) -> None:
        self.stream.write(data)
        self.bytes_written += len(data)

    def write_uint(self, value: int, size: int) -> None:
        if value < 0 or value >= (1 << (8 * size)):
            raise SerializationError(f"Value {value} out of uint{8 * size} range")
        self.write_raw(value.to_bytes(size, byteorder="big"))

    def write_int64(self, value: int) -> None:
        try:
            data = value.to_bytes(8, byteorder="big", signed=True)
        except OverflowError as e:
            raise SerializationError(f"Value {value} out of int64 range") from e
        self.write_raw(data)

    def write_float64(self, value: float) -> None:
        self.write_raw(_FLOAT64.pack(value))

    def write_bool(self, value: bool) -> None:
        self.write_raw(b"\x01" if value else b"\x00")

    def write_tag(self, tag: bytes) -> None:
        if len(tag) != 4:
            raise SerializationError(f"Frame tags are 4 bytes, got {tag!r}")
        self.write_raw(tag)

    def write_string(self, value: str) -> None:
        try:
            data = value.encode(self._encoding)
        except UnicodeEncodeError as e:
            raise SerializationError(f"String is not encodable as {self._encoding}") from e
        self.write_binary(data)

    def write_binary(self, data: bytes) -> None:
        """
        Write one length-prefixed block: length first, then exactly that many bytes.

        Raises:
            SerializationError: If the payload does not fit the length prefix.
        """
        if len(data) > self._max_block:
            raise SerializationError(
                f"Binary block too large: {len(data)} > {self._max_block}"
            )
        self.write_uint(len(data), self._prefix_size)
        self.write_raw(bytes(data))


class ReadContext:
    """
    Sequential reader over a binary stream.

    Attributes:
        stream: Any object with read(n).
        resolver: Type-resolution context handed to codecs that rebuild
            polymorphic values (see serialization.types). May be None.
        bytes_read: Running count of bytes consumed through this context.
    """

    def __init__(self, stream: BinaryIO, resolver: Any = None):
        self.stream = stream
        self.resolver = resolver
        self.bytes_read = 0
        registry = param_registry()
        self._prefix_size = registry["length_prefix_bytes"]
        self._encoding = registry["string_encoding"]

    def read_exact(self, n: int) -> bytes:
        """
        Read exactly n bytes.

        Raises:
            TruncatedStreamError: If the stream ends first.
        """
        chunks = []
        remaining = n
        while remaining > 0:
            chunk = self.stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)

        data = b"".join(chunks)
        self.bytes_read += len(data)
        if len(data) != n:
            raise TruncatedStreamError(expected=n, actual=len(data))
        return data

    def read_uint(self, size: int) -> int:
        return int.from_bytes(self.read_exact(size), byteorder="big")

    def read_int64(self) -> int:
        return int.from_bytes(self.read_exact(8), byteorder="big", signed=True)

    def read_float64(self) -> float:
        return _FLOAT64.unpack(self.read_exact(8))[0]

    def read_bool(self) -> bool:
        b = self.read_exact(1)[0]
        if b not in (0, 1):
            raise DeserializationError(f"Invalid bool byte: {b:#04x}")
        return b == 1

    def expect_tag(self, tag: bytes) -> None:
        got = self.read_exact(len(tag))
        if got != tag:
            raise DeserializationError(f"Bad frame tag: expected {tag!r}, got {got!r}")

    def read_string(self) -> str:
        data = self.read_binary()
        try:
            return data.decode(self._encoding)
        except UnicodeDecodeError as e:
            raise DeserializationError(f"String is not valid {self._encoding}") from e

    def read_binary(self) -> bytes:
        """Read one length-prefixed block written by WriteContext.write_binary."""
        length = self.read_uint(self._prefix_size)
        return self.read_exact(length)


class SerializationError(Exception):
    """Raised when a value cannot be written in the wire format."""
    pass


class DeserializationError(Exception):
    """Raised when bytes do not form a well-formed record."""
    pass


class TruncatedStreamError(DeserializationError):
    """Raised when the stream ends before a length prefix or payload is complete."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Stream truncated: expected {expected} bytes, got {actual}")
