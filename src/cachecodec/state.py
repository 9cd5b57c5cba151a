"""
Persisted State Snapshot

Writes a keyed set of values as one snapshot and reads it back. An entry
whose value could not be produced or encoded is stored as a failure
envelope, so one bad entry never aborts the snapshot. Reading such an entry
re-raises the captured failure at the point of use.

Format (exact):
  - 4 ASCII bytes tag: b"CST1"
  - string format_version
  - uint32 entry count
  - per entry: string key, tagged value (see codecs.values)
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Iterator, Mapping

from .core.bytesio import WriteContext, ReadContext, DeserializationError
from .core.registry import param_registry, frame_tag
from .codecs.failure import FailureEnvelope
from .codecs.values import ValueCodecs
from .serialization.types import TypeResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Deferred:
    """A value produced at write time by calling `fn()`."""
    fn: Callable[[], Any]


def deferred(fn: Callable[[], Any]) -> Deferred:
    return Deferred(fn)


def write_state(
    entries: Mapping[str, Any],
    stream: BinaryIO,
    codecs: ValueCodecs | None = None
) -> int:
    """
    Write a snapshot of `entries` to `stream`.

    Deferred values are resolved here; an exception from the producer or
    from the value's codec is captured for that entry only.

    Args:
        entries: Key -> value (or Deferred). Keys must be strings.
        stream: Caller-owned writable binary stream; left open.
        codecs: Value dispatch; built-in scalar codecs by default.

    Returns:
        int: Number of entries stored as captured failures.

    Raises:
        SerializationError: A captured failure could not itself be serialized.
    """
    codecs = codecs or ValueCodecs()
    ctx = WriteContext(stream)

    items = list(entries.items())
    ctx.write_tag(frame_tag("STATE"))
    ctx.write_string(param_registry()["format_version"])
    ctx.write_uint(len(items), 4)

    failures = 0
    for key, value in items:
        if isinstance(value, Deferred):
            try:
                value = value.fn()
            except Exception as e:
                logger.warning("capturing %s while producing %s", type(e).__qualname__, key)
                value = FailureEnvelope(e)

        # Whole entry or nothing: a failure that cannot be serialized leaves no dangling key
        scratch = io.BytesIO()
        entry_ctx = WriteContext(scratch)
        entry_ctx.write_string(key)
        if codecs.write_value(value, entry_ctx, label=key):
            failures += 1
        ctx.write_raw(scratch.getvalue())

    logger.debug(
        "wrote state snapshot: %d entries, %d failures, %d bytes",
        len(items), failures, ctx.bytes_written
    )
    return failures


def read_state(
    stream: BinaryIO,
    codecs: ValueCodecs | None = None,
    resolver: TypeResolver | None = None
) -> "StateSnapshot":
    """
    Read a snapshot written by write_state.

    Args:
        resolver: Maps failure type descriptors back to classes
            (builtins only when None).

    Raises:
        DeserializationError: Bad tag, version mismatch, duplicate key,
            truncated or malformed entry.
    """
    codecs = codecs or ValueCodecs()
    ctx = ReadContext(stream, resolver)

    ctx.expect_tag(frame_tag("STATE"))
    version = ctx.read_string()
    expected = param_registry()["format_version"]
    if version != expected:
        raise DeserializationError(
            f"State format version mismatch: expected {expected!r}, got {version!r}"
        )

    count = ctx.read_uint(4)
    entries: dict[str, Any] = {}
    for _ in range(count):
        key = ctx.read_string()
        if key in entries:
            raise DeserializationError(f"Duplicate state key: '{key}'")
        entries[key] = codecs.read_value(ctx)

    logger.debug("read state snapshot: %d entries, %d bytes", count, ctx.bytes_read)
    return StateSnapshot(entries)


class StateSnapshot:
    """
    Decoded snapshot. get() re-raises captured failures; raw() does not.
    """

    def __init__(self, entries: dict[str, Any]):
        self._entries = entries

    def get(self, key: str) -> Any:
        """
        Value for `key`.

        Raises:
            KeyError: No such entry.
            BaseException: The failure captured when the entry was written.
        """
        value = self._entries[key]
        if isinstance(value, FailureEnvelope):
            value.rethrow()
        return value

    def raw(self, key: str) -> Any:
        return self._entries[key]

    def failures(self) -> dict[str, FailureEnvelope]:
        return {
            k: v for k, v in self._entries.items()
            if isinstance(v, FailureEnvelope)
        }

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
