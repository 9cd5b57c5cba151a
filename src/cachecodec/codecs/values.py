"""
Tagged value dispatch with failure capture.

Each value is written as [tag: uint8][codec bytes]. Tag 0 is reserved for
FailureEnvelope; the built-in codecs below take tags 1-6 and callers
register their own types on the remaining tags.

Only scalar values are built in. Containers and shared references are left
to registered codecs.
"""

from __future__ import annotations

import io
import logging
from typing import Any

from ..core.bytesio import (
    WriteContext,
    ReadContext,
    SerializationError,
    DeserializationError,
)
from .base import Codec
from .failure import FailureEnvelope, FAILURE_ENVELOPE_CODEC

logger = logging.getLogger(__name__)

FAILURE_TAG = 0


class NoneCodec:
    def encode(self, value: None, ctx: WriteContext) -> None:
        pass

    def decode(self, ctx: ReadContext) -> None:
        return None


class BoolCodec:
    def encode(self, value: bool, ctx: WriteContext) -> None:
        ctx.write_bool(value)

    def decode(self, ctx: ReadContext) -> bool:
        return ctx.read_bool()


class IntCodec:
    """Signed 64-bit; larger ints are unserializable and get captured."""

    def encode(self, value: int, ctx: WriteContext) -> None:
        ctx.write_int64(value)

    def decode(self, ctx: ReadContext) -> int:
        return ctx.read_int64()


class FloatCodec:
    def encode(self, value: float, ctx: WriteContext) -> None:
        ctx.write_float64(value)

    def decode(self, ctx: ReadContext) -> float:
        return ctx.read_float64()


class StrCodec:
    def encode(self, value: str, ctx: WriteContext) -> None:
        ctx.write_string(value)

    def decode(self, ctx: ReadContext) -> str:
        return ctx.read_string()


class BytesCodec:
    def encode(self, value: bytes, ctx: WriteContext) -> None:
        ctx.write_binary(value)

    def decode(self, ctx: ReadContext) -> bytes:
        return ctx.read_binary()


BUILTIN_CODECS: tuple[tuple[int, type, Codec], ...] = (
    (1, type(None), NoneCodec()),
    (2, bool, BoolCodec()),
    (3, int, IntCodec()),
    (4, float, FloatCodec()),
    (5, str, StrCodec()),
    (6, bytes, BytesCodec()),
)


class ValueCodecs:
    """
    Picks a codec per value type and captures encode failures.

    Lookup walks the value's MRO, so a registered base class covers its
    subclasses unless a subclass has its own registration.
    """

    def __init__(self, builtins: bool = True):
        self._by_tag: dict[int, Codec] = {FAILURE_TAG: FAILURE_ENVELOPE_CODEC}
        self._by_type: dict[type, tuple[int, Codec]] = {}
        if builtins:
            for tag, cls, codec in BUILTIN_CODECS:
                self.register(tag, cls, codec)

    def register(self, tag: int, cls: type, codec: Codec) -> None:
        """
        Raises:
            CodecRegistrationError: Tag out of range, reserved, or already used;
                or `cls` already registered.
        """
        if not 0 <= tag <= 255:
            raise CodecRegistrationError(f"Tag {tag} out of uint8 range")
        if tag == FAILURE_TAG or cls is FailureEnvelope:
            raise CodecRegistrationError("Tag 0 and FailureEnvelope are reserved")
        if tag in self._by_tag:
            raise CodecRegistrationError(f"Tag {tag} already registered")
        if cls in self._by_type:
            raise CodecRegistrationError(f"Type {cls.__qualname__} already registered")
        self._by_tag[tag] = codec
        self._by_type[cls] = (tag, codec)

    def lookup(self, value: Any) -> tuple[int, Codec]:
        for cls in type(value).__mro__:
            found = self._by_type.get(cls)
            if found is not None:
                return found
        raise SerializationError(f"No codec registered for {type(value).__qualname__}")

    def write_value(self, value: Any, ctx: WriteContext, label: str | None = None) -> bool:
        """
        Write one tagged value; returns True when a failure envelope was written.

        The value is encoded into a scratch buffer first, so a codec that raises
        part-way leaves no bytes behind; the failure is written instead.
        Errors from the envelope codec itself propagate.
        """
        if isinstance(value, FailureEnvelope):
            self.write_failure(value, ctx)
            return True

        scratch = io.BytesIO()
        try:
            tag, codec = self.lookup(value)
            codec.encode(value, WriteContext(scratch))
        except Exception as e:
            logger.warning(
                "capturing %s while encoding %s",
                type(e).__qualname__, label or type(value).__qualname__
            )
            self.write_failure(FailureEnvelope(e), ctx)
            return True

        ctx.write_uint(tag, 1)
        ctx.write_raw(scratch.getvalue())
        return False

    def write_failure(self, envelope: FailureEnvelope, ctx: WriteContext) -> None:
        scratch = io.BytesIO()
        FAILURE_ENVELOPE_CODEC.encode(envelope, WriteContext(scratch))
        ctx.write_uint(FAILURE_TAG, 1)
        ctx.write_raw(scratch.getvalue())

    def read_value(self, ctx: ReadContext) -> Any:
        """Read one tagged value; a failure comes back as a FailureEnvelope."""
        tag = ctx.read_uint(1)
        codec = self._by_tag.get(tag)
        if codec is None:
            raise DeserializationError(f"Unknown value tag: {tag}")
        return codec.decode(ctx)


class CodecRegistrationError(Exception):
    """Raised when a codec registration conflicts with an existing one."""
    pass
