"""
Exception Wire Format

Turns a raised exception (type, message, args, stack, cause chain) into a
tagged binary record and back.

Format (exact):
  - 4 ASCII bytes tag: b"FLR1"
  - record:
      string   type module
      string   type qualname
      string   message                     (str(exc))
      bool     has_args
      [uint32  arg count, then per arg: 1-byte kind N/B/I/F/S/Y/T + value]
      uint32   frame count, then per frame:
                 string filename, uint32 lineno, string name, string line
      uint8    link kind: 0 none, 1 cause, 2 context
      [record  linked failure, when link kind != 0]

Strings use the WriteContext string framing (uint32 length + UTF-8).
Arg kinds: N None, B bool, I int64, F float64, S string, Y bytes,
T tuple (uint32 count + nested args, at most 8 levels deep).

Args are the constructor arguments: exc.args, plus the filename(s) for
OSError. Decoding calls the class with them and keeps the result only when
its str() reproduces the stored message.

The chain follows __cause__, else __context__ unless __suppress_context__.
It stops at param_registry()["max_cause_depth"]; deeper chains and cycles
are a SerializationError. Such an error is never turned into a failure
record of its own: a failure that cannot be serialized ends the entry.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from typing import Any, BinaryIO

from ..core.bytesio import (
    WriteContext,
    ReadContext,
    SerializationError,
    DeserializationError,
)
from ..core.registry import param_registry, frame_tag
from .types import (
    TypeDescriptor,
    TypeResolver,
    BuiltinTypeResolver,
    PlaceholderFailure,
)


logger = logging.getLogger(__name__)

LINK_NONE = 0
LINK_CAUSE = 1
LINK_CONTEXT = 2

_LINK_NAMES = {LINK_NONE: "none", LINK_CAUSE: "cause", LINK_CONTEXT: "context"}

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_MAX_ARG_NESTING = 8

_FRAMES_ATTR = "_cachecodec_frames"


@dataclass(frozen=True)
class StackFrame:
    filename: str
    lineno: int
    name: str
    line: str = ""


@dataclass(frozen=True)
class FailureRecord:
    """
    Tagged record for one failure and its chain.

    Attributes:
        type: Descriptor of the failure's class.
        message: str() of the failure at capture time.
        args: Constructor arguments when all are wire values, else None.
        frames: Stack frames, outermost first.
        link: LINK_NONE, LINK_CAUSE or LINK_CONTEXT.
        linked: Record of the cause/context failure, if any.
    """
    type: TypeDescriptor
    message: str
    args: tuple | None = None
    frames: tuple[StackFrame, ...] = ()
    link: int = LINK_NONE
    linked: FailureRecord | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FailureRecord":
        """
        Capture `exc` and its chain.

        Raises:
            SerializationError: Not an exception, str() raised, chain too deep, or cyclic.
        """
        max_depth = param_registry()["max_cause_depth"]

        # Walk the chain first so depth/cycle errors surface before any record is built
        chain: list[tuple[BaseException, int]] = []
        seen: set[int] = set()
        current: BaseException | None = exc
        while current is not None:
            if not isinstance(current, BaseException):
                raise SerializationError(
                    f"Cannot serialize non-exception failure: {type(current).__name__}"
                )
            if id(current) in seen:
                raise SerializationError(
                    f"Cyclic failure chain at {type(current).__qualname__}"
                )
            if len(chain) >= max_depth:
                raise SerializationError(
                    f"Failure chain deeper than max_cause_depth={max_depth}"
                )
            seen.add(id(current))

            nxt, link = _next_in_chain(current)
            chain.append((current, link))
            current = nxt

        # Innermost first; its link is always LINK_NONE
        record = None
        for failure, link in reversed(chain):
            record = cls(
                type=_descriptor_of(failure),
                message=_message_of(failure),
                args=_constructor_args(failure),
                frames=_frames_of(failure),
                link=link,
                linked=record,
            )
        return record

    def to_exception(self, resolver: TypeResolver | None = None) -> BaseException:
        """Rebuild the failure chain; unresolvable types become PlaceholderFailure."""
        resolver = resolver or BuiltinTypeResolver()

        linked = self.linked.to_exception(resolver) if self.linked is not None else None

        exc_type = resolver.resolve(self.type)
        exc = None
        if exc_type is not None:
            exc = _rebuild(exc_type, self.args, self.message)
        # The stored message always wins over a type that cannot reproduce it
        if exc is None:
            exc = PlaceholderFailure(self.type, self.message)

        setattr(exc, _FRAMES_ATTR, self.frames)

        if self.link == LINK_CAUSE:
            exc.__cause__ = linked
        elif self.link == LINK_CONTEXT:
            exc.__context__ = linked
        return exc

    @property
    def link_name(self) -> str:
        return _LINK_NAMES[self.link]


def restored_frames(exc: BaseException) -> tuple[StackFrame, ...]:
    """Stack frames a decoded failure was restored with (empty for live failures)."""
    return getattr(exc, _FRAMES_ATTR, ())


def serialize(failure: BaseException, stream: BinaryIO) -> None:
    """
    Write `failure` as one FLR1 record.

    Nothing is written if the chain cannot be captured.

    Raises:
        SerializationError: See FailureRecord.from_exception.
    """
    record = FailureRecord.from_exception(failure)
    ctx = WriteContext(stream)
    ctx.write_tag(frame_tag("FAILURE"))
    _write_record(ctx, record)


def deserialize(stream: BinaryIO, resolver: TypeResolver | None = None) -> BaseException:
    """
    Read one FLR1 record and rebuild the failure chain.

    Raises:
        DeserializationError: Bad tag, truncated data, or malformed record.
    """
    ctx = ReadContext(stream, resolver)
    ctx.expect_tag(frame_tag("FAILURE"))
    record = _read_record(ctx, param_registry()["max_cause_depth"])
    return record.to_exception(resolver)


# ────────────────────────────────────────────────────────────────────────
# Capture helpers
# ────────────────────────────────────────────────────────────────────────

def _next_in_chain(exc: BaseException) -> tuple[BaseException | None, int]:
    if exc.__cause__ is not None:
        return exc.__cause__, LINK_CAUSE
    if exc.__context__ is not None and not exc.__suppress_context__:
        return exc.__context__, LINK_CONTEXT
    return None, LINK_NONE


def _descriptor_of(exc: BaseException) -> TypeDescriptor:
    if isinstance(exc, PlaceholderFailure):
        return exc.original_type
    return TypeDescriptor.of(type(exc))


def _message_of(exc: BaseException) -> str:
    try:
        return str(exc)
    except Exception as e:
        raise SerializationError(
            f"str() of {type(exc).__qualname__} raised {type(e).__qualname__}"
        ) from e


def _is_wire_arg(value: Any, depth: int = 0) -> bool:
    if value is None or isinstance(value, (bool, float, str, bytes)):
        return True
    if isinstance(value, int):
        return _INT64_MIN <= value <= _INT64_MAX
    if isinstance(value, tuple) and depth < _MAX_ARG_NESTING:
        return all(_is_wire_arg(v, depth + 1) for v in value)
    return False


def _constructor_args(exc: BaseException) -> tuple | None:
    """Arguments that rebuild `exc` through its class, or None if not representable."""
    if isinstance(exc, PlaceholderFailure):
        return None
    args = tuple(exc.args)
    # OSError keeps filenames outside args: OSError(errno, strerror, filename, winerror, filename2)
    if isinstance(exc, OSError) and len(args) == 2 and exc.filename is not None:
        if exc.filename2 is None:
            args = args + (exc.filename,)
        else:
            args = args + (exc.filename, None, exc.filename2)
    if all(_is_wire_arg(a) for a in args):
        return args
    return None


def _str_matches(exc: BaseException, message: str) -> bool:
    try:
        return str(exc) == message
    except Exception:
        return False


def _rebuild(exc_type: type[BaseException], args: tuple | None, message: str) -> BaseException | None:
    """
    Instantiate `exc_type` so that str() gives `message`.

    Tries the constructor with the stored args first, then __new__ with the
    args assigned directly (no __init__). Returns None when neither
    reproduces the message.
    """
    if args is not None:
        try:
            exc = exc_type(*args)
        except Exception as e:
            logger.debug("constructor of %s rejected stored args: %r", exc_type.__qualname__, e)
        else:
            if isinstance(exc, BaseException) and _str_matches(exc, message):
                return exc

    fallback_args = args if args is not None else (message,)
    try:
        exc = exc_type.__new__(exc_type, *fallback_args)
        exc.args = fallback_args
    except Exception as e:
        logger.debug("cannot instantiate %s: %r", exc_type.__qualname__, e)
        return None
    if _str_matches(exc, message):
        return exc

    logger.debug("rebuilt %s does not reproduce its message", exc_type.__qualname__)
    return None


def _frames_of(exc: BaseException) -> tuple[StackFrame, ...]:
    restored = restored_frames(exc)
    if restored:
        return restored
    if exc.__traceback__ is None:
        return ()
    return tuple(
        StackFrame(
            filename=fs.filename,
            lineno=fs.lineno or 0,
            name=fs.name,
            line=fs.line or "",
        )
        for fs in traceback.extract_tb(exc.__traceback__)
    )


# ────────────────────────────────────────────────────────────────────────
# Record framing
# ────────────────────────────────────────────────────────────────────────

def _write_record(ctx: WriteContext, record: FailureRecord) -> None:
    while record is not None:
        ctx.write_string(record.type.module)
        ctx.write_string(record.type.qualname)
        ctx.write_string(record.message)

        ctx.write_bool(record.args is not None)
        if record.args is not None:
            ctx.write_uint(len(record.args), 4)
            for a in record.args:
                _write_arg(ctx, a)

        ctx.write_uint(len(record.frames), 4)
        for f in record.frames:
            ctx.write_string(f.filename)
            ctx.write_uint(f.lineno, 4)
            ctx.write_string(f.name)
            ctx.write_string(f.line)

        link = record.link if record.linked is not None else LINK_NONE
        ctx.write_uint(link, 1)
        record = record.linked


def _read_record(ctx: ReadContext, max_depth: int) -> FailureRecord:
    levels = []
    while True:
        if len(levels) >= max_depth:
            raise DeserializationError(
                f"Failure chain deeper than max_cause_depth={max_depth}"
            )
        descriptor = TypeDescriptor(module=ctx.read_string(), qualname=ctx.read_string())
        message = ctx.read_string()

        args = None
        if ctx.read_bool():
            args = tuple(_read_arg(ctx) for _ in range(ctx.read_uint(4)))

        frames = []
        for _ in range(ctx.read_uint(4)):
            frames.append(StackFrame(
                filename=ctx.read_string(),
                lineno=ctx.read_uint(4),
                name=ctx.read_string(),
                line=ctx.read_string(),
            ))

        link = ctx.read_uint(1)
        if link not in _LINK_NAMES:
            raise DeserializationError(f"Unknown link kind: {link}")

        levels.append((descriptor, message, args, tuple(frames), link))
        if link == LINK_NONE:
            break

    record = None
    for descriptor, message, args, frames, link in reversed(levels):
        record = FailureRecord(
            type=descriptor,
            message=message,
            args=args,
            frames=frames,
            link=link,
            linked=record,
        )
    return record


def _write_arg(ctx: WriteContext, value: Any) -> None:
    if value is None:
        ctx.write_raw(b"N")
    elif isinstance(value, bool):
        ctx.write_raw(b"B")
        ctx.write_bool(value)
    elif isinstance(value, int):
        ctx.write_raw(b"I")
        ctx.write_int64(value)
    elif isinstance(value, float):
        ctx.write_raw(b"F")
        ctx.write_float64(value)
    elif isinstance(value, str):
        ctx.write_raw(b"S")
        ctx.write_string(value)
    elif isinstance(value, bytes):
        ctx.write_raw(b"Y")
        ctx.write_binary(value)
    elif isinstance(value, tuple):
        ctx.write_raw(b"T")
        ctx.write_uint(len(value), 4)
        for item in value:
            _write_arg(ctx, item)
    else:
        raise SerializationError(f"Unsupported failure arg type: {type(value).__name__}")


def _read_arg(ctx: ReadContext, depth: int = 0) -> Any:
    kind = ctx.read_exact(1)
    if kind == b"N":
        return None
    if kind == b"B":
        return ctx.read_bool()
    if kind == b"I":
        return ctx.read_int64()
    if kind == b"F":
        return ctx.read_float64()
    if kind == b"S":
        return ctx.read_string()
    if kind == b"Y":
        return ctx.read_binary()
    if kind == b"T":
        if depth >= _MAX_ARG_NESTING:
            raise DeserializationError(f"Failure args nested deeper than {_MAX_ARG_NESTING}")
        return tuple(_read_arg(ctx, depth + 1) for _ in range(ctx.read_uint(4)))
    raise DeserializationError(f"Unknown failure arg kind: {kind!r}")
