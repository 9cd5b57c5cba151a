"""
Value Dispatch & State Snapshot Tests

Tests:
  1. Built-in scalar codecs and MRO lookup
  2. Codec registration rules
  3. Failure capture in ValueCodecs (no partial bytes, warning logged)
  4. write_state / read_state with captured failures re-raised at use
  5. Snapshot format errors
"""

import io
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cachecodec import (
    FailureEnvelope,
    ValueCodecs,
    deferred,
    write_state,
    read_state,
)
from cachecodec.codecs import CodecRegistrationError, FAILURE_TAG
from cachecodec.core import (
    WriteContext,
    ReadContext,
    SerializationError,
    DeserializationError,
    TruncatedStreamError,
)
from cachecodec.serialization import ImportTypeResolver, PlaceholderFailure


class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y


class PointCodec:
    def encode(self, value, ctx):
        ctx.write_int64(value.x)
        ctx.write_int64(value.y)

    def decode(self, ctx):
        return Point(ctx.read_int64(), ctx.read_int64())


class HalfWrittenCodec:
    """Writes some bytes, then fails."""

    def encode(self, value, ctx):
        ctx.write_raw(b"partial")
        raise ValueError("half written")

    def decode(self, ctx):
        raise AssertionError("never written")


class Label(str):
    pass


class Unprintable(Exception):
    def __str__(self):
        raise RuntimeError("cannot render")


def _write_values(codecs, values) -> bytes:
    buf = io.BytesIO()
    ctx = WriteContext(buf)
    for v in values:
        codecs.write_value(v, ctx)
    return buf.getvalue()


def _read_values(codecs, data, count, resolver=None):
    ctx = ReadContext(io.BytesIO(data), resolver)
    return [codecs.read_value(ctx) for _ in range(count)]


def _snapshot_bytes(entries, codecs=None):
    buf = io.BytesIO()
    failures = write_state(entries, buf, codecs)
    return buf.getvalue(), failures


# ═══════════════════════════════════════════════════════════════════════
# Test 1: Built-in codecs
# ═══════════════════════════════════════════════════════════════════════

def test_builtin_scalars_round_trip():
    codecs = ValueCodecs()
    values = [None, True, False, 0, -12345, 2**63 - 1, 0.25, "", "state", b"\x00\x01"]

    decoded = _read_values(codecs, _write_values(codecs, values), len(values))

    assert decoded == values
    assert type(decoded[1]) is bool
    assert type(decoded[3]) is int


def test_subclass_uses_base_codec():
    codecs = ValueCodecs()
    decoded = _read_values(codecs, _write_values(codecs, [Label("x")]), 1)

    assert decoded == ["x"]
    assert type(decoded[0]) is str


def test_value_tag_layout():
    data = _write_values(ValueCodecs(), [None, "a"])
    assert data == b"\x01" + b"\x05\x00\x00\x00\x01a"


# ═══════════════════════════════════════════════════════════════════════
# Test 2: Registration
# ═══════════════════════════════════════════════════════════════════════

def test_register_custom_codec():
    codecs = ValueCodecs()
    codecs.register(20, Point, PointCodec())

    [p] = _read_values(codecs, _write_values(codecs, [Point(3, -4)]), 1)

    assert isinstance(p, Point)
    assert (p.x, p.y) == (3, -4)


def test_registration_conflicts():
    codecs = ValueCodecs()
    codecs.register(20, Point, PointCodec())

    for tag, cls in [(20, Label), (21, Point), (FAILURE_TAG, Label), (256, Label), (22, FailureEnvelope)]:
        try:
            codecs.register(tag, cls, PointCodec())
            assert False, f"Should have raised CodecRegistrationError for tag={tag}"
        except CodecRegistrationError:
            pass


def test_without_builtins_everything_is_captured():
    codecs = ValueCodecs(builtins=False)
    [v] = _read_values(codecs, _write_values(codecs, ["x"]), 1)

    assert isinstance(v, FailureEnvelope)
    assert isinstance(v.failure, PlaceholderFailure)
    assert "No codec registered for str" in str(v.failure)


def test_unknown_tag_on_read():
    try:
        ValueCodecs().read_value(ReadContext(io.BytesIO(b"\x63")))
        assert False, "Should have raised DeserializationError"
    except DeserializationError as e:
        assert "99" in str(e)


# ═══════════════════════════════════════════════════════════════════════
# Test 3: Failure capture
# ═══════════════════════════════════════════════════════════════════════

def test_failing_codec_leaves_no_partial_bytes(caplog):
    codecs = ValueCodecs()
    codecs.register(30, Point, HalfWrittenCodec())

    with caplog.at_level(logging.WARNING, logger="cachecodec.codecs.values"):
        data = _write_values(codecs, [Point(1, 2), "after"])

    assert b"partial" not in data
    assert data[0] == FAILURE_TAG
    assert "capturing ValueError while encoding Point" in caplog.text

    envelope, after = _read_values(codecs, data, 2)
    assert isinstance(envelope, FailureEnvelope)
    assert type(envelope.failure) is ValueError
    assert str(envelope.failure) == "half written"
    assert after == "after"


def test_explicit_envelope_written_as_failure():
    codecs = ValueCodecs()
    buf = io.BytesIO()
    captured = codecs.write_value(FailureEnvelope(KeyError("k")), WriteContext(buf))

    assert captured is True
    [v] = _read_values(codecs, buf.getvalue(), 1)
    assert type(v.failure) is KeyError


def test_envelope_codec_failure_propagates():
    codecs = ValueCodecs()
    buf = io.BytesIO()
    ctx = WriteContext(buf)

    try:
        codecs.write_value(FailureEnvelope(Unprintable()), ctx)
        assert False, "Should have raised SerializationError"
    except SerializationError:
        pass
    assert buf.getvalue() == b""


# ═══════════════════════════════════════════════════════════════════════
# Test 4: State snapshot
# ═══════════════════════════════════════════════════════════════════════

def _failing_producer():
    return 1 // 0


def test_snapshot_commits_despite_failures():
    entries = {
        "task.outputs": "build/libs/app.jar",
        "task.upToDate": True,
        "task.inputsHash": deferred(lambda: 1234),
        "task.broken": deferred(_failing_producer),
        "task.unsupported": object(),
        "task.huge": 2**70,
    }
    data, failures = _snapshot_bytes(entries)
    assert failures == 3
    assert data[:4] == b"CST1"

    snapshot = read_state(io.BytesIO(data))

    assert len(snapshot) == 6
    assert snapshot.keys() == list(entries)
    assert "task.broken" in snapshot
    assert snapshot.get("task.outputs") == "build/libs/app.jar"
    assert snapshot.get("task.upToDate") is True
    assert snapshot.get("task.inputsHash") == 1234
    assert set(snapshot.failures()) == {"task.broken", "task.unsupported", "task.huge"}


def test_snapshot_reraises_at_use():
    data, _ = _snapshot_bytes({"task.broken": deferred(_failing_producer)})
    snapshot = read_state(io.BytesIO(data))

    raw = snapshot.raw("task.broken")
    assert isinstance(raw, FailureEnvelope)

    try:
        snapshot.get("task.broken")
        assert False, "get() should re-raise the captured failure"
    except ZeroDivisionError as e:
        assert "division" in str(e)
        assert e is raw.failure


def test_snapshot_resolver_rebuilds_library_errors():
    data, _ = _snapshot_bytes({"task.unsupported": object()})

    default = read_state(io.BytesIO(data)).raw("task.unsupported")
    assert isinstance(default.failure, PlaceholderFailure)
    assert default.failure.original_type.qualname == "SerializationError"

    resolved = read_state(io.BytesIO(data), resolver=ImportTypeResolver(["cachecodec"]))
    failure = resolved.raw("task.unsupported").failure
    assert isinstance(failure, SerializationError)
    assert "object" in str(failure)


def test_snapshot_with_custom_codecs():
    codecs = ValueCodecs()
    codecs.register(20, Point, PointCodec())

    data, failures = _snapshot_bytes({"origin": Point(0, 0)}, codecs)
    assert failures == 0

    assert read_state(io.BytesIO(data), codecs).get("origin").x == 0


def test_snapshot_is_deterministic():
    entries = {"a": 1, "b": deferred(_failing_producer), "c": "x"}
    first, _ = _snapshot_bytes(entries)
    second, _ = _snapshot_bytes(entries)
    assert first == second


def test_tuple_key_error_reraised_with_same_message():
    data, failures = _snapshot_bytes({"lookup": deferred(lambda: {}[("x", 2)])})
    assert failures == 1

    try:
        read_state(io.BytesIO(data)).get("lookup")
        assert False, "get() should re-raise the captured KeyError"
    except KeyError as e:
        assert str(e) == "('x', 2)"
        assert e.args == (("x", 2),)


def test_empty_snapshot():
    data, failures = _snapshot_bytes({})
    assert failures == 0
    snapshot = read_state(io.BytesIO(data))
    assert len(snapshot) == 0
    assert snapshot.failures() == {}


def test_unserializable_failure_leaves_no_dangling_key():
    buf = io.BytesIO()
    try:
        write_state({"a": 1, "b": FailureEnvelope(Unprintable())}, buf)
        assert False, "Should have raised SerializationError"
    except SerializationError:
        pass

    header = b"CST1" + b"\x00\x00\x00\x011" + b"\x00\x00\x00\x02"
    entry_a = b"\x00\x00\x00\x01a" + b"\x03" + (1).to_bytes(8, "big", signed=True)
    assert buf.getvalue() == header + entry_a


# ═══════════════════════════════════════════════════════════════════════
# Test 5: Snapshot format errors
# ═══════════════════════════════════════════════════════════════════════

def test_missing_key_raises_key_error():
    data, _ = _snapshot_bytes({"a": 1})
    try:
        read_state(io.BytesIO(data)).get("b")
        assert False, "Should have raised KeyError"
    except KeyError:
        pass


def test_version_mismatch():
    buf = io.BytesIO()
    ctx = WriteContext(buf)
    ctx.write_tag(b"CST1")
    ctx.write_string("999")
    ctx.write_uint(0, 4)

    try:
        read_state(io.BytesIO(buf.getvalue()))
        assert False, "Should have raised DeserializationError"
    except DeserializationError as e:
        assert "999" in str(e)


def test_duplicate_key():
    buf = io.BytesIO()
    ctx = WriteContext(buf)
    ctx.write_tag(b"CST1")
    ctx.write_string("1")
    ctx.write_uint(2, 4)
    for _ in range(2):
        ctx.write_string("dup")
        ValueCodecs().write_value(None, ctx)

    try:
        read_state(io.BytesIO(buf.getvalue()))
        assert False, "Should have raised DeserializationError"
    except DeserializationError as e:
        assert "dup" in str(e)


def test_truncated_snapshot():
    data, _ = _snapshot_bytes({"a": "value", "b": deferred(_failing_producer)})
    try:
        read_state(io.BytesIO(data[:-5]))
        assert False, "Should have raised TruncatedStreamError"
    except TruncatedStreamError:
        pass
