"""
Failure Envelope & Failure-Capturing Codec

A FailureEnvelope stands in for a value that could not be produced or
encoded. The codec writes the captured failure as one length-prefixed block:

  [length: uint32 BE][payload: FLR1 exception record, length bytes]

No header, version tag or checksum of its own; the payload format belongs
to serialization.exceptions and the block framing lets any reader skip it.

If the failure itself cannot be serialized the SerializationError
propagates. It is never captured into another envelope, so failures of
failures cannot recurse.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Iterable

from ..core.bytesio import WriteContext, ReadContext, DeserializationError
from ..core.receipts import Receipts, block_summary
from ..serialization import exceptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FailureEnvelope:
    """
    A value slot whose content is unavailable because producing it failed.

    Holds exactly one captured failure. Nothing here resolves, suppresses or
    retries it; the consumer decides, typically via rethrow() at use time.
    """
    failure: BaseException

    def __post_init__(self) -> None:
        if isinstance(self.failure, FailureEnvelope):
            raise TypeError("FailureEnvelope cannot wrap another FailureEnvelope")
        if not isinstance(self.failure, BaseException):
            raise TypeError(
                f"FailureEnvelope requires an exception, got {type(self.failure).__name__}"
            )

    def rethrow(self):
        """Raise the captured failure."""
        raise self.failure

    def __repr__(self) -> str:
        return f"FailureEnvelope({self.failure!r})"


class FailureEnvelopeCodec:
    """Encodes a FailureEnvelope as one self-delimiting binary block."""

    def encode(self, value: FailureEnvelope, ctx: WriteContext) -> None:
        outstream = io.BytesIO()
        exceptions.serialize(value.failure, outstream)
        payload = outstream.getvalue()
        ctx.write_binary(payload)
        logger.debug(
            "encoded %s failure block (%d bytes)",
            type(value.failure).__qualname__, len(payload)
        )

    def decode(self, ctx: ReadContext) -> FailureEnvelope:
        """
        Read one block and rebuild the envelope with ctx.resolver.

        Raises:
            DeserializationError: Truncated block, or payload that is not
                exactly one well-formed failure record.
        """
        payload = ctx.read_binary()
        instream = io.BytesIO(payload)
        failure = exceptions.deserialize(instream, ctx.resolver)
        if instream.tell() != len(payload):
            raise DeserializationError(
                f"Failure block has {len(payload) - instream.tell()} trailing bytes"
            )
        logger.debug(
            "decoded %s failure block (%d bytes)",
            type(failure).__qualname__, len(payload)
        )
        return FailureEnvelope(failure)


FAILURE_ENVELOPE_CODEC = FailureEnvelopeCodec()


def failure_receipts(label: str, envelopes: Iterable[FailureEnvelope]) -> Receipts:
    """
    Receipt of the encoded blocks for `envelopes`, in order.

    Payload:
      - "count": number of envelopes
      - "blocks": list of {"type", "length", "hash"} per encoded block,
        where length includes the length prefix
    """
    receipts = Receipts(label)
    blocks = []
    for envelope in envelopes:
        buf = io.BytesIO()
        FAILURE_ENVELOPE_CODEC.encode(envelope, WriteContext(buf))
        blocks.append({
            "type": type(envelope.failure).__qualname__,
            **block_summary(buf.getvalue()),
        })
    receipts.put("count", len(blocks))
    receipts.put("blocks", blocks)
    return receipts
