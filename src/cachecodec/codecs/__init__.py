"""
Codecs: failure envelope codec and tagged value dispatch.
"""

from .base import Codec
from .failure import (
    FailureEnvelope,
    FailureEnvelopeCodec,
    FAILURE_ENVELOPE_CODEC,
    failure_receipts
)
from .values import (
    ValueCodecs,
    CodecRegistrationError,
    FAILURE_TAG
)

__all__ = [
    "Codec",

    # Failure envelope
    "FailureEnvelope",
    "FailureEnvelopeCodec",
    "FAILURE_ENVELOPE_CODEC",
    "failure_receipts",

    # Dispatch
    "ValueCodecs",
    "CodecRegistrationError",
    "FAILURE_TAG",
]
