"""
Failure-capturing codecs for a persisted build-state cache.

Values that cannot be produced or encoded are stored as failure envelopes
and re-raised when read back, instead of aborting the whole snapshot.
"""

__version__ = "0.1.0"

from .codecs import (
    FailureEnvelope,
    FailureEnvelopeCodec,
    FAILURE_ENVELOPE_CODEC,
    ValueCodecs
)
from .state import (
    deferred,
    write_state,
    read_state,
    StateSnapshot
)

__all__ = [
    "FailureEnvelope",
    "FailureEnvelopeCodec",
    "FAILURE_ENVELOPE_CODEC",
    "ValueCodecs",
    "deferred",
    "write_state",
    "read_state",
    "StateSnapshot",
]
