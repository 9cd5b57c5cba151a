"""
Core foundation: wire constants, hashing, stream contexts, receipts.
"""

from .registry import param_registry, frame_tag, RegistryError
from .hashing import blake3_hash
from .bytesio import (
    WriteContext,
    ReadContext,
    SerializationError,
    DeserializationError,
    TruncatedStreamError
)
from .receipts import (
    Receipts,
    block_summary,
    assert_double_run_equal,
    ReceiptError,
    DeterminismError
)

__all__ = [
    # Registry
    "param_registry",
    "frame_tag",
    "RegistryError",

    # Hashing
    "blake3_hash",

    # Stream contexts
    "WriteContext",
    "ReadContext",
    "SerializationError",
    "DeserializationError",
    "TruncatedStreamError",

    # Receipts
    "Receipts",
    "block_summary",
    "assert_double_run_equal",
    "ReceiptError",
    "DeterminismError",
]
