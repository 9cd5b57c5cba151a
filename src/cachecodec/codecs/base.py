"""
Codec capability shared by every value codec.
"""

from typing import Any, Protocol

from ..core.bytesio import WriteContext, ReadContext


class Codec(Protocol):
    """
    Paired encode/decode transform between one value type and bytes.

    encode appends to ctx and never mutates the value.
    decode consumes exactly what encode wrote.
    """

    def encode(self, value: Any, ctx: WriteContext) -> None:
        ...

    def decode(self, ctx: ReadContext) -> Any:
        ...
