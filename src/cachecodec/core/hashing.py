"""
Core Component: BLAKE3 Hashing

Content hash for encoded blocks and receipts.
Same bytes in, same hex digest out.
"""

import blake3


def blake3_hash(data: bytes) -> str:
    """
    Return hex-encoded BLAKE3 digest of the byte stream.

    Args:
        data: Raw bytes to hash (an encoded block, a stable JSON receipt).

    Returns:
        str: Lowercase hexadecimal digest (64 characters for BLAKE3-256).

    Example:
        >>> blake3_hash(b"test")
        '4878ca0425c739fa427f7eda20fe845f6b2e46ba5fe2a14df5b1e32f50603215'
    """
    return blake3.blake3(bytes(data)).hexdigest()
