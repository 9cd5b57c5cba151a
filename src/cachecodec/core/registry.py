"""
Core Component: Parameter Registry

Frozen constants for the persisted-state wire format.
Every byte-level choice (endianness, length prefix width, frame tags,
chain depth limit) is defined here and nowhere else.

No environment lookups, no optionals.
"""


def param_registry() -> dict:
    """
    Returns a frozen mapping of all wire constants used by the codecs.

    Keys and values are JSON-serializable primitives or dicts.
    This registry is hashed into every receipt so a digest proves which
    wire constants produced it.

    Returns:
        dict: Frozen parameter mapping with exact keys and values.

    Raises:
        RegistryError: If any required key is missing (internal consistency check).
    """
    registry = {
        # Bumped whenever any constant below changes meaning
        "format_version": "1",
        "endianness": "BE",

        # Binary blocks: [length: uint32 BE][payload]
        "length_prefix_bytes": 4,
        "max_block_bytes": 2**32 - 1,

        "string_encoding": "utf-8",

        # Longest cause/context chain the exception wire format will follow
        "max_cause_depth": 32,

        "hash_algo": "BLAKE3",

        # Byte frame tags (ASCII 4-byte tags)
        "byte_frame_tags": {
            "FAILURE": "FLR1",
            "STATE": "CST1"
        }
    }

    required_keys = {
        "format_version", "endianness", "length_prefix_bytes",
        "max_block_bytes", "string_encoding", "max_cause_depth",
        "hash_algo", "byte_frame_tags"
    }

    actual_keys = set(registry.keys())
    if actual_keys != required_keys:
        missing = required_keys - actual_keys
        extra = actual_keys - required_keys
        raise RegistryError(
            f"param_registry() key mismatch. Missing: {missing}, Extra: {extra}"
        )

    return registry


def frame_tag(name: str) -> bytes:
    """Return the 4-byte ASCII frame tag registered under `name`."""
    tags = param_registry()["byte_frame_tags"]
    if name not in tags:
        raise RegistryError(f"Unknown frame tag: '{name}'")
    return tags[name].encode("ascii")


class RegistryError(Exception):
    """Raised when param_registry() has missing or unexpected keys."""
    pass
