"""
Core Component: Encode Receipts

A receipt records what an encode run produced (block lengths and BLAKE3
hashes, counts, type names) under a section label, stamped with the wire
constants that were active. Two runs over the same input must give the same
section_hash; assert_double_run_equal checks exactly that.

Payload values are JSON scalars other than float (str, int, bool, None),
nested in lists, tuples or str-keyed dicts.
"""

import json
from typing import Any, Callable

from .registry import param_registry
from .hashing import blake3_hash


_MISSING = "<missing>"


class Receipts:
    """Ordered key/value record for one section of an encode run."""

    def __init__(self, section: str):
        self.section = section
        self.payload: dict[str, Any] = {}

    def put(self, key: str, value: Any) -> None:
        """
        Raises:
            ReceiptError: Duplicate key, or a value that is not a receipt value.
        """
        if key in self.payload:
            raise ReceiptError(f"Duplicate key in receipts: '{key}'")
        _check_value(value, key)
        self.payload[key] = value

    def put_block(self, key: str, data: bytes) -> None:
        """Record an encoded block by its length and BLAKE3 hash."""
        self.put(key, block_summary(data))

    def digest(self) -> dict:
        """
        Section digest:
          section, format_version, param_registry_hash, payload,
          section_hash (BLAKE3 over the stable JSON of the other four)
        """
        registry = param_registry()
        body = {
            "section": self.section,
            "format_version": registry["format_version"],
            "param_registry_hash": blake3_hash(stable_json_bytes(registry)),
            "payload": dict(self.payload),
        }
        return {**body, "section_hash": blake3_hash(stable_json_bytes(body))}


def block_summary(data: bytes) -> dict:
    return {"length": len(data), "hash": blake3_hash(data)}


def assert_double_run_equal(build: Callable[[], Receipts]) -> None:
    """
    Build the receipts twice and require the same section_hash.

    Raises:
        DeterminismError: Naming the first payload key (sorted) that differs.
    """
    a = build().digest()
    b = build().digest()
    if a["section_hash"] == b["section_hash"]:
        return

    differing = None
    for key in sorted(set(a["payload"]) | set(b["payload"])):
        if a["payload"].get(key, _MISSING) != b["payload"].get(key, _MISSING):
            differing = key
            break
    raise DeterminismError(a, b, differing)


def stable_json_bytes(obj: Any) -> bytes:
    """Sorted keys, compact separators, raw UTF-8."""
    return json.dumps(
        obj, sort_keys=True, ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def _check_value(value: Any, path: str) -> None:
    if isinstance(value, float):
        raise ReceiptError(f"Floats forbidden in receipts (key: '{path}')")
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_value(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise ReceiptError(f"Non-string dict key {k!r} in receipts (key: '{path}')")
            _check_value(v, f"{path}.{k}")
        return
    raise ReceiptError(f"Invalid type in receipts: {type(value).__name__} (key: '{path}')")


class ReceiptError(Exception):
    """Raised when a receipt key or value is invalid."""
    pass


class DeterminismError(Exception):
    """Raised when two encode runs produce different section hashes."""

    def __init__(self, digest_a: dict, digest_b: dict, first_differing_key: str | None):
        self.section = digest_a["section"]
        self.first_differing_key = first_differing_key
        self.value_a = digest_a["payload"].get(first_differing_key, _MISSING)
        self.value_b = digest_b["payload"].get(first_differing_key, _MISSING)
        self.hash_a = digest_a["section_hash"]
        self.hash_b = digest_b["section_hash"]
        super().__init__(
            f"Double-run hash mismatch in section '{self.section}': "
            f"key '{first_differing_key}' gave {self.value_a!r} then {self.value_b!r}"
        )
