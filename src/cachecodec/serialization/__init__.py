"""
Failure serialization: exception wire format and type resolution.
"""

from .types import (
    TypeDescriptor,
    TypeResolver,
    BuiltinTypeResolver,
    RegistryTypeResolver,
    ImportTypeResolver,
    PlaceholderFailure
)
from .exceptions import (
    StackFrame,
    FailureRecord,
    serialize,
    deserialize,
    restored_frames
)

__all__ = [
    # Types
    "TypeDescriptor",
    "TypeResolver",
    "BuiltinTypeResolver",
    "RegistryTypeResolver",
    "ImportTypeResolver",
    "PlaceholderFailure",

    # Wire format
    "StackFrame",
    "FailureRecord",
    "serialize",
    "deserialize",
    "restored_frames",
]
