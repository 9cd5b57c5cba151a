"""
Type resolution for decoded failures.

A serialized failure carries only a type descriptor (module + qualname).
Turning that back into a class is the caller's decision: the decoder asks a
TypeResolver and falls back to PlaceholderFailure when it gets None.

Resolvers:
  - BuiltinTypeResolver: exception classes from `builtins` only
  - RegistryTypeResolver: explicit allow-list, then a parent resolver
  - ImportTypeResolver: imports modules under allowed prefixes
"""

from __future__ import annotations

import builtins
import importlib
import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeDescriptor:
    """Serialized identity of an exception class."""
    module: str
    qualname: str

    @classmethod
    def of(cls, exc_type: type) -> "TypeDescriptor":
        return cls(module=exc_type.__module__, qualname=exc_type.__qualname__)

    def __str__(self) -> str:
        if self.module == "builtins":
            return self.qualname
        return f"{self.module}.{self.qualname}"


class TypeResolver(Protocol):
    def resolve(self, descriptor: TypeDescriptor) -> type[BaseException] | None:
        ...


def _as_exception_type(obj: object) -> type[BaseException] | None:
    if isinstance(obj, type) and issubclass(obj, BaseException):
        return obj
    return None


class BuiltinTypeResolver:
    """Resolves ValueError, OSError, KeyError and the rest of `builtins`."""

    def resolve(self, descriptor: TypeDescriptor) -> type[BaseException] | None:
        if descriptor.module != "builtins" or "." in descriptor.qualname:
            return None
        return _as_exception_type(getattr(builtins, descriptor.qualname, None))


class RegistryTypeResolver:
    """
    Resolves an explicit set of exception classes, then defers to `parent`.

    Args:
        types: Exception classes known up front.
        parent: Fallback resolver (builtins by default, None for a closed set).
    """

    def __init__(
        self,
        types: Iterable[type[BaseException]] = (),
        parent: TypeResolver | None = BuiltinTypeResolver(),
    ):
        self._types: dict[TypeDescriptor, type[BaseException]] = {}
        self.parent = parent
        for t in types:
            self.register(t)

    def register(self, exc_type: type[BaseException]) -> type[BaseException]:
        if _as_exception_type(exc_type) is None:
            raise TypeError(f"Not an exception class: {exc_type!r}")
        self._types[TypeDescriptor.of(exc_type)] = exc_type
        return exc_type

    def resolve(self, descriptor: TypeDescriptor) -> type[BaseException] | None:
        found = self._types.get(descriptor)
        if found is not None:
            return found
        if self.parent is not None:
            return self.parent.resolve(descriptor)
        return None


class ImportTypeResolver:
    """
    Resolves by importing the descriptor's module, restricted to `allowed_modules`.

    A module is allowed when it equals one of the prefixes or sits below one
    ("myproj" allows "myproj.errors"). Builtins are always resolvable.
    """

    def __init__(self, allowed_modules: Iterable[str]):
        self.allowed_modules = tuple(allowed_modules)
        self._builtins = BuiltinTypeResolver()

    def _allowed(self, module: str) -> bool:
        return any(
            module == prefix or module.startswith(prefix + ".")
            for prefix in self.allowed_modules
        )

    def resolve(self, descriptor: TypeDescriptor) -> type[BaseException] | None:
        found = self._builtins.resolve(descriptor)
        if found is not None:
            return found
        if not self._allowed(descriptor.module):
            return None

        try:
            obj = importlib.import_module(descriptor.module)
        except ImportError:
            logger.debug("cannot import %s for failure type %s", descriptor.module, descriptor)
            return None

        for part in descriptor.qualname.split("."):
            obj = getattr(obj, part, None)
            if obj is None:
                return None
        return _as_exception_type(obj)


class PlaceholderFailure(Exception):
    """
    Stand-in for a decoded failure whose type could not be resolved.

    str() gives the original message; `original_type` keeps the descriptor so
    re-encoding writes the original type, not this one.
    """

    def __init__(self, original_type: TypeDescriptor, message: str):
        super().__init__(message)
        self.original_type = original_type
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"PlaceholderFailure({str(self.original_type)!r}, {self.message!r})"
