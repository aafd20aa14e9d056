"""
Property access on template arguments.

Paths look like ``user.address.city`` or ``orders[0].id``.

- ``MetaObject`` reads and writes values on a live object, mapping-backed for
  ``Mapping`` values and attribute-backed otherwise. Missing properties read
  as ``None``.
- ``MetaClass`` answers type questions about a class without an instance
  (type hints, properties, class attributes). Used for parameter type inference.

Member visibility: dunder names are never reachable. Single-underscore names
are reachable only when private access is allowed (``ALLOW_PRIVATE_MEMBER_ACCESS``).
"""

from __future__ import annotations

import inspect
import types
import typing
from collections.abc import Mapping, MutableMapping, Sequence
from functools import lru_cache
from typing import Any

from dynsql.core.config import settings

_MISSING = object()


class PropertyTokenizer:
    """Split the first segment off a property path.

    ``orders[0].id`` -> name ``orders``, index ``0``, children ``id``.
    """

    __slots__ = ("name", "index", "indexed_name", "children")

    def __init__(self, path: str) -> None:
        head, dot, children = path.partition(".")
        self.indexed_name = head
        self.children = children if dot else None
        name, bracket, rest = head.partition("[")
        self.name = name
        self.index = rest[:-1] if bracket and rest.endswith("]") else None

    def has_next(self) -> bool:
        return self.children is not None

    def __repr__(self) -> str:
        return f"PropertyTokenizer(name={self.name!r}, index={self.index!r}, children={self.children!r})"


def is_readable_name(name: str, allow_private: bool) -> bool:
    if name.startswith("__"):
        return False
    if name.startswith("_"):
        return allow_private
    return True


def normalize_type(tp: Any) -> type:
    """Reduce a type hint to a plain class: ``Optional[X]`` -> ``X``, ``list[int]`` -> ``list``, ``Any`` -> ``object``."""
    origin = typing.get_origin(tp)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        return normalize_type(args[0]) if len(args) == 1 else object
    if origin is not None:
        return origin if isinstance(origin, type) else object
    if isinstance(tp, type):
        return tp
    return object


def _element_hint(hint: Any) -> Any:
    """Element type of an indexed collection hint (value type for mappings)."""
    args = typing.get_args(hint)
    if not args:
        return object
    origin = typing.get_origin(hint)
    if isinstance(origin, type) and issubclass(origin, Mapping) and len(args) == 2:
        return args[1]
    return args[0]


@lru_cache(maxsize=512)
def _type_hints(cls: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except (NameError, TypeError):
        hints: dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            hints.update(getattr(klass, "__annotations__", {}))
        return hints


def _read_index(collection: Any, index: str) -> Any:
    if collection is None:
        return None
    if isinstance(collection, Mapping):
        if index in collection:
            return collection[index]
        if index.lstrip("-").isdigit():
            return collection.get(int(index))
        return None
    if isinstance(collection, Sequence) and not isinstance(collection, (str, bytes)):
        try:
            return collection[int(index)]
        except (ValueError, IndexError):
            return None
    return None


class MetaObject:
    """Read/write access to properties of one object (mapping or plain object)."""

    __slots__ = ("_obj", "_allow_private")

    def __init__(self, obj: Any, *, allow_private: bool | None = None) -> None:
        self._obj = obj
        self._allow_private = (
            settings.ALLOW_PRIVATE_MEMBER_ACCESS if allow_private is None else allow_private
        )

    @classmethod
    def for_object(cls, obj: Any, *, allow_private: bool | None = None) -> MetaObject:
        if isinstance(obj, MetaObject):
            return obj
        return cls(obj, allow_private=allow_private)

    @property
    def original_object(self) -> Any:
        return self._obj

    def _read_segment(self, target: Any, tokenizer: PropertyTokenizer) -> tuple[bool, Any]:
        name = tokenizer.name
        if target is None:
            return False, None
        if not name:
            value = target
        elif isinstance(target, Mapping):
            if name not in target:
                return False, None
            value = target[name]
        else:
            if not is_readable_name(name, self._allow_private):
                return False, None
            value = getattr(target, name, _MISSING)
            if value is _MISSING:
                return False, None
        if tokenizer.index is not None:
            return True, _read_index(value, tokenizer.index)
        return True, value

    def _walk(self, path: str) -> tuple[bool, Any]:
        target = self._obj
        tokenizer = PropertyTokenizer(path)
        while True:
            found, value = self._read_segment(target, tokenizer)
            if not found or not tokenizer.has_next():
                return found, value
            target = value
            tokenizer = PropertyTokenizer(tokenizer.children)

    def has_property(self, path: str | None) -> bool:
        if not path:
            return False
        return self._walk(path)[0]

    def read_property(self, path: str) -> Any:
        found, value = self._walk(path)
        return value if found else None

    def write_property(self, path: str, value: Any) -> None:
        tokenizer = PropertyTokenizer(path)
        target = self._obj
        while tokenizer.has_next():
            found, child = self._read_segment(target, tokenizer)
            if not found or child is None:
                if not isinstance(target, MutableMapping):
                    raise AttributeError(f"Cannot set '{path}': '{tokenizer.indexed_name}' is missing")
                child = {}
                target[tokenizer.name] = child
            target = child
            tokenizer = PropertyTokenizer(tokenizer.children)
        if isinstance(target, MutableMapping):
            target[tokenizer.name] = value
        elif is_readable_name(tokenizer.name, self._allow_private):
            setattr(target, tokenizer.name, value)
        else:
            raise AttributeError(f"Cannot set non-public member '{tokenizer.name}'")

    def resolve_type(self, path: str) -> type:
        """Runtime type of the value at *path*; declared type when the value is None."""
        value = self.read_property(path)
        if value is not None:
            return type(value)
        if self._obj is not None and not isinstance(self._obj, Mapping):
            return MetaClass(type(self._obj), allow_private=self._allow_private).resolve_type(path)
        return object


class MetaClass:
    """Type-level property lookup for a class (no instance needed)."""

    __slots__ = ("_cls", "_allow_private")

    def __init__(self, cls: type, *, allow_private: bool | None = None) -> None:
        self._cls = cls
        self._allow_private = (
            settings.ALLOW_PRIVATE_MEMBER_ACCESS if allow_private is None else allow_private
        )

    def _property_hint(self, name: str) -> Any:
        if not is_readable_name(name, self._allow_private):
            return _MISSING
        hints = _type_hints(self._cls)
        if name in hints:
            return hints[name]
        attr = inspect.getattr_static(self._cls, name, _MISSING)
        if attr is _MISSING:
            return _MISSING
        if isinstance(attr, property):
            if attr.fget is None:
                return _MISSING
            try:
                return typing.get_type_hints(attr.fget).get("return", object)
            except (NameError, TypeError):
                return object
        if inspect.isfunction(attr) or isinstance(attr, (staticmethod, classmethod)):
            return _MISSING
        return type(attr) if attr is not None else object

    def _child(self, hint: Any, tokenizer: PropertyTokenizer) -> Any:
        if tokenizer.index is not None:
            return _element_hint(hint)
        return hint

    def has_property(self, path: str | None) -> bool:
        if not path:
            return False
        tokenizer = PropertyTokenizer(path)
        hint = self._property_hint(tokenizer.name)
        if hint is _MISSING:
            return False
        if tokenizer.has_next():
            child = normalize_type(self._child(hint, tokenizer))
            if child is object:
                return False
            return MetaClass(child, allow_private=self._allow_private).has_property(tokenizer.children)
        return True

    def resolve_type(self, path: str) -> type:
        tokenizer = PropertyTokenizer(path)
        hint = self._property_hint(tokenizer.name)
        if hint is _MISSING:
            return object
        hint = self._child(hint, tokenizer)
        if tokenizer.has_next():
            child = normalize_type(hint)
            if child is object:
                return object
            return MetaClass(child, allow_private=self._allow_private).resolve_type(tokenizer.children)
        return normalize_type(hint)
