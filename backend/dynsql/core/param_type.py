"""
Parameter type handlers.

A type handler converts a resolved parameter value into the value handed to
the database driver. Handlers are looked up by Python type (exact class, then
MRO) or by name (``type_handler=`` placeholder attribute).

Also defines the database type vocabulary (``JdbcType``), parameter direction
(``ParameterMode``) and the ``ResultCursor`` marker for cursor parameters.
"""

from __future__ import annotations

import importlib
import json
import threading
import uuid
from collections.abc import Callable, Mapping
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, NamedTuple

from dynsql.core.errors import BuilderError, ParamTypeError


class JdbcType(str, Enum):
    ARRAY = "ARRAY"
    BIGINT = "BIGINT"
    BINARY = "BINARY"
    BIT = "BIT"
    BLOB = "BLOB"
    BOOLEAN = "BOOLEAN"
    CHAR = "CHAR"
    CLOB = "CLOB"
    CURSOR = "CURSOR"
    DATE = "DATE"
    DECIMAL = "DECIMAL"
    DOUBLE = "DOUBLE"
    FLOAT = "FLOAT"
    INTEGER = "INTEGER"
    JSON = "JSON"
    LONGVARCHAR = "LONGVARCHAR"
    NULL = "NULL"
    NUMERIC = "NUMERIC"
    NVARCHAR = "NVARCHAR"
    OTHER = "OTHER"
    REAL = "REAL"
    SMALLINT = "SMALLINT"
    STRUCT = "STRUCT"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    TIMESTAMP_WITH_TIMEZONE = "TIMESTAMP_WITH_TIMEZONE"
    TINYINT = "TINYINT"
    UNDEFINED = "UNDEFINED"
    VARBINARY = "VARBINARY"
    VARCHAR = "VARCHAR"


class ParameterMode(str, Enum):
    IN = "IN"
    OUT = "OUT"
    INOUT = "INOUT"


class ResultCursor:
    """Marker type for cursor (result set) parameters."""


def _coerce_string(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _coerce_number(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    s = str(value).strip()
    if not s:
        raise ParamTypeError("Value is empty")
    try:
        return float(s)
    except ValueError as e:
        raise ParamTypeError(f"Invalid number: {s!r}") from e


def _coerce_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise ParamTypeError("Boolean not allowed for integer")
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        if value != int(value):
            raise ParamTypeError(f"Expected integer, got: {value}")
        return int(value)
    s = str(value).strip()
    if not s:
        raise ParamTypeError("Value is empty")
    try:
        x = Decimal(s)
    except InvalidOperation as e:
        raise ParamTypeError(f"Invalid integer: {s!r}") from e
    if x != x.to_integral_value():
        raise ParamTypeError(f"Expected integer, got: {s!r}")
    return int(x)


def _coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ParamTypeError("Boolean not allowed for decimal")
    try:
        # str() keeps floats at their printed precision
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ParamTypeError(f"Invalid decimal: {value!r}") from e


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 0:
            return False
        if value == 1:
            return True
        raise ParamTypeError(f"Expected boolean, got integer: {value}")
    s = str(value).strip().lower()
    if s in ("true", "1", "yes"):
        return True
    if s in ("false", "0", "no"):
        return False
    raise ParamTypeError(f"Expected boolean (true/false, 1/0, yes/no), got: {value!r}")


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as e:
        raise ParamTypeError(f"Invalid date: {value!r}") from e


def _coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ParamTypeError(f"Invalid datetime: {value!r}") from e


def _coerce_time(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ParamTypeError(f"Invalid time: {value!r}") from e


def _coerce_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode()
    raise ParamTypeError(f"Expected bytes, got: {type(value).__name__}")


def _coerce_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError as e:
        raise ParamTypeError(f"Invalid UUID: {value!r}") from e


def _coerce_array(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ParamTypeError("Value is empty")
        if s.startswith("["):
            try:
                out = json.loads(s)
            except json.JSONDecodeError as e:
                raise ParamTypeError(f"Invalid JSON array: {e}") from e
            if not isinstance(out, list):
                raise ParamTypeError("JSON is not an array")
            return out
        return [x.strip() for x in s.split(",") if x.strip()]
    raise ParamTypeError(f"Expected array or JSON array string, got: {type(value).__name__}")


def _coerce_object(value: Any) -> dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ParamTypeError("Value is empty")
        try:
            out = json.loads(s)
        except json.JSONDecodeError as e:
            raise ParamTypeError(f"Invalid JSON object: {e}") from e
        if not isinstance(out, dict):
            raise ParamTypeError("JSON is not an object")
        return out
    raise ParamTypeError(f"Expected object or JSON object string, got: {type(value).__name__}")


def _passthrough(value: Any) -> Any:
    return value


class TypeHandler(NamedTuple):
    name: str
    python_type: type
    convert: Callable[[Any], Any]

    def to_db(self, value: Any) -> Any:
        """Convert *value* for the driver; ``None`` always passes through."""
        if value is None:
            return None
        return self.convert(value)


STRING_HANDLER = TypeHandler("string", str, _coerce_string)
INTEGER_HANDLER = TypeHandler("integer", int, _coerce_integer)
NUMBER_HANDLER = TypeHandler("number", float, _coerce_number)
DECIMAL_HANDLER = TypeHandler("decimal", Decimal, _coerce_decimal)
BOOLEAN_HANDLER = TypeHandler("boolean", bool, _coerce_boolean)
DATE_HANDLER = TypeHandler("date", date, _coerce_date)
DATETIME_HANDLER = TypeHandler("datetime", datetime, _coerce_datetime)
TIME_HANDLER = TypeHandler("time", time, _coerce_time)
BYTES_HANDLER = TypeHandler("bytes", bytes, _coerce_bytes)
UUID_HANDLER = TypeHandler("uuid", uuid.UUID, _coerce_uuid)
ARRAY_HANDLER = TypeHandler("array", list, _coerce_array)
OBJECT_HANDLER = TypeHandler("object", dict, _coerce_object)
UNKNOWN_HANDLER = TypeHandler("unknown", object, _passthrough)

# Names usable in ``type=`` placeholder attributes.
TYPE_ALIASES: dict[str, type] = {
    "str": str,
    "string": str,
    "int": int,
    "integer": int,
    "long": int,
    "float": float,
    "double": float,
    "number": float,
    "decimal": Decimal,
    "bigdecimal": Decimal,
    "bool": bool,
    "boolean": bool,
    "date": date,
    "datetime": datetime,
    "timestamp": datetime,
    "time": time,
    "bytes": bytes,
    "uuid": uuid.UUID,
    "list": list,
    "array": list,
    "dict": dict,
    "map": dict,
    "object": object,
    "cursor": ResultCursor,
}

SIMPLE_TYPES: frozenset[type] = frozenset(
    {str, int, float, bool, Decimal, bytes, date, datetime, time, uuid.UUID, type(None)}
)


def is_simple_type(tp: type) -> bool:
    """True for scalar types that a ``${value}`` substitution can stand for."""
    return tp in SIMPLE_TYPES or (isinstance(tp, type) and issubclass(tp, Enum))


def _import_dotted(path: str) -> Any:
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise BuilderError(f"Cannot resolve '{path}': not a dotted import path")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise BuilderError(f"Cannot resolve '{path}': {e}") from e


def resolve_alias(alias: str) -> type:
    """Python type for a ``type=`` attribute: built-in alias or dotted import path."""
    tp = TYPE_ALIASES.get(alias.strip().lower())
    if tp is not None:
        return tp
    resolved = _import_dotted(alias.strip())
    if not isinstance(resolved, type):
        raise BuilderError(f"'{alias}' does not name a type")
    return resolved


class TypeHandlerRegistry:
    """Handlers keyed by Python type and by name. Safe to share across threads."""

    def __init__(self, *, register_defaults: bool = True) -> None:
        self._by_type: dict[type, TypeHandler] = {}
        # Containers convert when declared but never stand in for a whole argument.
        self._containers: dict[type, TypeHandler] = {}
        self._by_name: dict[str, TypeHandler] = {}
        self._lock = threading.Lock()
        if register_defaults:
            for handler in (
                STRING_HANDLER,
                INTEGER_HANDLER,
                NUMBER_HANDLER,
                DECIMAL_HANDLER,
                BOOLEAN_HANDLER,
                DATE_HANDLER,
                DATETIME_HANDLER,
                TIME_HANDLER,
                BYTES_HANDLER,
                UUID_HANDLER,
            ):
                self.register(handler)
            self.register(BYTES_HANDLER, python_type=bytearray)
            self.register(ARRAY_HANDLER, container=True)
            self.register(ARRAY_HANDLER, python_type=tuple, container=True)
            self.register(OBJECT_HANDLER, container=True)
            self._by_name.setdefault(UNKNOWN_HANDLER.name, UNKNOWN_HANDLER)

    def register(
        self, handler: TypeHandler, *, python_type: type | None = None, container: bool = False
    ) -> None:
        with self._lock:
            target = self._containers if container else self._by_type
            target[python_type or handler.python_type] = handler
            self._by_name.setdefault(handler.name, handler)

    def has_type_handler(self, tp: type | None) -> bool:
        """True when *tp* converts as a whole value (``object`` itself does not count)."""
        if tp is None or tp is object:
            return False
        return self._lookup(tp) is not None

    def _lookup(self, tp: type) -> TypeHandler | None:
        handler = self._by_type.get(tp)
        if handler is not None:
            return handler
        if not isinstance(tp, type):
            return None
        if issubclass(tp, Enum):
            return STRING_HANDLER
        for base in tp.__mro__[1:]:
            if base is object:
                break
            handler = self._by_type.get(base)
            if handler is not None:
                return handler
        return None

    def get_type_handler(self, tp: type, jdbc_type: JdbcType | None = None) -> TypeHandler | None:
        if tp is object:
            return UNKNOWN_HANDLER
        handler = self._lookup(tp) or self._containers.get(tp)
        if handler is None and isinstance(tp, type):
            if issubclass(tp, Mapping):
                handler = OBJECT_HANDLER
            elif issubclass(tp, (list, tuple, set, frozenset)):
                handler = ARRAY_HANDLER
        if handler is None and jdbc_type is JdbcType.OTHER:
            return UNKNOWN_HANDLER
        return handler

    def resolve_handler(self, alias: str) -> TypeHandler:
        """Handler for a ``type_handler=`` attribute: registered name or dotted path."""
        handler = self._by_name.get(alias.strip().lower())
        if handler is not None:
            return handler
        resolved = _import_dotted(alias.strip())
        if isinstance(resolved, TypeHandler):
            return resolved
        if isinstance(resolved, type) and issubclass(resolved, TypeHandler):
            raise BuilderError(f"'{alias}' must name a TypeHandler instance, not the class")
        if callable(resolved):
            return TypeHandler(alias, object, resolved)
        raise BuilderError(f"'{alias}' is not a type handler")


DEFAULT_TYPE_HANDLERS = TypeHandlerRegistry()
