"""
Bound statement: what a SQL template evaluation hands to the execution layer.

``sql`` uses ``?`` positional markers; ``parameter_mappings`` describes them
left to right. ``additional_parameters`` is the snapshot of the bindings made
while rendering (loop variables, ``bind`` values, ...) and is consulted before
the argument object when a mapping's property is resolved.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, InstanceOf, model_validator

from dynsql.core.errors import ParamTypeError
from dynsql.core.meta import MetaObject, PropertyTokenizer
from dynsql.core.param_type import (
    DEFAULT_TYPE_HANDLERS,
    UNKNOWN_HANDLER,
    JdbcType,
    ParameterMode,
    ResultCursor,
    TypeHandler,
    TypeHandlerRegistry,
)


class ParameterMapping(BaseModel):
    """One ``#{...}`` occurrence, in positional order."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    property: str | None = None
    python_type: type[Any] = object
    jdbc_type: JdbcType | None = None
    mode: ParameterMode = ParameterMode.IN
    numeric_scale: int | None = None
    result_map_id: str | None = None
    type_handler: InstanceOf[TypeHandler] | None = None
    jdbc_type_name: str | None = None
    expression: str | None = None

    @model_validator(mode="after")
    def check_type_handler(self) -> "ParameterMapping":
        if self.python_type is ResultCursor:
            if self.result_map_id is None:
                raise ValueError(
                    f"Missing result_map in property '{self.property}'. "
                    "Cursor parameters require a result_map."
                )
        elif self.type_handler is None:
            raise ValueError(
                f"Type handler was None on parameter mapping for property '{self.property}'. "
                f"It was either not specified and/or could not be found for the type "
                f"({self.python_type.__name__}) : db_type ({self.jdbc_type}) combination."
            )
        return self


class BoundStatement:
    """Final SQL, positional parameter mappings and the extra bindings of one evaluation."""

    __slots__ = (
        "sql",
        "parameter_mappings",
        "parameter_object",
        "additional_parameters",
        "_meta_parameters",
        "_type_handlers",
    )

    def __init__(
        self,
        sql: str,
        parameter_mappings: Sequence[ParameterMapping],
        parameter_object: Any = None,
        additional_parameters: dict[str, Any] | None = None,
        *,
        type_handlers: TypeHandlerRegistry | None = None,
    ) -> None:
        self.sql = sql
        self.parameter_mappings = tuple(parameter_mappings)
        self.parameter_object = parameter_object
        self.additional_parameters: dict[str, Any] = dict(additional_parameters or {})
        self._meta_parameters = MetaObject.for_object(self.additional_parameters, allow_private=True)
        self._type_handlers = type_handlers or DEFAULT_TYPE_HANDLERS

    def has_additional_parameter(self, name: str) -> bool:
        return PropertyTokenizer(name).name in self.additional_parameters

    def get_additional_parameter(self, name: str) -> Any:
        return self._meta_parameters.read_property(name)

    def set_additional_parameter(self, name: str, value: Any) -> None:
        self._meta_parameters.write_property(name, value)

    def resolve_value(self, mapping: ParameterMapping) -> Any:
        """Value for *mapping*: extra bindings first, then the argument object."""
        name = mapping.property
        if name is None:
            return None
        if self.has_additional_parameter(name):
            return self.get_additional_parameter(name)
        if self.parameter_object is None:
            return None
        if self._type_handlers.has_type_handler(type(self.parameter_object)):
            return self.parameter_object
        return MetaObject.for_object(self.parameter_object).read_property(name)

    def _handler_for(self, mapping: ParameterMapping, value: Any) -> TypeHandler | None:
        handler = mapping.type_handler
        if handler is None or handler is UNKNOWN_HANDLER:
            if value is None:
                return None
            return self._type_handlers.get_type_handler(type(value))
        return handler

    def parameter_values(self) -> list[Any]:
        """Driver-ready values in marker order; OUT parameters hold ``None``."""
        values: list[Any] = []
        for mapping in self.parameter_mappings:
            if mapping.mode is ParameterMode.OUT:
                values.append(None)
                continue
            value = self.resolve_value(mapping)
            handler = self._handler_for(mapping, value)
            if handler is None:
                values.append(value)
                continue
            try:
                values.append(handler.to_db(value))
            except ParamTypeError as e:
                raise ParamTypeError(f"Could not set parameter '{mapping.property}': {e}") from e
        return values

    def describe_parameters(self) -> str:
        """``value(type), ...`` summary of the resolved (unconverted) values, for logs."""
        parts = []
        for mapping in self.parameter_mappings:
            value = None if mapping.mode is ParameterMode.OUT else self.resolve_value(mapping)
            parts.append("null" if value is None else f"{value}({type(value).__name__})")
        return ", ".join(parts)

    def __repr__(self) -> str:
        props = [m.property for m in self.parameter_mappings]
        return f"BoundStatement(sql={self.sql!r}, parameters={props!r})"
