"""
Placeholder compilation: ``#{...}`` -> ``?`` plus one ``ParameterMapping`` each.

Placeholder grammar::

    #{property}
    #{property:DBTYPE}
    #{property, attr=value, attr=value}
    #{property:DBTYPE, attr=value}

Attributes: ``type``, ``db_type``, ``mode``, ``numeric_scale``, ``result_map``,
``type_handler``, ``db_type_name`` (camelCase spellings ``javaType``,
``jdbcType``, ``numericScale``, ``resultMap``, ``typeHandler``,
``jdbcTypeName`` are accepted too).
"""

import re
from collections.abc import Mapping
from typing import Any, NamedTuple

from pydantic import ValidationError

from dynsql.core.config import settings
from dynsql.core.errors import BuilderError
from dynsql.core.meta import MetaClass, MetaObject
from dynsql.core.param_type import (
    DEFAULT_TYPE_HANDLERS,
    JdbcType,
    ResultCursor,
    TypeHandlerRegistry,
    resolve_alias,
)
from dynsql.engines.sql.bound import ParameterMapping
from dynsql.engines.sql.tokens import PLACEHOLDER_OPEN, TOKEN_CLOSE, GenericTokenParser

PARAMETER_PROPERTIES = "type, db_type, mode, numeric_scale, result_map, type_handler, db_type_name"

_ATTRIBUTE_ALIASES = {
    "javaType": "type",
    "jdbcType": "db_type",
    "numericScale": "numeric_scale",
    "resultMap": "result_map",
    "typeHandler": "type_handler",
    "jdbcTypeName": "db_type_name",
}

_WHITESPACE = re.compile(r"\s+")


def shrink_whitespaces(sql: str) -> str:
    """Collapse every whitespace run to one space."""
    return _WHITESPACE.sub(" ", sql).strip()


def _skip_ws(expression: str, p: int) -> int:
    while p < len(expression) and expression[p] <= " ":
        p += 1
    return p


def _skip_until(expression: str, p: int, end_chars: str) -> int:
    while p < len(expression) and expression[p] not in end_chars:
        p += 1
    return p


class ParameterExpression(dict):
    """Parsed content of one ``#{...}`` placeholder.

    Keys: ``property`` or ``expression`` (for ``(...)`` content), ``db_type``
    when written as ``:DBTYPE``, and one key per ``attr=value`` option as written.
    """

    def __init__(self, expression: str) -> None:
        super().__init__()
        self._parse(expression)

    def _parse(self, expression: str) -> None:
        p = _skip_ws(expression, 0)
        if p >= len(expression):
            raise BuilderError("Parsing error in {" + expression + "}: empty parameter expression")
        if expression[p] == "(":
            self._expression(expression, p + 1)
        else:
            self._property(expression, p)

    def _expression(self, expression: str, left: int) -> None:
        depth = 1
        right = left
        while depth > 0:
            if right >= len(expression):
                raise BuilderError("Parsing error in {" + expression + "}: unbalanced parentheses")
            c = expression[right]
            if c == ")":
                depth -= 1
            elif c == "(":
                depth += 1
            right += 1
        self["expression"] = expression[left : right - 1].strip()
        self._db_type_opt(expression, right)

    def _property(self, expression: str, left: int) -> None:
        right = _skip_until(expression, left, ",:")
        self["property"] = expression[left:right].strip()
        self._db_type_opt(expression, right)

    def _db_type_opt(self, expression: str, p: int) -> None:
        p = _skip_ws(expression, p)
        if p >= len(expression):
            return
        if expression[p] == ":":
            self._db_type(expression, p + 1)
        elif expression[p] == ",":
            self._options(expression, p + 1)
        else:
            raise BuilderError(f"Parsing error in {{{expression}}} in position {p}")

    def _db_type(self, expression: str, p: int) -> None:
        left = _skip_ws(expression, p)
        right = _skip_until(expression, left, ",")
        if right <= left:
            raise BuilderError(f"Parsing error in {{{expression}}} in position {p}")
        self["db_type"] = expression[left:right].strip()
        self._options(expression, right + 1)

    def _options(self, expression: str, p: int) -> None:
        while True:
            left = _skip_ws(expression, p)
            if left >= len(expression):
                return
            right = _skip_until(expression, left, "=")
            name = expression[left:right].strip()
            left = right + 1
            right = _skip_until(expression, left, ",")
            self[name] = expression[left:right].strip()
            p = right + 1


class CompiledSql(NamedTuple):
    sql: str
    parameter_mappings: list[ParameterMapping]


class PlaceholderCompiler:
    """Turns expanded template text into ``?``-marker SQL and parameter mappings.

    The Python type of each placeholder is inferred in this order:

    1. runtime type of a same-named extra binding (loop items, ``bind`` values);
    2. the argument type itself when it converts as a whole value;
    3. ``ResultCursor`` when ``db_type`` is ``CURSOR``;
    4. ``object`` when there is no property or the argument is a mapping;
    5. the declared type of the property on the argument class, else ``object``.

    An explicit ``type=`` attribute overrides the inferred type.
    """

    def __init__(
        self,
        *,
        type_handlers: TypeHandlerRegistry | None = None,
        shrink_whitespaces: bool | None = None,
        allow_private_members: bool | None = None,
    ) -> None:
        self.type_handlers = type_handlers or DEFAULT_TYPE_HANDLERS
        self.shrink_whitespaces = (
            settings.SHRINK_WHITESPACES_IN_SQL if shrink_whitespaces is None else shrink_whitespaces
        )
        self.allow_private_members = allow_private_members

    def compile(
        self,
        original_sql: str,
        parameter_type: type | None,
        additional_parameters: Mapping[str, Any] | None = None,
    ) -> CompiledSql:
        mappings: list[ParameterMapping] = []
        parameter_type = parameter_type or object
        meta_parameters = MetaObject.for_object(
            additional_parameters if additional_parameters is not None else {},
            allow_private=self.allow_private_members,
        )

        def handle_token(content: str) -> str:
            mappings.append(self.build_parameter_mapping(content, parameter_type, meta_parameters))
            return "?"

        sql = original_sql
        if self.shrink_whitespaces:
            sql = shrink_whitespaces(sql)
        sql = GenericTokenParser(PLACEHOLDER_OPEN, TOKEN_CLOSE, handle_token).parse(sql)
        return CompiledSql(sql, mappings)

    def _infer_type(
        self, attributes: Mapping[str, str], parameter_type: type, meta_parameters: MetaObject
    ) -> type:
        prop = attributes.get("property")
        if meta_parameters.has_property(prop):
            return meta_parameters.resolve_type(prop)
        if self.type_handlers.has_type_handler(parameter_type):
            return parameter_type
        if attributes.get("db_type", "").upper() == JdbcType.CURSOR.value:
            return ResultCursor
        if not prop or (isinstance(parameter_type, type) and issubclass(parameter_type, Mapping)):
            return object
        meta_class = MetaClass(parameter_type, allow_private=self.allow_private_members)
        if meta_class.has_property(prop):
            return meta_class.resolve_type(prop)
        return object

    def build_parameter_mapping(
        self, content: str, parameter_type: type, meta_parameters: MetaObject
    ) -> ParameterMapping:
        properties = ParameterExpression(content)
        attributes = {_ATTRIBUTE_ALIASES.get(k, k): v for k, v in properties.items()}
        python_type = self._infer_type(attributes, parameter_type, meta_parameters)
        fields: dict[str, Any] = {"property": properties.get("property") or None}
        handler_alias: str | None = None

        for raw_name, value in properties.items():
            name = _ATTRIBUTE_ALIASES.get(raw_name, raw_name)
            if name == "property":
                continue
            if name == "expression":
                raise BuilderError("Expression based parameters are not supported yet")
            if name == "type":
                python_type = resolve_alias(value)
            elif name == "db_type":
                fields["jdbc_type"] = value.upper()
            elif name == "mode":
                fields["mode"] = value.upper()
            elif name == "numeric_scale":
                fields["numeric_scale"] = value
            elif name == "result_map":
                fields["result_map_id"] = value
            elif name == "type_handler":
                handler_alias = value
            elif name == "db_type_name":
                fields["jdbc_type_name"] = value
            else:
                raise BuilderError(
                    f"An invalid property '{raw_name}' was found in mapping #{{{content}}}. "
                    f"Valid properties are {PARAMETER_PROPERTIES}"
                )

        try:
            jdbc_type = JdbcType(fields["jdbc_type"]) if "jdbc_type" in fields else None
        except ValueError as e:
            raise BuilderError(
                f"Unknown db_type '{fields['jdbc_type']}' in mapping #{{{content}}}"
            ) from e
        if handler_alias is not None:
            fields["type_handler"] = self.type_handlers.resolve_handler(handler_alias)
        elif python_type is not ResultCursor:
            fields["type_handler"] = self.type_handlers.get_type_handler(python_type, jdbc_type)

        try:
            return ParameterMapping(python_type=python_type, **fields)
        except ValidationError as e:
            raise BuilderError(f"Invalid parameter mapping #{{{content}}}: {e}") from e
