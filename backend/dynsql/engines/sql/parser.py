"""
Build SQL sources from XML-tagged templates.

A template is SQL text with dynamic elements::

    SELECT * FROM users
    <where>
      <if test="name != null">AND name = #{name}</if>
      <if test="ids">AND id IN
        <foreach collection="ids" item="id" open="(" separator="," close=")">#{id}</foreach>
      </if>
    </where>

Elements: ``if``, ``choose``/``when``/``otherwise``, ``where``, ``set``,
``trim``, ``foreach``, ``bind``. A body without a ``<script>`` root is wrapped
in one. Literal ``<`` in SQL must be written as ``&lt;`` or inside CDATA.
"""

import re
import xml.etree.ElementTree as ET
from collections.abc import Callable

from dynsql.core.config import settings
from dynsql.core.errors import BuilderError
from dynsql.core.meta import PropertyTokenizer
from dynsql.engines.sql.context import DATABASE_ID_KEY, PARAMETER_OBJECT_KEY
from dynsql.engines.sql.expression import ExpressionCache, ExpressionEvaluator
from dynsql.engines.sql.nodes import (
    ChooseSqlNode,
    ForEachSqlNode,
    IfSqlNode,
    MixedSqlNode,
    SetSqlNode,
    SqlNode,
    StaticTextSqlNode,
    TextSqlNode,
    TrimSqlNode,
    VarDeclSqlNode,
    WhereSqlNode,
)
from dynsql.engines.sql.placeholder import ParameterExpression, PlaceholderCompiler
from dynsql.engines.sql.safety import compile_allow_pattern
from dynsql.engines.sql.sources import DynamicSqlSource, RawSqlSource, SqlSource
from dynsql.engines.sql.tokens import PLACEHOLDER_OPEN, SUBSTITUTION_OPEN, TOKEN_CLOSE, find_tokens

SCRIPT_TAG = "script"
_RESERVED_NAMES = frozenset({PARAMETER_OBJECT_KEY, DATABASE_ID_KEY})
_TRUE_VALUES = ("true", "1", "yes")


def _required(element: ET.Element, name: str) -> str:
    value = element.get(name)
    if value is None:
        raise BuilderError(f"<{element.tag}> requires attribute '{name}'")
    return value


def _parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    return value.strip().lower() in _TRUE_VALUES


def parse_xml(script: str) -> ET.Element:
    """Parse *script* into its ``<script>`` root element."""
    text = script.strip()
    if not text.startswith("<" + SCRIPT_TAG):
        text = f"<{SCRIPT_TAG}>{text}</{SCRIPT_TAG}>"
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise BuilderError(f"Invalid SQL script: {e}") from e
    if root.tag != SCRIPT_TAG:
        raise BuilderError(f"SQL script root must be <{SCRIPT_TAG}>, got <{root.tag}>")
    return root


class XMLScriptBuilder:
    """Turns one XML-tagged template into a ``DynamicSqlSource`` or ``RawSqlSource``."""

    def __init__(
        self,
        script: str | ET.Element,
        parameter_type: type | None = None,
        *,
        injection_filter: str | re.Pattern[str] | None = None,
        evaluator: ExpressionEvaluator | None = None,
        compiler: PlaceholderCompiler | None = None,
        database_id: str | None = None,
        allow_private_members: bool | None = None,
    ) -> None:
        self._root = script if isinstance(script, ET.Element) else parse_xml(script)
        self.parameter_type = parameter_type
        self.injection_filter = compile_allow_pattern(
            injection_filter if injection_filter is not None else settings.SUBSTITUTION_ALLOW_PATTERN
        )
        self.evaluator = evaluator or ExpressionEvaluator()
        self.compiler = compiler or PlaceholderCompiler(allow_private_members=allow_private_members)
        self.database_id = database_id
        self.allow_private_members = allow_private_members
        self._is_dynamic = False
        self._node_handlers: dict[str, Callable[[ET.Element, list[SqlNode]], None]] = {
            "trim": self._handle_trim,
            "where": self._handle_where,
            "set": self._handle_set,
            "foreach": self._handle_foreach,
            "if": self._handle_if,
            "when": self._handle_if,
            "choose": self._handle_choose,
            "otherwise": self._handle_otherwise,
            "bind": self._handle_bind,
        }

    def parse_script_node(self) -> SqlSource:
        self._is_dynamic = False
        root_node = self.parse_dynamic_tags(self._root)
        if self._is_dynamic:
            return DynamicSqlSource(
                root_node,
                evaluator=self.evaluator,
                compiler=self.compiler,
                database_id=self.database_id,
                allow_private_members=self.allow_private_members,
            )
        return RawSqlSource(root_node, self.parameter_type, compiler=self.compiler)

    def parse_dynamic_tags(self, element: ET.Element) -> MixedSqlNode:
        contents: list[SqlNode] = []
        self._add_text(element.text, contents)
        for child in element:
            handler = self._node_handlers.get(child.tag)
            if handler is None:
                raise BuilderError(f"Unknown element <{child.tag}> in SQL statement.")
            handler(child, contents)
            self._is_dynamic = True
            self._add_text(child.tail, contents)
        return MixedSqlNode(contents)

    def _add_text(self, data: str | None, contents: list[SqlNode]) -> None:
        if not data:
            return
        text_node = TextSqlNode(data, self.injection_filter)
        if text_node.is_dynamic:
            contents.append(text_node)
            self._is_dynamic = True
        else:
            contents.append(StaticTextSqlNode(data))

    def _handle_bind(self, element: ET.Element, targets: list[SqlNode]) -> None:
        targets.append(VarDeclSqlNode(_required(element, "name"), _required(element, "value")))

    def _handle_trim(self, element: ET.Element, targets: list[SqlNode]) -> None:
        targets.append(
            TrimSqlNode(
                self.parse_dynamic_tags(element),
                prefix=element.get("prefix"),
                prefix_overrides=element.get("prefixOverrides", element.get("prefix_overrides")),
                suffix=element.get("suffix"),
                suffix_overrides=element.get("suffixOverrides", element.get("suffix_overrides")),
            )
        )

    def _handle_where(self, element: ET.Element, targets: list[SqlNode]) -> None:
        targets.append(WhereSqlNode(self.parse_dynamic_tags(element)))

    def _handle_set(self, element: ET.Element, targets: list[SqlNode]) -> None:
        targets.append(SetSqlNode(self.parse_dynamic_tags(element)))

    def _handle_foreach(self, element: ET.Element, targets: list[SqlNode]) -> None:
        targets.append(
            ForEachSqlNode(
                self.parse_dynamic_tags(element),
                _required(element, "collection"),
                index=element.get("index"),
                item=element.get("item"),
                open=element.get("open"),
                close=element.get("close"),
                separator=element.get("separator"),
                nullable=_parse_bool(element.get("nullable")),
            )
        )

    def _handle_if(self, element: ET.Element, targets: list[SqlNode]) -> None:
        targets.append(IfSqlNode(self.parse_dynamic_tags(element), _required(element, "test")))

    def _handle_otherwise(self, element: ET.Element, targets: list[SqlNode]) -> None:
        targets.append(self.parse_dynamic_tags(element))

    def _handle_choose(self, element: ET.Element, targets: list[SqlNode]) -> None:
        when_nodes: list[SqlNode] = []
        otherwise_nodes: list[SqlNode] = []
        for child in element:
            if child.tag == "when":
                self._handle_if(child, when_nodes)
            elif child.tag == "otherwise":
                self._handle_otherwise(child, otherwise_nodes)
        if len(otherwise_nodes) > 1:
            raise BuilderError("Too many default (otherwise) elements in choose statement.")
        targets.append(ChooseSqlNode(when_nodes, otherwise_nodes[0] if otherwise_nodes else None))

    def parameter_names(self, cache: ExpressionCache | None = None) -> list[str]:
        """Names the template reads from its argument, sorted.

        Loop variables and ``bind`` names declared anywhere in the template
        are excluded, as are the reserved ``_parameter``/``_databaseId``.
        """
        cache = cache or self.evaluator.cache
        used: set[str] = set()
        declared: set[str] = set()

        def expression_names(source: str) -> None:
            used.update(cache.get(source).names.difference(cache.environment.globals))

        def scan_text(text: str | None) -> None:
            for content in find_tokens(text, PLACEHOLDER_OPEN, TOKEN_CLOSE):
                prop = ParameterExpression(content).get("property")
                if prop:
                    used.add(PropertyTokenizer(prop).name)
            for content in find_tokens(text, SUBSTITUTION_OPEN, TOKEN_CLOSE):
                expression_names(content)

        for element in self._root.iter():
            scan_text(element.text)
            if element is not self._root:
                scan_text(element.tail)
            if element.tag in ("if", "when") and element.get("test"):
                expression_names(element.get("test"))
            elif element.tag == "foreach":
                if element.get("collection"):
                    expression_names(element.get("collection"))
                declared.update(n for n in (element.get("item"), element.get("index")) if n)
            elif element.tag == "bind":
                if element.get("value"):
                    expression_names(element.get("value"))
                if element.get("name"):
                    declared.add(element.get("name"))
        return sorted(used - declared - _RESERVED_NAMES)


def parse_parameters(script: str) -> list[str]:
    """
    Extract the names a template reads from its argument.

    Returns a list of parameter names that should be provided to render().
    """
    return XMLScriptBuilder(script).parameter_names()
