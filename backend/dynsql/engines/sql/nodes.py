"""
Template nodes.

A compiled SQL template is a tree of nodes. Nodes hold no per-evaluation
state and can be shared by any number of concurrent evaluations; each call to
``apply(context)`` writes into the given context and returns whether the node
contributed (``IfSqlNode`` returns False when its test fails, ``ChooseSqlNode``
when no branch and no default applied, every other node returns True).
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from dynsql.core.config import settings
from dynsql.core.errors import SecurityValidationError
from dynsql.core.param_type import is_simple_type
from dynsql.engines.sql.context import (
    PARAMETER_OBJECT_KEY,
    BufferingContext,
    IterationContext,
    PrefixedContext,
    SqlContext,
    itemize,
    parse_overrides,
)
from dynsql.engines.sql.expression import MapEntry
from dynsql.engines.sql.tokens import SUBSTITUTION_OPEN, TOKEN_CLOSE, GenericTokenParser, contains_token

WHERE_PREFIX_OVERRIDES = ("AND ", "OR ", "AND\n", "OR\n", "AND\r", "OR\r", "AND\t", "OR\t")
SET_SUFFIX_OVERRIDES = (",",)


class SqlNode:
    """Base class of all template nodes."""

    __slots__ = ()

    def apply(self, context: SqlContext) -> bool:
        raise NotImplementedError


class StaticTextSqlNode(SqlNode):
    """Fixed text, appended verbatim."""

    __slots__ = ("text",)

    def __init__(self, text: str) -> None:
        self.text = text

    def apply(self, context: SqlContext) -> bool:
        context.append(self.text)
        return True

    def __repr__(self) -> str:
        return f"StaticTextSqlNode({self.text!r})"


class TextSqlNode(SqlNode):
    """Text with ``${expr}`` substitutions, resolved against the bindings.

    Substituted values are rendered with ``str()`` (``None`` as empty text).
    When ``injection_filter`` is set every substituted value must fully match
    it, otherwise ``SecurityValidationError`` aborts the evaluation.
    """

    __slots__ = ("text", "injection_filter")

    def __init__(self, text: str, injection_filter: re.Pattern[str] | str | None = None) -> None:
        self.text = text
        if isinstance(injection_filter, str):
            injection_filter = re.compile(injection_filter)
        self.injection_filter = injection_filter

    @property
    def is_dynamic(self) -> bool:
        return contains_token(self.text, SUBSTITUTION_OPEN, TOKEN_CLOSE)

    def apply(self, context: SqlContext) -> bool:
        parser = GenericTokenParser(
            SUBSTITUTION_OPEN, TOKEN_CLOSE, lambda content: self._substitute(context, content)
        )
        context.append(parser.parse(self.text))
        return True

    def _substitute(self, context: SqlContext, content: str) -> str:
        parameter = context.bindings.get(PARAMETER_OBJECT_KEY)
        if parameter is None:
            context.bind("value", None)
        elif is_simple_type(type(parameter)):
            context.bind("value", parameter)
        value = context.evaluator.evaluate_value(content, context.bindings)
        text = "" if value is None else str(value)
        self._check_injection(text)
        return text

    def _check_injection(self, value: str) -> None:
        if self.injection_filter is not None and not self.injection_filter.fullmatch(value):
            raise SecurityValidationError(
                f"Invalid input. Please conform to regex {self.injection_filter.pattern}"
            )

    def __repr__(self) -> str:
        return f"TextSqlNode({self.text!r})"


class MixedSqlNode(SqlNode):
    """Applies its children in order."""

    __slots__ = ("contents",)

    def __init__(self, contents: Sequence[SqlNode]) -> None:
        self.contents = tuple(contents)

    def apply(self, context: SqlContext) -> bool:
        for node in self.contents:
            node.apply(context)
        return True

    def __repr__(self) -> str:
        return f"MixedSqlNode({list(self.contents)!r})"


class IfSqlNode(SqlNode):
    __slots__ = ("contents", "test")

    def __init__(self, contents: SqlNode, test: str) -> None:
        self.contents = contents
        self.test = test

    def apply(self, context: SqlContext) -> bool:
        if context.evaluator.evaluate_boolean(self.test, context.bindings):
            self.contents.apply(context)
            return True
        return False

    def __repr__(self) -> str:
        return f"IfSqlNode(test={self.test!r}, contents={self.contents!r})"


class ChooseSqlNode(SqlNode):
    """First branch whose test passes wins; otherwise the default, if any."""

    __slots__ = ("if_sql_nodes", "default_sql_node")

    def __init__(self, if_sql_nodes: Sequence[SqlNode], default_sql_node: SqlNode | None = None) -> None:
        self.if_sql_nodes = tuple(if_sql_nodes)
        self.default_sql_node = default_sql_node

    def apply(self, context: SqlContext) -> bool:
        for node in self.if_sql_nodes:
            if node.apply(context):
                return True
        if self.default_sql_node is not None:
            self.default_sql_node.apply(context)
            return True
        return False


class VarDeclSqlNode(SqlNode):
    """Binds the value of an expression under a name for everything after it."""

    __slots__ = ("name", "expression")

    def __init__(self, name: str, expression: str) -> None:
        self.name = name
        self.expression = expression

    def apply(self, context: SqlContext) -> bool:
        value = context.evaluator.evaluate_value(self.expression, context.bindings)
        context.bind(self.name, value)
        return True


class TrimSqlNode(SqlNode):
    """Post-processes the full output of its contents: override removal, then prefix/suffix.

    Overrides may be given as a ``|``-separated string or a sequence and match
    case-insensitively.
    """

    __slots__ = ("contents", "prefix", "prefixes_to_override", "suffix", "suffixes_to_override")

    def __init__(
        self,
        contents: SqlNode,
        prefix: str | None = None,
        prefix_overrides: str | Sequence[str] | None = None,
        suffix: str | None = None,
        suffix_overrides: str | Sequence[str] | None = None,
    ) -> None:
        self.contents = contents
        self.prefix = prefix
        self.prefixes_to_override = parse_overrides(prefix_overrides)
        self.suffix = suffix
        self.suffixes_to_override = parse_overrides(suffix_overrides)

    def apply(self, context: SqlContext) -> bool:
        filtered = BufferingContext(
            context,
            prefix=self.prefix,
            prefixes_to_override=self.prefixes_to_override,
            suffix=self.suffix,
            suffixes_to_override=self.suffixes_to_override,
        )
        result = self.contents.apply(filtered)
        filtered.commit()
        return result


class WhereSqlNode(TrimSqlNode):
    """``WHERE`` clause that drops a leading AND/OR."""

    __slots__ = ()

    def __init__(self, contents: SqlNode) -> None:
        super().__init__(contents, prefix="WHERE", prefix_overrides=WHERE_PREFIX_OVERRIDES)


class SetSqlNode(TrimSqlNode):
    """``SET`` clause that drops a trailing comma."""

    __slots__ = ()

    def __init__(self, contents: SqlNode) -> None:
        super().__init__(contents, prefix="SET", suffix_overrides=SET_SUFFIX_OVERRIDES)


class ForEachSqlNode(SqlNode):
    """Repeats its contents for every element of a collection expression.

    Each iteration binds ``item``/``index`` (for mappings: value/key) twice:
    under the plain names and under per-iteration names (``__frch_<name>_<n>``).
    ``#{item}`` placeholders written by the body are rewritten to the
    per-iteration names, so every occurrence keeps its own value after the loop.

    The separator goes before every contributing iteration except the first
    one that actually writes something. Open, separator and close are glued
    to the items; the whole loop reaches the outer context as one fragment.
    """

    __slots__ = ("contents", "collection_expression", "item", "index", "open", "close", "separator", "nullable")

    def __init__(
        self,
        contents: SqlNode,
        collection_expression: str,
        index: str | None = None,
        item: str | None = None,
        open: str | None = None,
        close: str | None = None,
        separator: str | None = None,
        nullable: bool | None = None,
    ) -> None:
        self.contents = contents
        self.collection_expression = collection_expression
        self.index = index
        self.item = item
        self.open = open
        self.close = close
        self.separator = separator
        self.nullable = settings.NULLABLE_ON_FOR_EACH if nullable is None else nullable

    def apply(self, context: SqlContext) -> bool:
        elements = context.evaluator.evaluate_iterable(
            self.collection_expression, context.bindings, nullable=self.nullable
        )
        if not elements:
            return True
        loop = BufferingContext(context)
        first = True
        if self.open is not None:
            loop.append_token(self.open)
        for i, element in enumerate(elements):
            if first or self.separator is None:
                scoped = PrefixedContext(loop, "")
            else:
                scoped = PrefixedContext(loop, self.separator)
            unique_number = scoped.next_sequence_id()
            if isinstance(element, MapEntry):
                self._apply_index(scoped, element.key, unique_number)
                self._apply_item(scoped, element.value, unique_number)
            else:
                self._apply_index(scoped, i, unique_number)
                self._apply_item(scoped, element, unique_number)
            self.contents.apply(IterationContext(scoped, self.index, self.item, unique_number))
            if first:
                first = not scoped.prefix_applied
        if self.close is not None:
            loop.append_token(self.close)
        loop.commit()
        if self.item is not None:
            context.bindings.pop(self.item, None)
        if self.index is not None:
            context.bindings.pop(self.index, None)
        return True

    def _apply_index(self, context: SqlContext, value: object, unique_number: int) -> None:
        if self.index is not None:
            context.bind(self.index, value)
            context.bind(itemize(self.index, unique_number), value)

    def _apply_item(self, context: SqlContext, value: object, unique_number: int) -> None:
        if self.item is not None:
            context.bind(self.item, value)
            context.bind(itemize(self.item, unique_number), value)
