"""
Per-evaluation state for SQL template nodes.

``DynamicContext`` is created fresh for every evaluation: a binding map, an
output buffer and a sequence counter. Composite nodes wrap it in decorators
that intercept ``append`` and forward everything else, so the bindings map,
the counter and the evaluator stay shared along the whole chain:

- ``PrefixedContext``: writes a prefix before the first non-blank fragment.
- ``IterationContext``: rewrites loop variable names inside ``#{...}``
  placeholders to their per-iteration names.
- ``BufferingContext``: collects fragments privately, post-processes them
  (prefix/suffix overrides) and forwards them in one append on ``commit()``.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from dynsql.core.config import settings
from dynsql.core.meta import MetaObject
from dynsql.engines.sql.expression import ExpressionEvaluator
from dynsql.engines.sql.tokens import PLACEHOLDER_OPEN, TOKEN_CLOSE, GenericTokenParser

PARAMETER_OBJECT_KEY = "_parameter"
DATABASE_ID_KEY = "_databaseId"
ITEM_PREFIX = "__frch_"
DELIMITER = " "


def itemize(name: str, unique_number: int) -> str:
    """Per-iteration binding name of a loop variable."""
    return f"{ITEM_PREFIX}{name}_{unique_number}"


class ContextMap(dict):
    """Binding map whose misses fall back to the bound argument.

    A miss reads a property off the argument object, or a key of the argument
    when the argument itself is a mapping. ``in`` only sees explicit bindings.
    """

    def __init__(self, parameter_meta: MetaObject | None = None) -> None:
        super().__init__()
        self._parameter_meta = parameter_meta

    def get(self, key: str, default: Any = None) -> Any:
        if key in self:
            return self[key]
        if self._parameter_meta is not None:
            value = self._parameter_meta.read_property(key)
            return default if value is None else value
        parameter = dict.get(self, PARAMETER_OBJECT_KEY)
        if isinstance(parameter, Mapping):
            return parameter.get(key, default)
        return default


class SqlContext(ABC):
    """What a template node can do with the evaluation state."""

    @property
    @abstractmethod
    def bindings(self) -> ContextMap: ...

    @property
    @abstractmethod
    def evaluator(self) -> ExpressionEvaluator: ...

    @property
    @abstractmethod
    def sql(self) -> str:
        """Text accumulated so far in the root buffer, trimmed."""

    @abstractmethod
    def append(self, text: str) -> None:
        """Write one fragment of SQL."""

    @abstractmethod
    def next_sequence_id(self) -> int:
        """Return the current counter value, then increment it."""

    def bind(self, name: str, value: Any) -> None:
        self.bindings[name] = value

    def read(self, name: str) -> Any:
        return self.bindings.get(name)

    def append_token(self, text: str) -> None:
        """Write a structural token (loop open/separator/close)."""
        self.append(text)

    def is_empty(self) -> bool:
        return not self.sql


class DynamicContext(SqlContext):
    """Root context for one evaluation."""

    def __init__(
        self,
        parameter_object: Any = None,
        *,
        database_id: str | None = None,
        evaluator: ExpressionEvaluator | None = None,
        allow_private_members: bool | None = None,
    ) -> None:
        if parameter_object is not None and not isinstance(parameter_object, Mapping):
            parameter_meta = MetaObject.for_object(
                parameter_object, allow_private=allow_private_members
            )
        else:
            parameter_meta = None
        self._bindings = ContextMap(parameter_meta)
        self._bindings[PARAMETER_OBJECT_KEY] = parameter_object
        self._bindings[DATABASE_ID_KEY] = (
            settings.DATABASE_ID if database_id is None else database_id
        )
        self._evaluator = evaluator or ExpressionEvaluator()
        self._buffer: list[str] = []
        self._unique_number = 0

    @property
    def bindings(self) -> ContextMap:
        return self._bindings

    @property
    def evaluator(self) -> ExpressionEvaluator:
        return self._evaluator

    @property
    def sql(self) -> str:
        return "".join(self._buffer).strip()

    def append(self, text: str) -> None:
        self._buffer.append(text)
        self._buffer.append(DELIMITER)

    def next_sequence_id(self) -> int:
        number = self._unique_number
        self._unique_number += 1
        return number


class DelegatingContext(SqlContext):
    """Forwards every operation to the wrapped context."""

    def __init__(self, delegate: SqlContext) -> None:
        self._delegate = delegate

    @property
    def delegate(self) -> SqlContext:
        return self._delegate

    @property
    def bindings(self) -> ContextMap:
        return self._delegate.bindings

    @property
    def evaluator(self) -> ExpressionEvaluator:
        return self._delegate.evaluator

    @property
    def sql(self) -> str:
        return self._delegate.sql

    def bind(self, name: str, value: Any) -> None:
        self._delegate.bind(name, value)

    def append(self, text: str) -> None:
        self._delegate.append(text)

    def append_token(self, text: str) -> None:
        self._delegate.append_token(text)

    def is_empty(self) -> bool:
        return self._delegate.is_empty()

    def next_sequence_id(self) -> int:
        return self._delegate.next_sequence_id()


class PrefixedContext(DelegatingContext):
    """Writes ``prefix`` before the first non-blank fragment, once."""

    def __init__(self, delegate: SqlContext, prefix: str) -> None:
        super().__init__(delegate)
        self.prefix = prefix
        self.prefix_applied = False

    def append(self, text: str) -> None:
        if not self.prefix_applied and text and text.strip():
            if self.prefix and not self._delegate.is_empty():
                self._delegate.append_token(self.prefix)
            self.prefix_applied = True
        self._delegate.append(text)


class IterationContext(DelegatingContext):
    """Rewrites ``#{item...}`` / ``#{index...}`` to this iteration's binding names."""

    def __init__(
        self,
        delegate: SqlContext,
        index: str | None,
        item: str | None,
        unique_number: int,
    ) -> None:
        super().__init__(delegate)
        self._index = index
        self._item = item
        self._unique_number = unique_number
        self._parser = GenericTokenParser(PLACEHOLDER_OPEN, TOKEN_CLOSE, self._rewrite)

    @staticmethod
    def _name_pattern(name: str) -> re.Pattern[str]:
        # name followed by whitespace, '.', ',', ':' or end
        return re.compile(r"^\s*" + re.escape(name) + r"(?![^.,:\s])")

    def _rewrite(self, content: str) -> str:
        new_content = content
        if self._item is not None:
            new_content = self._name_pattern(self._item).sub(
                itemize(self._item, self._unique_number), content, count=1
            )
        if self._index is not None and new_content == content:
            new_content = self._name_pattern(self._index).sub(
                itemize(self._index, self._unique_number), content, count=1
            )
        return PLACEHOLDER_OPEN + new_content + TOKEN_CLOSE

    def append(self, text: str) -> None:
        self._delegate.append(self._parser.parse(text))


def parse_overrides(overrides: str | Sequence[str] | None) -> tuple[str, ...]:
    """Upper-cased override candidates; a string is split on ``|``."""
    if overrides is None:
        return ()
    if isinstance(overrides, str):
        overrides = overrides.split("|")
    return tuple(o.upper() for o in overrides if o)


class BufferingContext(DelegatingContext):
    """Collects fragments and forwards them as one fragment on ``commit()``.

    Content fragments are space-separated; structural tokens are glued to their
    neighbours. On commit the trimmed buffer loses at most one leading override
    and one trailing override (case-insensitive, first match wins), then gets
    ``prefix``/``suffix`` when the buffer is not blank. A blank result is not
    forwarded.
    """

    def __init__(
        self,
        delegate: SqlContext,
        *,
        prefix: str | None = None,
        prefixes_to_override: Sequence[str] = (),
        suffix: str | None = None,
        suffixes_to_override: Sequence[str] = (),
    ) -> None:
        super().__init__(delegate)
        self._prefix = prefix
        self._prefixes_to_override = tuple(p.upper() for p in prefixes_to_override)
        self._suffix = suffix
        self._suffixes_to_override = tuple(s.upper() for s in suffixes_to_override)
        self._prefix_applied = False
        self._suffix_applied = False
        self._buffer: list[str] = []
        self._last_was_token = False

    def append(self, text: str) -> None:
        if self._buffer and not self._last_was_token:
            self._buffer.append(DELIMITER)
        self._buffer.append(text)
        self._last_was_token = False

    def append_token(self, text: str) -> None:
        self._buffer.append(text)
        self._last_was_token = True

    def is_empty(self) -> bool:
        return not "".join(self._buffer).strip()

    @property
    def buffered_sql(self) -> str:
        return "".join(self._buffer)

    def commit(self) -> None:
        sql = "".join(self._buffer).strip()
        upper = sql.upper()
        if upper:
            sql = self._apply_prefix(sql, upper)
            sql = self._apply_suffix(sql, upper)
        self._buffer = [sql]
        self._last_was_token = False
        if sql:
            self._delegate.append(sql)

    def _apply_prefix(self, sql: str, upper: str) -> str:
        if self._prefix_applied:
            return sql
        self._prefix_applied = True
        for to_remove in self._prefixes_to_override:
            if upper.startswith(to_remove):
                sql = sql[len(to_remove.strip()) :].lstrip()
                break
        if self._prefix is not None:
            sql = f"{self._prefix}{DELIMITER}{sql}"
        return sql

    def _apply_suffix(self, sql: str, upper: str) -> str:
        if self._suffix_applied:
            return sql
        self._suffix_applied = True
        for to_remove in self._suffixes_to_override:
            if upper.endswith(to_remove) or upper.endswith(to_remove.strip()):
                sql = sql[: len(sql) - len(to_remove.strip())].rstrip()
                break
        if self._suffix is not None:
            sql = f"{sql}{DELIMITER}{self._suffix}"
        return sql
