"""
Expression evaluation for SQL templates.

Test, collection and bind expressions are Jinja2 expressions (``a != null``,
``ids | length > 0``, ``user.name``) evaluated in a sandbox. Names an
expression refers to are found once at parse time (``jinja2.meta``) and
resolved through the context bindings at evaluation time, so a missing name
reads as ``None`` and properties of the bound argument are reachable by name.

Parsed expressions are cached by source text in an ``ExpressionCache``; one
process-wide cache is shared by default and can be replaced per evaluator.
"""

import logging
import numbers
import threading
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, NamedTuple

from jinja2 import ChainableUndefined, TemplateError, Undefined, meta
from jinja2.environment import TemplateExpression
from jinja2.exceptions import SecurityError
from jinja2.sandbox import SandboxedEnvironment, is_internal_attribute

from dynsql.core.config import settings
from dynsql.core.errors import EvaluationError

_log = logging.getLogger(__name__)


class NullUndefined(ChainableUndefined):
    """Undefined that compares equal to ``None``: a missing property reads as null."""

    __slots__ = ()

    def __eq__(self, other: object) -> bool:
        return other is None or isinstance(other, Undefined)

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def __hash__(self) -> int:
        return hash(None)


class MemberAccessSandbox(SandboxedEnvironment):
    """Sandbox that may open single-underscore members of argument objects.

    Dunder and interpreter-internal attributes stay blocked whatever the setting.
    """

    def __init__(self, *, allow_private_members: bool | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("undefined", NullUndefined)
        super().__init__(**kwargs)
        self.allow_private_members = (
            settings.ALLOW_PRIVATE_MEMBER_ACCESS
            if allow_private_members is None
            else allow_private_members
        )
        self.globals["null"] = None

    def is_safe_attribute(self, obj: Any, attr: str, value: Any) -> bool:
        if self.allow_private_members and attr.startswith("_") and not attr.startswith("__"):
            return not is_internal_attribute(obj, attr)
        return super().is_safe_attribute(obj, attr, value)

    def unsafe_undefined(self, obj: Any, attribute: str) -> Undefined:
        raise SecurityError(
            f"access to attribute {attribute!r} of {type(obj).__name__!r} object is unsafe."
        )


class MapEntry(NamedTuple):
    """One key/value pair of a mapping iterated by a collection expression."""

    key: Any
    value: Any


class CompiledExpression(NamedTuple):
    source: str
    expression: TemplateExpression
    names: frozenset[str]


class ExpressionCache:
    """Compiled expressions keyed by source text.

    Reads are plain dict lookups; inserts are insert-if-absent under a short
    lock. Two threads may parse the same source at once; one result is kept.
    Once ``max_size`` entries are stored, new expressions are compiled per
    call and not retained.
    """

    def __init__(
        self,
        environment: SandboxedEnvironment | None = None,
        *,
        max_size: int | None = None,
    ) -> None:
        self.environment = environment or MemberAccessSandbox()
        self.max_size = settings.EXPRESSION_CACHE_MAX_SIZE if max_size is None else max_size
        self._entries: dict[str, CompiledExpression] = {}
        self._lock = threading.Lock()
        self._full_warned = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, source: object) -> bool:
        return source in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._full_warned = False

    def get(self, source: str) -> CompiledExpression:
        entry = self._entries.get(source)
        if entry is not None:
            return entry
        entry = self._compile(source)
        with self._lock:
            if len(self._entries) < self.max_size:
                entry = self._entries.setdefault(source, entry)
            elif not self._full_warned:
                self._full_warned = True
                _log.warning(
                    "Expression cache is full (%d entries); new expressions will not be cached",
                    self.max_size,
                )
        return entry

    def _compile(self, source: str) -> CompiledExpression:
        env = self.environment
        try:
            ast = env.parse("{{ " + source + " }}")
            names = frozenset(meta.find_undeclared_variables(ast))
            expression = env.compile_expression(source)
        except TemplateError as e:
            raise EvaluationError(f"Error parsing expression '{source}'. Cause: {e}") from e
        _log.debug("Parsed expression %r (names: %s)", source, sorted(names))
        return CompiledExpression(source, expression, names)


_DEFAULT_CACHE: ExpressionCache | None = None
_DEFAULT_CACHE_LOCK = threading.Lock()


def get_expression_cache() -> ExpressionCache:
    """Return the process-wide expression cache, creating it on first use."""
    global _DEFAULT_CACHE
    if _DEFAULT_CACHE is None:
        with _DEFAULT_CACHE_LOCK:
            if _DEFAULT_CACHE is None:
                _DEFAULT_CACHE = ExpressionCache()
    return _DEFAULT_CACHE


class ExpressionEvaluator:
    """Evaluate expressions against a binding map.

    ``bindings`` is any mapping; a context's ``ContextMap`` applies the
    argument-object fallback in its ``get``.
    """

    def __init__(self, cache: ExpressionCache | None = None) -> None:
        self._cache = cache

    @property
    def cache(self) -> ExpressionCache:
        return self._cache or get_expression_cache()

    def evaluate_value(self, expression: str, bindings: Mapping[str, Any]) -> Any:
        cache = self.cache
        compiled = cache.get(expression)
        env_globals = cache.environment.globals
        variables: dict[str, Any] = {}
        for name in compiled.names:
            if name in env_globals and name not in bindings:
                continue
            variables[name] = bindings.get(name)
        try:
            return compiled.expression(**variables)
        except TemplateError as e:
            raise EvaluationError(f"Error evaluating expression '{expression}'. Cause: {e}") from e
        except (TypeError, ValueError, ArithmeticError, LookupError, AttributeError) as e:
            raise EvaluationError(f"Error evaluating expression '{expression}'. Cause: {e}") from e

    def evaluate_boolean(self, expression: str, bindings: Mapping[str, Any]) -> bool:
        value = self.evaluate_value(expression, bindings)
        if isinstance(value, bool):
            return value
        if isinstance(value, numbers.Number):
            try:
                return Decimal(str(value)) != 0
            except InvalidOperation:
                return value != 0
        return value is not None

    def evaluate_iterable(
        self, expression: str, bindings: Mapping[str, Any], *, nullable: bool = False
    ) -> list[Any]:
        value = self.evaluate_value(expression, bindings)
        if value is None:
            if nullable:
                return []
            raise EvaluationError(f"The expression '{expression}' evaluated to a null value.")
        if isinstance(value, Mapping):
            return [MapEntry(k, v) for k, v in value.items()]
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes, bytearray)):
            return list(value)
        raise EvaluationError(
            f"Error evaluating expression '{expression}'. Return value ({value!r}) was not iterable."
        )
