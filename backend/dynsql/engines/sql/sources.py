"""
SQL sources: compiled templates that produce a ``BoundStatement`` per argument.

- ``StaticSqlSource``: SQL already in ``?`` form with fixed mappings.
- ``RawSqlSource``: template without dynamic elements, compiled once up front.
- ``DynamicSqlSource``: node tree rendered against every argument, then compiled.
"""

import logging
from collections.abc import Sequence
from typing import Any

from dynsql.engines.sql.bound import BoundStatement, ParameterMapping
from dynsql.engines.sql.context import DynamicContext
from dynsql.engines.sql.expression import ExpressionEvaluator
from dynsql.engines.sql.nodes import SqlNode
from dynsql.engines.sql.placeholder import PlaceholderCompiler

_log = logging.getLogger(__name__)


def _log_bound(bound: BoundStatement) -> BoundStatement:
    if _log.isEnabledFor(logging.DEBUG):
        _log.debug("Preparing: %s", bound.sql)
        _log.debug("Parameters: %s", bound.describe_parameters())
    return bound


class SqlSource:
    """Something that yields a ``BoundStatement`` for an argument object."""

    def get_bound_statement(self, parameter_object: Any = None) -> BoundStatement:
        raise NotImplementedError


class StaticSqlSource(SqlSource):
    def __init__(
        self,
        sql: str,
        parameter_mappings: Sequence[ParameterMapping] = (),
        *,
        compiler: PlaceholderCompiler | None = None,
    ) -> None:
        self.sql = sql
        self.parameter_mappings = tuple(parameter_mappings)
        self._compiler = compiler or PlaceholderCompiler()

    def get_bound_statement(self, parameter_object: Any = None) -> BoundStatement:
        return _log_bound(
            BoundStatement(
                self.sql,
                self.parameter_mappings,
                parameter_object,
                type_handlers=self._compiler.type_handlers,
            )
        )


class RawSqlSource(SqlSource):
    """Template text with no dynamic elements; placeholders are compiled at construction."""

    def __init__(
        self,
        root: SqlNode | str,
        parameter_type: type | None = None,
        *,
        compiler: PlaceholderCompiler | None = None,
    ) -> None:
        self._compiler = compiler or PlaceholderCompiler()
        sql = root if isinstance(root, str) else self._render(root)
        compiled = self._compiler.compile(sql, parameter_type, {})
        self._sql_source = StaticSqlSource(
            compiled.sql, compiled.parameter_mappings, compiler=self._compiler
        )

    @staticmethod
    def _render(root: SqlNode) -> str:
        context = DynamicContext()
        root.apply(context)
        return context.sql

    @property
    def sql(self) -> str:
        return self._sql_source.sql

    def get_bound_statement(self, parameter_object: Any = None) -> BoundStatement:
        return self._sql_source.get_bound_statement(parameter_object)


class DynamicSqlSource(SqlSource):
    """Node tree evaluated per call. The tree itself is never mutated."""

    def __init__(
        self,
        root: SqlNode,
        *,
        evaluator: ExpressionEvaluator | None = None,
        compiler: PlaceholderCompiler | None = None,
        database_id: str | None = None,
        allow_private_members: bool | None = None,
    ) -> None:
        self.root = root
        self._evaluator = evaluator or ExpressionEvaluator()
        self._compiler = compiler or PlaceholderCompiler(allow_private_members=allow_private_members)
        self._database_id = database_id
        self._allow_private_members = allow_private_members

    def get_bound_statement(self, parameter_object: Any = None) -> BoundStatement:
        context = DynamicContext(
            parameter_object,
            database_id=self._database_id,
            evaluator=self._evaluator,
            allow_private_members=self._allow_private_members,
        )
        self.root.apply(context)
        parameter_type = object if parameter_object is None else type(parameter_object)
        compiled = self._compiler.compile(context.sql, parameter_type, context.bindings)
        return _log_bound(
            BoundStatement(
                compiled.sql,
                compiled.parameter_mappings,
                parameter_object,
                dict(context.bindings),
                type_handlers=self._compiler.type_handlers,
            )
        )


def evaluate(root: SqlNode, parameter_object: Any = None, **options: Any) -> BoundStatement:
    """Render *root* against *parameter_object* and compile the placeholders.

    ``options`` are passed to ``DynamicSqlSource`` (``evaluator``, ``compiler``,
    ``database_id``, ``allow_private_members``).
    """
    return DynamicSqlSource(root, **options).get_bound_statement(parameter_object)
