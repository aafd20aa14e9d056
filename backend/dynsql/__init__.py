"""
pydynsql: dynamic SQL templates compiled to parameterized SQL.

Exports the pieces most callers need: the template engine, the SQL sources,
the bound statement and the error taxonomy.
"""

from dynsql.core.errors import (
    BuilderError,
    DynamicSqlError,
    EvaluationError,
    ParamTypeError,
    SecurityValidationError,
)
from dynsql.engines.sql import (
    BoundStatement,
    DynamicSqlSource,
    ParameterMapping,
    RawSqlSource,
    SQLTemplateEngine,
    evaluate,
)

__all__ = [
    "BoundStatement",
    "BuilderError",
    "DynamicSqlError",
    "DynamicSqlSource",
    "EvaluationError",
    "ParamTypeError",
    "ParameterMapping",
    "RawSqlSource",
    "SQLTemplateEngine",
    "SecurityValidationError",
    "evaluate",
]
