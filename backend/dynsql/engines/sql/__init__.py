"""
Dynamic SQL template engine.

Exports: SQLTemplateEngine, parse_parameters, evaluate, the SQL sources and
the bound statement types.
"""

from dynsql.engines.sql.bound import BoundStatement, ParameterMapping
from dynsql.engines.sql.parser import XMLScriptBuilder, parse_parameters
from dynsql.engines.sql.safety import check_sql_template_safety
from dynsql.engines.sql.sources import DynamicSqlSource, RawSqlSource, StaticSqlSource, evaluate
from dynsql.engines.sql.template_engine import SQLTemplateEngine

__all__ = [
    "BoundStatement",
    "DynamicSqlSource",
    "ParameterMapping",
    "RawSqlSource",
    "SQLTemplateEngine",
    "StaticSqlSource",
    "XMLScriptBuilder",
    "check_sql_template_safety",
    "evaluate",
    "parse_parameters",
]
