"""
Engines: SQL (dynamic templates -> parameterized SQL).
"""

from dynsql.engines.sql import SQLTemplateEngine, evaluate, parse_parameters

__all__ = [
    "SQLTemplateEngine",
    "evaluate",
    "parse_parameters",
]
