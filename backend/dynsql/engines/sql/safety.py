"""
Static analysis for SQL templates: detect potential injection risks.

``${expr}`` substitutions are pasted into the SQL text as-is, unlike
``#{expr}`` placeholders which become bound parameters. Every unescaped
``${...}`` is reported so template authors can switch to ``#{...}`` or guard
the substitution with an allow-pattern (``SUBSTITUTION_ALLOW_PATTERN``).

Usage::

    warnings = check_sql_template_safety(script)
    # [{"variable": "order_by", "line": 3, "message": "..."}]
"""

import re
from typing import Any

from dynsql.core.errors import BuilderError
from dynsql.engines.sql.tokens import SUBSTITUTION_OPEN, TOKEN_CLOSE, find_tokens

_ROOT_NAME = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)")


def check_sql_template_safety(template: str) -> list[dict[str, Any]]:
    """Return one warning per ``${...}`` substitution in *template*.

    Each warning is a dict with ``variable``, ``line``, and ``message`` keys.
    Escaped substitutions (``\\${...}``) are not reported.
    """
    warnings: list[dict[str, Any]] = []
    for line_no, line_text in enumerate(template.split("\n"), start=1):
        for expr in find_tokens(line_text, SUBSTITUTION_OPEN, TOKEN_CLOSE):
            match = _ROOT_NAME.match(expr)
            var_name = match.group(1) if match else expr.strip()
            warnings.append(
                {
                    "variable": var_name,
                    "line": line_no,
                    "message": (
                        f"'${{{expr.strip()}}}' is substituted into the SQL text without binding. "
                        f"Use '#{{{var_name}}}' for values, or set an allow-pattern "
                        f"to restrict what '${{}}' may insert."
                    ),
                }
            )
    return warnings


def compile_allow_pattern(pattern: str | re.Pattern[str] | None) -> re.Pattern[str] | None:
    """Compile the ``${}`` allow-pattern; ``None`` or empty means unrestricted."""
    if pattern is None or isinstance(pattern, re.Pattern):
        return pattern
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise BuilderError(f"Invalid substitution allow-pattern {pattern!r}: {e}") from e
