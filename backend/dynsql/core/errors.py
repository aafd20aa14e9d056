"""
Errors raised while building or evaluating SQL templates.

All of them are ``ValueError`` subclasses so callers that already guard
template rendering with ``except ValueError`` keep working.
"""


class DynamicSqlError(ValueError):
    """Base class for every error raised by the template engine."""

    pass


class EvaluationError(DynamicSqlError):
    """An expression could not be evaluated to the shape its position requires."""

    pass


class SecurityValidationError(DynamicSqlError):
    """A ``${}`` substitution produced text rejected by the allow-pattern."""

    pass


class BuilderError(DynamicSqlError):
    """A template or placeholder is malformed (authoring error, never recovered)."""

    pass


class ParamTypeError(DynamicSqlError):
    """Raised when a parameter value cannot be converted by its type handler."""

    pass
