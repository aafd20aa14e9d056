import pytest

from dynsql.engines.sql.context import DynamicContext
from dynsql.engines.sql.expression import ExpressionCache, ExpressionEvaluator
from dynsql.engines.sql.template_engine import clear_template_cache


@pytest.fixture
def expression_cache() -> ExpressionCache:
    return ExpressionCache()


@pytest.fixture
def evaluator(expression_cache: ExpressionCache) -> ExpressionEvaluator:
    return ExpressionEvaluator(expression_cache)


@pytest.fixture
def make_context(evaluator: ExpressionEvaluator):
    """Build a root context bound to *parameter_object* with the per-test evaluator."""

    def _make(parameter_object=None, **kwargs) -> DynamicContext:
        return DynamicContext(parameter_object, evaluator=evaluator, **kwargs)

    return _make


@pytest.fixture(autouse=True)
def _fresh_template_cache():
    clear_template_cache()
    yield
    clear_template_cache()
