"""
SQL template engine: XML-tagged dynamic SQL rendered to bound statements.

Renders a template + argument to ``BoundStatement`` (``?`` SQL, parameter
mappings, driver-ready values); parses the parameter names a template reads.

Performance: compiled sources are cached in an LRU dict keyed by template
source hash (plus argument type), so repeated calls with the same template
skip XML parsing and node-tree construction entirely.
"""

import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any

from dynsql.core.config import settings
from dynsql.core.errors import EvaluationError
from dynsql.engines.sql.bound import BoundStatement
from dynsql.engines.sql.parser import XMLScriptBuilder
from dynsql.engines.sql.sources import SqlSource

_log = logging.getLogger(__name__)

_source_cache: OrderedDict[str, SqlSource] = OrderedDict()
_cache_lock = threading.Lock()


def _cache_key(script: str, parameter_type: type | None) -> str:
    type_name = "" if parameter_type is None else f"{parameter_type.__module__}.{parameter_type.__qualname__}"
    return hashlib.md5(f"{type_name}\0{script}".encode(), usedforsecurity=False).hexdigest()


def _compile_cached(script: str, parameter_type: type | None) -> SqlSource:
    """Return a compiled source from cache or build & cache it."""
    key = _cache_key(script, parameter_type)
    with _cache_lock:
        source = _source_cache.get(key)
        if source is not None:
            _source_cache.move_to_end(key)
            return source
    source = XMLScriptBuilder(script, parameter_type).parse_script_node()
    _log.debug("Compiled SQL script %s as %s", key[:12], type(source).__name__)
    with _cache_lock:
        _source_cache[key] = source
        while len(_source_cache) > settings.TEMPLATE_CACHE_MAX_SIZE:
            _source_cache.popitem(last=False)
    return source


def clear_template_cache() -> None:
    with _cache_lock:
        _source_cache.clear()


def _describe_params(params: Any) -> str:
    if isinstance(params, Mapping):
        return str(list(params.keys()))
    return type(params).__name__


class SQLTemplateEngine:
    """Renders XML-tagged SQL templates and parses parameter names."""

    def compile(self, script: str, parameter_type: type | None = None) -> SqlSource:
        """Compiled (cached) source for *script*."""
        return _compile_cached(script, parameter_type)

    def render(self, script: str, params: Any = None, *, parameter_type: type | None = None) -> BoundStatement:
        """Render *script* against *params* to a bound statement."""
        source = self.compile(script, parameter_type)
        try:
            return source.get_bound_statement(params)
        except EvaluationError as e:
            raise EvaluationError(f"{e} Params: {_describe_params(params)}.") from e

    def parse_parameters(self, script: str) -> list[str]:
        """Names used in placeholders, substitutions and element expressions (undeclared)."""
        return XMLScriptBuilder(script).parameter_names()
