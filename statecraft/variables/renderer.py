"""
Template and expression rendering.

Wraps an async Jinja environment with configurable delimiters. Filters and
functions resolve through an ordered chain of namespaces, first match wins:

1. engine-local built-ins (``functions.LOCAL_FILTERS`` / ``LOCAL_FUNCTIONS``)
2. the pydash utility library, addressed by name
3. Jinja's own filters and globals

Expressions may call ``lookup(key, path, options)``, which is awaited
against the lookup registry. Path segments may be given as one list or as
separate arguments; a trailing mapping (or keyword arguments) holds the
options.
"""

import json
import logging
import re
from collections import ChainMap
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Tuple

import jinja2
from jinja2 import nodes

from ..exceptions import StatecraftError, TemplateEvaluationError
from .functions import LOCAL_FILTERS, LOCAL_FUNCTIONS, UTILITY_FUNCTIONS
from .lookups import LookupRegistry, LookupScope


logger = logging.getLogger(__name__)

DEFAULT_DELIMITERS: Dict[str, Tuple[str, str]] = {
    "variable": ("{{", "}}"),
    "block": ("{%", "%}"),
    "comment": ("{#", "#}"),
}

RESULT_NAME = "statecraft_result"


def normalize_options(options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Merge renderer options over the defaults.

    Raises:
        ValueError: If a delimiter kind is unknown or not an open/close pair
    """
    options = options or {}
    delimiters = dict(DEFAULT_DELIMITERS)
    for kind, pair in (options.get("delimiters") or {}).items():
        if kind not in DEFAULT_DELIMITERS:
            raise ValueError(f"Unknown delimiter kind '{kind}'")
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError(f"Delimiter '{kind}' must be an [open, close] pair")
        delimiters[kind] = (str(pair[0]), str(pair[1]))
    return {"delimiters": delimiters}


class Renderer:
    """
    One configured template engine.

    Instances are expensive to build; obtain them through RendererCache.
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None, lookups: Optional[LookupRegistry] = None):
        """
        Initialize renderer.

        Args:
            options: ``{"delimiters": {"variable"|"block"|"comment": [open, close]}}``
            lookups: Lookup registry backing ``lookup()`` calls
        """
        self.options = normalize_options(options)
        self.lookups = lookups or LookupRegistry()
        self.delimiters = self.options["delimiters"]

        self.environment = jinja2.Environment(
            variable_start_string=self.delimiters["variable"][0],
            variable_end_string=self.delimiters["variable"][1],
            block_start_string=self.delimiters["block"][0],
            block_end_string=self.delimiters["block"][1],
            comment_start_string=self.delimiters["comment"][0],
            comment_end_string=self.delimiters["comment"][1],
            undefined=jinja2.StrictUndefined,
            enable_async=True,
            keep_trailing_newline=True,
            autoescape=False,
        )
        self.environment.filters = ChainMap(
            LOCAL_FILTERS, UTILITY_FUNCTIONS, dict(self.environment.filters)
        )
        self.environment.globals = ChainMap(
            LOCAL_FUNCTIONS, UTILITY_FUNCTIONS, dict(self.environment.globals)
        )

        open_, close = (re.escape(d) for d in self.delimiters["variable"])
        self._single_output = re.compile(rf"^\s*{open_}(.*){close}\s*$", re.DOTALL)
        self._compile = lru_cache(maxsize=512)(self._compile_uncached)

    @staticmethod
    def cache_key(options: Optional[Dict[str, Any]] = None) -> str:
        """Serialized configuration used to key the instance cache."""
        return json.dumps(normalize_options(options), sort_keys=True)

    def has_template_syntax(self, source: str) -> bool:
        return any(pair[0] in source for pair in self.delimiters.values())

    async def evaluate(
        self,
        source: Any,
        variables: Optional[Dict[str, Any]] = None,
        context: Any = None
    ) -> Any:
        """
        Render a template string.

        Strings without template syntax are returned unchanged. A string that
        is exactly one output tag evaluates to the native value of its
        expression; anything else renders to a string.

        Args:
            source: Template (non-strings pass through)
            variables: Variables visible to the template
            context: Task context handed to lookups

        Raises:
            TemplateEvaluationError: On syntax errors, unknown filters or
                undefined variables
        """
        if not isinstance(source, str) or not self.has_template_syntax(source):
            return source

        open_, close = self.delimiters["variable"]
        match = self._single_output.match(source)
        if match and open_ not in match.group(1) and close not in match.group(1):
            return await self.evaluate_expression(match.group(1), variables, context)

        template = self._compile(source)
        try:
            return await template.render_async(self._scope(variables, context))
        except StatecraftError:
            raise
        except Exception as e:
            raise TemplateEvaluationError(f"Failed to render template: {e}") from e

    async def evaluate_expression(
        self,
        expression: str,
        variables: Optional[Dict[str, Any]] = None,
        context: Any = None
    ) -> Any:
        """
        Evaluate a bare expression (``item == 'b'``) to its native value.

        An expression wrapped in output delimiters is unwrapped first.
        """
        expression = expression.strip()
        open_, close = self.delimiters["variable"]
        if expression.startswith(open_) and expression.endswith(close):
            expression = expression[len(open_):-len(close)].strip()

        block_open, block_close = self.delimiters["block"]
        source = f"{block_open} set {RESULT_NAME} = ({expression}) {block_close}"
        template = self._compile(source)
        try:
            module = await template.make_module_async(self._scope(variables, context))
        except StatecraftError:
            raise
        except Exception as e:
            raise TemplateEvaluationError(f"Failed to evaluate expression '{expression}': {e}") from e
        value = getattr(module, RESULT_NAME)
        if isinstance(value, jinja2.Undefined):
            raise TemplateEvaluationError(
                f"Failed to evaluate expression '{expression}': {value._undefined_message}"
            )
        return value

    async def render_params(
        self,
        value: Any,
        variables: Optional[Dict[str, Any]] = None,
        context: Any = None
    ) -> Any:
        """Recursively evaluate strings inside lists and mappings."""
        if isinstance(value, str):
            return await self.evaluate(value, variables, context)
        if isinstance(value, list):
            return [await self.render_params(item, variables, context) for item in value]
        if isinstance(value, dict):
            rendered = {}
            for key, item in value.items():
                rendered[key] = await self.render_params(item, variables, context)
            return rendered
        return value

    def _compile_uncached(self, source: str) -> jinja2.Template:
        try:
            tree = self.environment.parse(source)
        except jinja2.TemplateSyntaxError as e:
            raise TemplateEvaluationError(f"Template syntax error: {e}") from e

        for node in tree.find_all(nodes.Filter):
            if node.name not in self.environment.filters:
                raise TemplateEvaluationError(f"unable to find filter `{node.name}`")

        try:
            return self.environment.from_string(tree)
        except jinja2.TemplateError as e:
            raise TemplateEvaluationError(f"Template compile error: {e}") from e

    def _scope(self, variables: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
        variables = variables if variables is not None else {}
        lookup_context = context if context is not None else LookupScope(variables)
        registry = self.lookups

        async def lookup(key, *path, **options):
            path = list(path)
            if path and isinstance(path[-1], Mapping):
                options = {**path.pop(), **options}
            return await registry.resolve(key, path, options, lookup_context)

        return {**variables, "lookup": lookup}


class RendererCache:
    """
    Renderer instances keyed by serialized configuration.

    Constructed once per process (or run) and passed to whoever needs
    evaluation. Lookups are bound at construction and shared by every
    renderer the cache produces.
    """

    def __init__(self, lookups: Optional[LookupRegistry] = None):
        self.lookups = lookups or LookupRegistry()
        self._instances: Dict[str, Renderer] = {}

    def get(self, options: Optional[Dict[str, Any]] = None) -> Renderer:
        key = Renderer.cache_key(options)
        renderer = self._instances.get(key)
        if renderer is None:
            logger.debug(f"Creating renderer for {key}")
            renderer = Renderer(options, self.lookups)
            self._instances[key] = renderer
        return renderer

    def __len__(self) -> int:
        return len(self._instances)
