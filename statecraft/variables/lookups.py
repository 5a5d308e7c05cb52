"""
Lookup registry.

A lookup is a named async resolver ``handler(context, path_parts, options)``
that expressions reach through ``lookup(key, path, options)``. Built-in
keys: ``env`` (process environment), ``var`` (task variables), ``keyring``
(OS credential store), ``file`` (controller-side file contents) and ``url``
(body of an HTTP response).
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
import keyring
import pydash

from ..exceptions import UnknownLookupError
from ..security.secrets import SecretsManager


logger = logging.getLogger(__name__)

DEFAULT_KEYRING_SERVICE = "statecraft"

LookupFunction = Callable[[Any, List[str], Dict[str, Any]], Awaitable[Any]]


@dataclass
class LookupHandler:
    """
    Registered lookup.

    Attributes:
        key: Name used in ``lookup(key, ...)``
        handler: Async resolver
        sensitive: Whether returned values must be masked in logs
    """
    key: str
    handler: LookupFunction
    sensitive: bool = False


@dataclass
class LookupScope:
    """Stand-in context for evaluations that happen outside a task."""
    variables: Dict[str, Any] = field(default_factory=dict)
    logger: Any = logger


def split_path(parts: Sequence[Any]) -> List[str]:
    """Split dotted path parts: ``['a.b', 'c']`` -> ``['a', 'b', 'c']``."""
    result = []
    for part in parts:
        result.extend(p for p in str(part).split('.') if p)
    return result


def flatten_path(path: Sequence[Any]) -> List[str]:
    """Flatten positional lookup arguments, expanding nested lists."""
    result = []
    for part in path:
        if isinstance(part, (list, tuple)):
            result.extend(flatten_path(part))
        elif part is not None:
            result.append(str(part))
    return result


def get_path(obj: Any, parts: Sequence[str]) -> Optional[Any]:
    """Resolve a path within nested mappings and sequences, None when missing."""
    return pydash.get(obj, list(parts))


async def env_lookup(context: Any, parts: List[str], options: Dict[str, Any]) -> Any:
    return get_path(os.environ, split_path(parts))


async def var_lookup(context: Any, parts: List[str], options: Dict[str, Any]) -> Any:
    return get_path(getattr(context, 'variables', {}), split_path(parts))


async def keyring_lookup(context: Any, parts: List[str], options: Dict[str, Any]) -> Any:
    service = options.get('service') or DEFAULT_KEYRING_SERVICE
    key = '.'.join(parts)
    return await asyncio.to_thread(keyring.get_password, service, key)


async def file_lookup(context: Any, parts: List[str], options: Dict[str, Any]) -> Any:
    base = options.get('cwd') or os.getcwd()
    path = Path(base, *parts)
    encoding = options.get('encoding', 'utf-8')
    return await asyncio.to_thread(path.read_text, encoding=encoding)


async def url_lookup(context: Any, parts: List[str], options: Dict[str, Any]) -> Any:
    url = '/'.join(parts)
    method = options.get('method', 'GET')
    async with httpx.AsyncClient(follow_redirects=True, timeout=options.get('timeout', 30)) as client:
        response = await client.request(
            method,
            url,
            headers=options.get('headers'),
            content=options.get('body'),
        )
    if response.is_error:
        raise ValueError(
            f"Failed to fetch url: {url} status: {response.status_code} "
            f"response: {response.text or 'no response'}"
        )
    return response.text


class LookupRegistry:
    """
    Registry of lookup handlers.

    Resolution applies the common options every lookup accepts:

    - ``default``: returned when the handler yields None
    - ``error``: ``strict`` (raise), ``ignore`` (return default) or
      ``warn`` (log a warning and return default)
    """

    def __init__(self, secrets_manager: Optional[SecretsManager] = None):
        self.secrets_manager = secrets_manager or SecretsManager()
        self._handlers: Dict[str, LookupHandler] = {}
        for handler in self._builtin_handlers():
            self._handlers[handler.key] = handler

    def _builtin_handlers(self) -> List[LookupHandler]:
        return [
            LookupHandler('env', env_lookup),
            LookupHandler('var', var_lookup),
            LookupHandler('keyring', keyring_lookup, sensitive=True),
            LookupHandler('file', file_lookup),
            LookupHandler('url', url_lookup),
        ]

    def register(self, key: str, handler: LookupFunction, sensitive: bool = False) -> None:
        """
        Register a lookup handler.

        Raises:
            ValueError: If the key is already registered
        """
        if key in self._handlers:
            raise ValueError(f"Lookup '{key}' is already registered")
        self._handlers[key] = LookupHandler(key, handler, sensitive)
        logger.debug(f"Registered lookup: {key}")

    def has(self, key: str) -> bool:
        return key in self._handlers

    def keys(self) -> List[str]:
        return sorted(self._handlers)

    async def resolve(
        self,
        key: str,
        path_parts: Sequence[Any] = (),
        options: Optional[Dict[str, Any]] = None,
        context: Any = None
    ) -> Any:
        """
        Resolve a lookup.

        Args:
            key: Registered lookup key
            path_parts: Path segments passed to the handler
            options: Handler options plus ``default``/``error``
            context: Task context (anything with ``variables`` and ``logger``)

        Raises:
            UnknownLookupError: If the key is not registered
        """
        entry = self._handlers.get(key)
        if entry is None:
            raise UnknownLookupError(f"Unknown lookup store: {key}")

        options = dict(options or {})
        default = options.pop('default', None)
        error = options.pop('error', 'strict')
        context = context if context is not None else LookupScope()

        try:
            value = await entry.handler(context, flatten_path(path_parts), options)
        except Exception as e:
            if error == 'ignore':
                return default
            if error == 'warn':
                getattr(context, 'logger', logger).warning(f"Lookup to {key} failed: {e}")
                return default
            raise

        if value is None:
            return default
        if entry.sensitive:
            self.secrets_manager.add(value)
        return value
