"""
Engine-local template filters and functions.

These are consulted before the general-purpose utility namespace (pydash)
and before Jinja's own filters and globals.
"""

import base64
import copy
import functools
import json
import re
import shlex
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import pydash
import yaml


def indent(text: Optional[str], count: int = 2) -> Optional[str]:
    """Indent every non-empty line, including the first."""
    if text is None:
        return None
    spaces = " " * count
    return "\n".join(spaces + line if line else line for line in str(text).split("\n"))


def replace_all(value: str, old: str, new: str) -> str:
    return str(value).replace(old, new)


def regex_replace(value: str, pattern: str, replacement: str = "", ignorecase: bool = False) -> str:
    flags = re.IGNORECASE if ignorecase else 0
    return re.sub(pattern, replacement, str(value), flags=flags)


def regex_search(value: str, pattern: str, ignorecase: bool = False) -> Optional[str]:
    flags = re.IGNORECASE if ignorecase else 0
    match = re.search(pattern, str(value), flags=flags)
    return match.group(0) if match else None


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on", "y")
    return bool(value)


def to_yaml(value: Any) -> str:
    return yaml.safe_dump(value, default_flow_style=False, sort_keys=False)


def from_yaml(value: str) -> Any:
    return yaml.safe_load(value)


def from_json(value: str) -> Any:
    return json.loads(value)


def b64encode(value: str) -> str:
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


def b64decode(value: str) -> str:
    return base64.b64decode(str(value)).decode("utf-8")


def quote(value: Any) -> str:
    """Quote a value for safe use as one POSIX shell word."""
    return shlex.quote(str(value))


def now(utc: bool = True, fmt: Optional[str] = None) -> Any:
    current = datetime.now(timezone.utc) if utc else datetime.now()
    return current.strftime(fmt) if fmt else current.isoformat()


LOCAL_FILTERS: Dict[str, Any] = {
    "indent": indent,
    "replaceAll": replace_all,
    "replace_all": replace_all,
    "regex_replace": regex_replace,
    "regex_search": regex_search,
    "bool": to_bool,
    "to_yaml": to_yaml,
    "from_yaml": from_yaml,
    "from_json": from_json,
    "b64encode": b64encode,
    "b64decode": b64decode,
    "quote": quote,
}

LOCAL_FUNCTIONS: Dict[str, Any] = {
    "indent": indent,
    "now": now,
}

# pydash functions that modify their first argument in place
IN_PLACE_FUNCTIONS = frozenset({
    "assign", "assign_with", "defaults", "defaults_deep", "fill",
    "map_values_deep", "merge", "merge_with", "pop", "pull", "pull_all",
    "pull_all_by", "pull_all_with", "pull_at", "push", "remove", "set_",
    "set_with", "shift", "sort", "splice", "unset", "unshift", "update",
    "update_with",
})


def on_copy(func: Callable[..., Any]) -> Callable[..., Any]:
    """Run ``func`` against a deep copy of its first argument."""
    @functools.wraps(func)
    def wrapper(value, *args, **kwargs):
        return func(copy.deepcopy(value), *args, **kwargs)
    return wrapper


def utility_namespace() -> Dict[str, Any]:
    """
    Public functions of the pydash utility library, addressed by name.

    Template evaluation never modifies the variables it reads, so functions
    that work in place are given a copy of their input.
    """
    namespace = {}
    for name in dir(pydash):
        if name.startswith("_"):
            continue
        value = getattr(pydash, name)
        if callable(value) and not isinstance(value, type):
            namespace[name] = on_copy(value) if name in IN_PLACE_FUNCTIONS else value
    return namespace


UTILITY_FUNCTIONS: Dict[str, Any] = utility_namespace()
