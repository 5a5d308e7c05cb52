"""
Target inventory and pattern resolution.

Targets are declared in the playbook as ``name -> options``; a target may
list ``groups`` it belongs to. Task patterns select targets by name, group,
wildcard, exclusion (``!name``) and intersection (``@group``).
"""

import fnmatch
import re
from typing import Any, Dict, List, Optional, Set

from .exceptions import TargetResolutionError


IMPLICIT_TARGETS = {
    "local": {"provider": "local"},
    "localhost": {"provider": "local"},
}


class TargetInventory:
    """Normalised view of the playbook's targets and groups."""

    def __init__(self, targets: Optional[Dict[str, Any]] = None):
        """
        Build the inventory.

        Args:
            targets: Mapping of target name to options (may be None)
        """
        self.hosts: Dict[str, Dict[str, Any]] = {}
        self.groups: Dict[str, Set[str]] = {}

        for name, options in IMPLICIT_TARGETS.items():
            self.hosts[name] = dict(options)

        for name, options in (targets or {}).items():
            options = dict(options or {})
            options.setdefault("provider", "local")
            self.hosts[name] = options
            for group in options.get("groups") or []:
                self.groups.setdefault(group, set()).add(name)

    def get(self, name: str) -> Dict[str, Any]:
        if name not in self.hosts:
            raise TargetResolutionError(f"Unknown target '{name}'")
        return self.hosts[name]

    def resolve(self, pattern: str) -> List[str]:
        """
        Expand a target pattern into ordered target names.

        Args:
            pattern: e.g. ``web``, ``all``, ``db*``, ``all:!local``, ``web,@prod``

        Returns:
            Matching target names in inventory order

        Raises:
            TargetResolutionError: If nothing matches
        """
        included: List[str] = []
        excluded: List[str] = []
        intersected: List[str] = []

        for part in (p.strip() for p in re.split(r"[:,]", pattern)):
            if not part:
                continue
            if part.startswith("!"):
                excluded.append(part[1:])
            elif part.startswith("@"):
                intersected.append(part[1:])
            else:
                included.append("*" if part == "all" else part)

        def matches(name: str, patterns: List[str]) -> bool:
            return any(fnmatch.fnmatchcase(name, p) for p in patterns)

        selected: List[str] = []
        labels = list(self.hosts) + [g for g in self.groups if g not in self.hosts]
        for label in labels:
            if matches(label, excluded):
                continue
            if label in IMPLICIT_TARGETS:
                # implicit aliases are only selected by exact name
                if label not in included:
                    continue
            elif included and not matches(label, included):
                continue
            if label in self.groups:
                members = [h for h in self.hosts if h in self.groups[label]]
            else:
                members = [label]
            for host in members:
                if host not in selected and not matches(host, excluded):
                    selected.append(host)

        for group in intersected:
            members = self.groups.get(group, set())
            selected = [h for h in selected if h in members]

        if not selected:
            raise TargetResolutionError(f"No targets match pattern '{pattern}'")
        return selected

    def resolve_all(self, patterns: List[str]) -> List[str]:
        """Resolve several patterns, preserving first-seen order."""
        names: List[str] = []
        for pattern in patterns:
            for name in self.resolve(pattern):
                if name not in names:
                    names.append(name)
        return names
