"""
apt_repository module: manage repository lines in APT sources files.

Example task:

    - name: Add a repo line and refresh cache
      apt_repository:
        state: present
        repo: "deb http://deb.debian.org/debian bookworm main"
        update_cache: true
"""

import copy
import re
import shlex
from typing import Any, Dict, List, Optional

from ..exceptions import ModuleValidationError, PreconditionError
from ..exec.retry import RetryPolicy
from ..utils import unix
from .apt_sources import AptConfig, SourcesList, parse_apt_config
from .base import Module, ModuleResult


_BRACKET_OPTIONS = re.compile(r"\[[^\]]*\]")
_SOURCE_TYPE = re.compile(r"^deb(-src)?$")

REQUIRED_BINARIES = ("apt-get", "apt-config")


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if isinstance(v, str)]
    return [value] if isinstance(value, str) else []


class AptRepositoryModule(Module):
    """
    Ensure repository lines are present in, or absent from, the sources files.

    Parameters:
        state: ``present`` (default) or ``absent``
        repo: Line or list of lines; required for ``present``
        regexp: Remove lines matching this pattern (``absent`` only)
        filename: Destination file for added lines
        update_cache: Run ``apt-get update`` after a change
        update_cache_retries: Attempts for the cache refresh (default 5)
        update_cache_retry_max_delay: Backoff ceiling in seconds (default 12)
        check_mode: Report changes without writing
        mode: File mode for written files
    """

    name = "apt_repository"
    constraints = {"platform": {"linux": True}}

    def __init__(self, params: Any = None):
        super().__init__(params)
        self.apt_config: AptConfig = {}
        self.sources_list: Optional[SourcesList] = None
        self._initial: Optional[SourcesList] = None
        self._before: Dict[str, str] = {}
        self._after: Optional[Dict[str, str]] = None

    def validate_params(self, params: Any) -> Dict[str, Any]:
        params = super().validate_params(params)
        params.setdefault("state", "present")
        params.setdefault("update_cache", False)
        params.setdefault("update_cache_retries", 5)
        params.setdefault("update_cache_retry_max_delay", 12)
        params.setdefault("check_mode", False)
        if params["state"] not in ("present", "absent"):
            raise ModuleValidationError(
                f"Invalid state '{params['state']}': must be 'present' or 'absent'"
            )
        return params

    async def check(self, ctx) -> None:
        state = self.params["state"]
        regexp = self.params.get("regexp")
        if state == "present" and regexp:
            raise ModuleValidationError("'regexp' is not supported with state: 'present'")
        if regexp and self.params.get("repo"):
            raise ModuleValidationError("'regexp' and 'repo' cannot be used together")

        for binary in REQUIRED_BINARIES:
            response = await ctx.exec_safe(f"command -v {binary} >/dev/null 2>&1; echo $?")
            if response.stdout.strip() != "0":
                raise PreconditionError(f"{binary} is not available on the target system.")

        if state == "present":
            first = next((r for r in _as_list(self.params.get("repo")) if r.strip()), None)
            if first is None:
                raise ModuleValidationError(
                    "Invalid configuration: 'repo' must be a non-empty string or list of strings"
                )
            tokens = _BRACKET_OPTIONS.sub("", first).split()
            if not tokens or not _SOURCE_TYPE.match(tokens[0]):
                raise ModuleValidationError("Repository line must start with 'deb' or 'deb-src'")

        response = await ctx.exec("apt-config dump")
        self.apt_config = parse_apt_config(response.stdout)

    async def initialize(self, ctx) -> None:
        self.sources_list = SourcesList(self.apt_config, mode=self.params.get("mode"))
        await self.sources_list.load_all(ctx)

    async def execute(self, ctx) -> ModuleResult:
        state = self.params["state"]
        sources_list = self.sources_list
        self._initial = copy.deepcopy(sources_list)
        self._before = sources_list.dump()
        self._after = None

        if state == "present":
            filename = (self.params.get("filename") or "").strip() or None
            for repo in _as_list(self.params.get("repo")):
                if repo.strip():
                    sources_list.add_source(repo, "", filename)
        else:
            repos = [r for r in _as_list(self.params.get("repo")) if r]
            if repos:
                for repo in repos:
                    sources_list.remove_source(repo)
            elif self.params.get("regexp"):
                sources_list.remove_source(regexp=self.params["regexp"])

        before = self._before
        after = sources_list.dump()
        changed = before != after

        diff: List[Dict[str, str]] = []
        sources_added: List[str] = []
        sources_removed: List[str] = []
        if changed:
            sources_added = [name for name in after if name not in before]
            sources_removed = [name for name in before if name not in after]
            for name in list(before) + sources_added:
                if before.get(name, "") != after.get(name, ""):
                    diff.append({
                        "before": before.get(name, ""),
                        "after": after.get(name, ""),
                        "before_header": name if before.get(name) else "/dev/null",
                        "after_header": name if after.get(name) else "/dev/null",
                    })

        if changed and not (self.params["check_mode"] or ctx.check_mode):
            self._after = after
            await sources_list.save(ctx)
            if self.params["update_cache"]:
                await self.update_cache(ctx)

        return {
            "changed": changed,
            "repo": self.params.get("repo"),
            "state": state,
            "sources_added": sources_added,
            "sources_removed": sources_removed,
            "diff": diff,
        }

    async def update_cache(self, ctx) -> None:
        """Refresh the package cache, retrying with exponential backoff."""
        policy = RetryPolicy.for_cache_update(
            retries=self.params["update_cache_retries"],
            max_delay=self.params["update_cache_retry_max_delay"],
        )
        last_error = ""
        for attempt in range(policy.max_attempts):
            response = await ctx.exec_safe("apt-get update -y")
            if response.code == 0:
                return
            last_error = str(response) or "unknown reason"
            ctx.warn(f"Failed to update cache after {attempt + 1} attempts due to {last_error}")
            if policy.should_retry(response.code, attempt):
                ctx.warn(
                    f"Sleeping for {round(policy.delay_for(attempt))} seconds, "
                    "before attempting to update the cache again"
                )
                await policy.wait(attempt)
        ctx.fail(f"Failed to update apt cache after {policy.max_attempts} retries: {last_error}")

    async def compensate(self, ctx, error: BaseException) -> None:
        """
        Put the sources files back the way they were before ``execute``.

        Runs only once saving has started. Files created by this run are
        deleted, changed files get their previous content back, and the
        pre-run model is saved last whatever happened before.
        """
        after = self._after
        if after is None or self._initial is None:
            return
        before = self._before
        ctx.warn(f"Reverting sources after failure: {error}")
        try:
            for name in after:
                if name not in before:
                    await ctx.exec_safe(f"rm -f -- {shlex.quote(name)}")
            for name, content in before.items():
                if name in after and after[name] != content:
                    target = self._initial.files_map.get(name, name)
                    await unix.write_file_atomic(ctx.provider, target, content)
        except Exception as e:
            ctx.logger.debug(f"Revert of sources failed: {e}")
        finally:
            try:
                await self._initial.save(ctx)
            except Exception as e:
                ctx.logger.debug(f"Saving initial sources failed: {e}")
