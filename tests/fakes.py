"""
Test doubles.

FakeProvider serves a small in-memory filesystem and canned command
responses so modules can be exercised without touching the host.
"""

import fnmatch
import posixpath
import re
import shlex
from typing import Any, Callable, Dict, List, Optional, Set, Union

from statecraft.providers.base import Provider
from statecraft.providers.types import OsInfo, ProviderResponse


APT_CONFIG_DUMP = (
    'Dir "/";\n'
    'Dir::Etc "etc/apt/";\n'
    'Dir::Etc::sourcelist "sources.list";\n'
    'Dir::Etc::sourceparts "sources.list.d";\n'
    'APT::Update::Post-Invoke-Success "";\n'
)

Scripted = Union[ProviderResponse, Callable[[str], ProviderResponse], List[ProviderResponse]]

_LIST_FILES = re.compile(r"^cd (.+?) 2>/dev/null \|\| exit 0; for f in (\S+); do")


class FakeProvider(Provider):
    """
    Provider backed by a dict of files.

    Attributes:
        files: path -> content
        commands: Every command received, in order
        writes: Paths written or removed, in order
        binaries: Executables ``command -v`` reports as present
    """

    type_name = "fake"

    def __init__(
        self,
        name: str = "fake",
        options: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, str]] = None,
        binaries: Optional[Set[str]] = None,
        family: str = "linux"
    ):
        super().__init__(name, options)
        self.files: Dict[str, str] = dict(files or {})
        self.symlinks: Dict[str, str] = {}
        self.modes: Dict[str, str] = {}
        self.binaries = set(binaries if binaries is not None else {"apt-get", "apt-config", "sh"})
        self.commands: List[str] = []
        self.writes: List[str] = []
        self.scripts: List[tuple] = []
        self.os = OsInfo(family=family, arch="x86_64", distro_id="debian")
        self.destroyed = False

    def on(self, pattern: str, response: Scripted) -> "FakeProvider":
        """Answer commands matching ``pattern`` (regex search) with ``response``."""
        self.scripts.append((re.compile(pattern), response))
        return self

    async def get_os_info(self) -> OsInfo:
        return self.os

    async def destroy(self) -> None:
        self.destroyed = True

    async def run(self, command, env=None, timeout=None, cwd=None) -> ProviderResponse:
        self.commands.append(command)
        for pattern, response in self.scripts:
            if pattern.search(command):
                if callable(response):
                    return response(command)
                if isinstance(response, list):
                    return response.pop(0) if len(response) > 1 else response[0]
                return response
        return self._builtin(command)

    def _ok(self, command: str, stdout: str = "") -> ProviderResponse:
        return ProviderResponse(code=0, stdout=stdout, command=command)

    def _error(self, command: str, stderr: str, code: int = 1) -> ProviderResponse:
        return ProviderResponse(code=code, stderr=stderr, command=command)

    def _builtin(self, command: str) -> ProviderResponse:
        match = re.match(r"^command -v (\S+) >/dev/null 2>&1(; echo \$\?)?$", command)
        if match:
            found = match.group(1) in self.binaries
            if match.group(2):
                return self._ok(command, "0\n" if found else "1\n")
            return self._ok(command) if found else self._error(command, "", 1)

        match = _LIST_FILES.match(command)
        if match:
            directory = shlex.split(match.group(1))[0].rstrip("/")
            pattern = match.group(2)
            found = sorted(
                path for path in self.files
                if posixpath.dirname(path) == directory
                and fnmatch.fnmatch(posixpath.basename(path), pattern)
            )
            return self._ok(command, "".join(f"{path}\n" for path in found))

        if command == "apt-config dump":
            return self._ok(command, APT_CONFIG_DUMP)
        if command == "id -u":
            return self._ok(command, "0\n")
        if command.startswith("apt-get update"):
            return self._ok(command, "Reading package lists... Done\n")

        segments = [shlex.split(part) for part in command.split(" && ")]
        for tokens in segments:
            response = self._builtin_segment(command, tokens)
            if response.code != 0:
                return response
        return response

    def _builtin_segment(self, command: str, tokens: List[str]) -> ProviderResponse:
        name, args = tokens[0], tokens[1:]
        if name == "test":
            flag, path = args
            if flag == "-L":
                return self._ok(command) if path in self.symlinks else self._error(command, "")
            return self._ok(command) if path in self.files else self._error(command, "")
        if name == "readlink":
            return self._ok(command, self.symlinks.get(args[-1], args[-1]) + "\n")
        if name == "cat":
            path = args[-1]
            if path not in self.files:
                return self._error(command, f"cat: {path}: No such file or directory")
            return self._ok(command, self.files[path])
        if name == "printf":
            # printf '%s' CONTENT > TMP
            self.files[args[3]] = args[1]
            return self._ok(command)
        if name == "chmod":
            self.modes[args[1]] = args[0]
            return self._ok(command)
        if name == "mv":
            source, destination = args[-2], args[-1]
            self.files[destination] = self.files.pop(source)
            if source in self.modes:
                self.modes[destination] = self.modes.pop(source)
            self.writes.append(destination)
            return self._ok(command)
        if name == "rm":
            path = args[-1]
            if self.files.pop(path, None) is not None:
                self.writes.append(path)
            return self._ok(command)
        if name == "mkdir":
            return self._ok(command)
        return self._ok(command)
