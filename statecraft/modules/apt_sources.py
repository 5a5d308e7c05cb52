"""
In-memory model of APT ``sources.list`` files.

Files are loaded from the target through the provider, edited in memory,
then written back with ``save``. Unmodified lines keep their original text
so that untouched files dump back byte-for-byte.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from ..exceptions import ModuleValidationError
from ..utils import unix


logger = logging.getLogger(__name__)

VALID_SOURCE_TYPES = {"deb", "deb-src"}

AptConfig = Dict[str, Union[str, List[str]]]

_CONFIG_LINE = re.compile(r'^(.+?)\s+"?(.*?)"?;$')


class InvalidSource(ModuleValidationError):
    """A repository line is malformed or commented out."""

    def __init__(self, line: str):
        super().__init__(f"Invalid or disabled APT source: {line}")
        self.line = line


def parse_apt_config(raw: str) -> AptConfig:
    """
    Parse ``apt-config dump`` output.

    Lines look like ``Dir::Etc::sourcelist "sources.list";``. A key that
    appears more than once collects its values into a list, in order.
    """
    result: AptConfig = {}
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        match = _CONFIG_LINE.match(line)
        if not match:
            continue
        key, value = match.group(1).strip(), match.group(2)
        current = result.get(key)
        if current is None:
            result[key] = value
        elif isinstance(current, list):
            current.append(value)
        else:
            result[key] = [current, value]
    return result


def _config_value(config: AptConfig, key: str, default: str) -> str:
    value = config.get(key, default)
    if isinstance(value, list):
        value = value[0] if value else default
    return value


@dataclass
class SourceEntry:
    """One line of a sources file."""
    valid: bool
    enabled: bool
    source: str
    comment: str
    raw: Optional[str] = None

    def render(self) -> str:
        if self.raw is not None:
            return self.raw + "\n"
        chunks = []
        if not self.enabled:
            chunks.append("# ")
        chunks.append(self.source)
        if self.comment:
            chunks.append(" # ")
            chunks.append(self.comment)
        return "".join(chunks) + "\n"


def parse_source_line(line: str, strict: bool = False) -> SourceEntry:
    """
    Split a sources line into its parts.

    Args:
        line: Raw line
        strict: Raise InvalidSource if the line is not an enabled deb/deb-src line
    """
    valid = False
    enabled = True
    comment = ""

    text = line.strip()
    if text.startswith("#"):
        enabled = False
        text = text[1:]

    hash_index = text.find("#")
    if hash_index > 0:
        comment = text[hash_index + 1:].strip()
        text = text[:hash_index]

    source = text.strip()
    chunks = source.split()
    if chunks and chunks[0] in VALID_SOURCE_TYPES:
        valid = True
        source = " ".join(chunks)

    if strict and (not valid or not enabled):
        raise InvalidSource(line)

    return SourceEntry(valid=valid, enabled=enabled, source=source, comment=comment,
                       raw=line.rstrip("\n"))


class SourcesList:
    """
    Sources files of one target, keyed by absolute path.

    The instance holds no provider or context reference, so ``copy.deepcopy``
    gives an independent snapshot that can be saved later to restore state.
    """

    def __init__(self, apt_config: AptConfig, mode: Optional[Union[str, int]] = None):
        self.apt_config = apt_config
        self.mode = mode
        self.files: Dict[str, List[SourceEntry]] = {}
        self.files_map: Dict[str, str] = {}
        self.new_repos: Set[str] = set()

        root = _config_value(apt_config, "Dir", "/")
        etc = _config_value(apt_config, "Dir::Etc", "etc/apt/")
        self.default_file = posixpath.join(
            root, etc, _config_value(apt_config, "Dir::Etc::sourcelist", "sources.list")
        )
        self.sources_dir = posixpath.join(
            root, etc, _config_value(apt_config, "Dir::Etc::sourceparts", "sources.list.d")
        )

    async def load_all(self, ctx) -> None:
        """Load the main sources file and every ``*.list`` in the parts directory."""
        provider = ctx.provider
        if await unix.path_is_file(provider, self.default_file):
            await self.load(ctx, self.default_file)

        for filename in await unix.list_files(provider, self.sources_dir, "*.list"):
            if await unix.path_is_symlink(provider, filename):
                link = await unix.readlink(provider, filename)
                if link:
                    self.files_map[filename] = link
            await self.load(ctx, filename)

    async def load(self, ctx, filename: str) -> None:
        content = await unix.read_file(ctx.provider, self.files_map.get(filename, filename))
        self.files[filename] = [parse_source_line(line) for line in content.splitlines()]
        ctx.logger.debug(f"Loaded {len(self.files[filename])} lines from {filename}")

    def __iter__(self) -> Iterator[Tuple[str, int, SourceEntry]]:
        """Iterate valid entries as ``(filename, index, entry)``."""
        for filename, entries in self.files.items():
            for index, entry in enumerate(entries):
                if entry.valid:
                    yield filename, index, entry

    def dump(self) -> Dict[str, str]:
        """Return ``{filename: content}`` for every file that has lines."""
        return {
            filename: "".join(entry.render() for entry in entries)
            for filename, entries in self.files.items()
            if entries
        }

    async def save(self, ctx) -> None:
        """
        Write files whose content changed and remove files that became empty.
        """
        provider = ctx.provider
        desired = self.dump()

        for filename in list(self.files):
            target = self.files_map.get(filename, filename)
            current = ""
            if await unix.path_is_file(provider, target):
                current = await unix.read_file(provider, target)

            if filename in desired:
                if desired[filename] == current:
                    continue
                await unix.mkdirp(provider, posixpath.dirname(filename) or "/")
                await unix.write_file_atomic(provider, target, desired[filename], self.file_mode)
                ctx.logger.debug(f"Wrote {target}")
            else:
                del self.files[filename]
                if current:
                    await unix.remove_path(provider, filename)
                    ctx.logger.debug(f"Removed {filename}")

    @property
    def file_mode(self) -> Optional[str]:
        if self.mode is None or self.mode == "":
            return None
        if isinstance(self.mode, int):
            return format(self.mode, "o")
        return str(self.mode)

    def modify(self, filename: str, index: int, enabled: Optional[bool] = None,
               source: Optional[str] = None, comment: Optional[str] = None) -> None:
        entries = self.files.get(filename)
        if not entries or index >= len(entries):
            return
        current = entries[index]
        updated = replace(
            current,
            enabled=current.enabled if enabled is None else enabled,
            source=current.source if source is None else source,
            comment=current.comment if comment is None else comment,
        )
        if updated != current:
            updated.raw = None
        entries[index] = updated

    def add_source(self, line: str, comment: str = "", filename: Optional[str] = None) -> None:
        """
        Ensure a repository line is present and enabled.

        A matching disabled line is re-enabled in place; otherwise the line is
        appended to ``filename`` (or a name derived from the repository URL).
        """
        source = parse_source_line(line, strict=True).source
        found = False
        for name, index, entry in list(self):
            if entry.source == source:
                self.modify(name, index, enabled=True)
                found = True
        if found:
            return

        target = self._expand_path(filename or self._suggest_filename(source))
        self.files.setdefault(target, []).append(
            SourceEntry(valid=True, enabled=True, source=source, comment=comment)
        )
        self.new_repos.add(target)

    def remove_source(self, line: Optional[str] = None, regexp: Optional[str] = None) -> None:
        """Remove enabled lines equal to ``line`` or matching ``regexp``."""
        source = None
        pattern = None
        if regexp:
            pattern = re.compile(regexp)
        elif line:
            source = parse_source_line(line, strict=True).source
        else:
            return

        for filename, entries in self.files.items():
            self.files[filename] = [
                entry for entry in entries
                if not (entry.valid and entry.enabled and (
                    entry.source == source or (pattern is not None and pattern.search(entry.source))
                ))
            ]

    def _expand_path(self, filename: str) -> str:
        if not filename.endswith(".list"):
            filename = f"{filename}.list"
        if "/" in filename:
            return filename
        return posixpath.join(self.sources_dir.rstrip("/"), filename)

    @staticmethod
    def _suggest_filename(line: str) -> str:
        work = re.sub(r"\[[^\]]+\]", "", line)
        work = re.sub(r"\w+://", "", work)
        parts = [p for p in work.split() if p not in VALID_SOURCE_TYPES]
        if not parts:
            return "sources.list"
        host = parts[0].split("@")[-1]
        base = "_".join(re.sub(r"[^a-zA-Z0-9]", " ", host).split())
        return f"{base}.list"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": {name: [entry.source for entry in entries] for name, entries in self.files.items()},
            "files_map": dict(self.files_map),
            "default_file": self.default_file,
            "sources_dir": self.sources_dir,
            "new_repos": sorted(self.new_repos),
        }
