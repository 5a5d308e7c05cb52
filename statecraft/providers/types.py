"""
Provider type definitions.

Defines the response returned by every provider call and the operating
system facts a provider reports about its target.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional


@dataclass
class ProviderResponse:
    """
    Result of running one command on a target.

    Attributes:
        command: The command as sent to the target
        code: Exit code
        stdout: Captured standard output (decoded)
        stderr: Captured standard error (decoded)
    """
    code: int
    stdout: str = ""
    stderr: str = ""
    command: str = ""

    def __str__(self) -> str:
        return (self.stderr or self.stdout or "").strip()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OsInfo:
    """
    Operating system facts for a target.

    Attributes:
        family: OS family (linux, darwin, windows, ...) or 'unknown'
        arch: Normalised CPU architecture or 'unknown'
        kernel: Kernel release string, if known
        distro_id: Distribution identifier (ubuntu, debian, ...)
        version_id: Distribution version
    """
    family: str = "unknown"
    arch: str = "unknown"
    kernel: Optional[str] = None
    distro_id: Optional[str] = None
    version_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "x86_64": "x86_64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv7",
    "armv6l": "armv6",
    "i686": "i386",
    "i386": "i386",
    "x86": "i386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def normalize_arch(raw: str) -> str:
    """Map a platform-reported machine name onto a canonical architecture."""
    return ARCH_ALIASES.get((raw or "").strip().lower(), "unknown")


def normalize_family(raw: str) -> str:
    """Map a kernel/system name onto an OS family."""
    value = (raw or "").strip().lower()
    if value.startswith("linux"):
        return "linux"
    if value.startswith("darwin"):
        return "darwin"
    if value.startswith("windows") or value.startswith("win32"):
        return "windows"
    if value.endswith("bsd"):
        return value
    return "unknown"
