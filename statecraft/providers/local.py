"""
Local provider running commands on the controller host.

Commands are run through ``/bin/sh -c``; timeouts map to exit code 124 and
spawn errors to exit code 1, mirroring the conventions of remote providers.
"""

import asyncio
import logging
import os
import platform
from pathlib import Path
from typing import Dict, Optional

from .base import Provider
from .types import OsInfo, ProviderResponse, normalize_arch, normalize_family


logger = logging.getLogger(__name__)


class LocalProvider(Provider):
    """Executes commands on the machine running statecraft."""

    type_name = "local"

    async def get_os_info(self) -> OsInfo:
        """Detect OS facts with the platform module and /etc/os-release."""
        info = OsInfo(
            family=normalize_family(platform.system()),
            arch=normalize_arch(platform.machine()),
            kernel=platform.release(),
        )

        if info.family == "linux":
            for candidate in ("/etc/os-release", "/usr/lib/os-release"):
                path = Path(candidate)
                if path.is_file():
                    release = parse_os_release(path.read_text(encoding="utf-8"))
                    info.distro_id = release.get("ID")
                    info.version_id = release.get("VERSION_ID")
                    break

        return info

    async def run(
        self,
        command: str,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
    ) -> ProviderResponse:
        """Run a shell command locally and capture its output."""
        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        timeout = timeout if timeout is not None else self.options.get("timeout")
        logger.debug(f"Executing command: {command}")

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
                cwd=cwd or self.options.get("cwd"),
            )
        except OSError as e:
            return ProviderResponse(code=1, stdout="", stderr=str(e), command=command)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            # Timeout: exit code 124
            process.kill()
            await process.wait()
            return ProviderResponse(
                code=124,
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                command=command,
            )

        return ProviderResponse(
            code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            command=command,
        )


def parse_os_release(raw: str) -> Dict[str, str]:
    """Parse KEY=value lines from an os-release file."""
    result = {}
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        result[key.strip()] = value.strip().strip('"').strip("'")
    return result
