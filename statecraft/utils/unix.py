"""
POSIX file helpers executed through a provider.

Every helper takes the provider explicitly so callers can share one module
instance between contexts without holding a connection reference.
"""

import shlex
from typing import List, Optional

from ..exceptions import ExecutionFailedError
from ..providers.base import Provider


def quote(path: str) -> str:
    return shlex.quote(str(path))


async def path_exists(provider: Provider, path: str) -> bool:
    response = await provider.exec_safe(f"test -e {quote(path)}")
    return response.code == 0


async def path_is_file(provider: Provider, path: str) -> bool:
    response = await provider.exec_safe(f"test -f {quote(path)}")
    return response.code == 0


async def path_is_symlink(provider: Provider, path: str) -> bool:
    response = await provider.exec_safe(f"test -L {quote(path)}")
    return response.code == 0


async def readlink(provider: Provider, path: str) -> str:
    response = await provider.exec(f"readlink -f {quote(path)}")
    return response.stdout.strip()


async def read_file(provider: Provider, path: str) -> str:
    """Return the contents of a file, raising ExecutionFailedError if unreadable."""
    response = await provider.exec(f"cat {quote(path)}")
    return response.stdout


async def write_file_atomic(
    provider: Provider,
    path: str,
    content: str,
    mode: Optional[str] = None
) -> None:
    """
    Write ``content`` to ``path`` through a temporary sibling file.

    The temporary file is renamed over the destination only once it has been
    fully written, so readers never observe a partial file.
    """
    tmp = f"{path}.statecraft-tmp"
    command = f"printf '%s' {quote(content)} > {quote(tmp)}"
    if mode:
        command += f" && chmod {quote(str(mode))} {quote(tmp)}"
    command += f" && mv -f {quote(tmp)} {quote(path)}"
    response = await provider.exec_safe(command)
    if response.code != 0:
        await provider.exec_safe(f"rm -f {quote(tmp)}")
        raise ExecutionFailedError(response, f"Failed to write {path}: {response}")


async def remove_path(provider: Provider, path: str) -> None:
    await provider.exec(f"rm -f {quote(path)}")


async def mkdirp(provider: Provider, path: str) -> None:
    await provider.exec(f"mkdir -p {quote(path)}")


async def list_files(provider: Provider, directory: str, pattern: str = "*") -> List[str]:
    """
    List regular files in ``directory`` matching a shell glob.

    Returns:
        Sorted absolute paths; empty if the directory does not exist
    """
    command = (
        f"cd {quote(directory)} 2>/dev/null || exit 0; "
        f"for f in {pattern}; do [ -f \"$f\" ] && printf '%s\\n' \"$PWD/$f\"; done; true"
    )
    response = await provider.exec(command)
    return sorted(line for line in response.stdout.splitlines() if line)
