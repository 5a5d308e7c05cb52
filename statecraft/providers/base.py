"""
Execution provider contract.

A provider runs shell commands against exactly one target. The core only
depends on ``run``; ``exec`` and ``exec_safe`` layer the raising and
non-raising call styles on top of it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..exceptions import ExecutionFailedError
from .types import OsInfo, ProviderResponse


logger = logging.getLogger(__name__)


class Provider(ABC):
    """
    Base class for all execution providers.

    Subclasses implement the connection lifecycle and ``run``.
    """

    type_name: str = "provider"

    def __init__(self, name: str, options: Optional[Dict[str, Any]] = None):
        """
        Initialize provider.

        Args:
            name: Target name this provider serves
            options: Target options from the playbook
        """
        self.name = name
        self.options = dict(options or {})
        self.variables: Dict[str, Any] = dict(self.options.get("variables") or {})
        self.environment: Dict[str, str] = {
            str(k): str(v) for k, v in (self.options.get("environment") or {}).items()
        }
        self.os = OsInfo()
        self.initialized = False
        self.connected = False

    async def check(self) -> None:
        """Validate configuration before use."""

    async def initialize(self) -> None:
        """Allocate resources needed before connecting."""

    async def connect(self) -> None:
        """Establish the session with the target."""

    async def destroy(self) -> None:
        """Tear down the session."""

    async def get_os_info(self) -> OsInfo:
        """Probe the target operating system."""
        return OsInfo()

    @abstractmethod
    async def run(
        self,
        command: str,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
    ) -> ProviderResponse:
        """
        Run a command and return its raw response.

        Implementations must not raise on a non-zero exit code.
        """

    async def ensure_ready(self) -> "Provider":
        """Run the lifecycle up to a connected provider with OS facts."""
        if not self.initialized:
            await self.check()
            await self.initialize()
            self.initialized = True
        if not self.connected:
            await self.connect()
            self.os = await self.get_os_info()
            self.connected = True
            logger.debug(f"Provider '{self.name}' ready: {self.os.family}/{self.os.arch}")
        return self

    async def safe_shutdown(self) -> None:
        """Disconnect, logging instead of raising on failure."""
        try:
            await self.destroy()
            self.connected = False
        except Exception as e:
            logger.warning(f"Provider '{self.name}' destroy() failed: {e}")

    async def exec(self, command: str, **options: Any) -> ProviderResponse:
        """
        Run a command, raising ExecutionFailedError on non-zero exit.

        Returns:
            Provider response for a successful command
        """
        response = await self.run(command, **self._with_environment(options))
        if response.code != 0:
            raise ExecutionFailedError(
                response,
                f"Command failed with exit code {response.code}: {response}"
            )
        return response

    async def exec_safe(self, command: str, **options: Any) -> ProviderResponse:
        """Run a command and always return the response, never raising."""
        try:
            return await self.run(command, **self._with_environment(options))
        except Exception as e:
            logger.debug(f"Provider '{self.name}' failed to run command: {e}")
            return ProviderResponse(code=1, stdout="", stderr=str(e), command=command)

    def _with_environment(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """Merge target environment under per-call environment."""
        if not self.environment:
            return options
        merged = dict(options)
        merged["env"] = {**self.environment, **(options.get("env") or {})}
        return merged
