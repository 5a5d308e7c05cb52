"""command module: run a shell command on the target."""

from typing import Any, Dict

from ..exceptions import ModuleValidationError
from ..utils import unix
from .base import Module, ModuleResult


class CommandModule(Module):
    """
    Run a command through the provider.

    ``creates`` skips the command when the path already exists; ``removes``
    skips it when the path is missing. A command that runs is reported as
    changed; a non-zero exit fails the task.
    """

    name = "command"

    def validate_params(self, params: Any) -> Dict[str, Any]:
        if isinstance(params, str):
            params = {"cmd": params}
        params = super().validate_params(params)
        if not isinstance(params.get("cmd"), str) or not params["cmd"].strip():
            raise ModuleValidationError("command requires a non-empty 'cmd'")
        return params

    async def execute(self, ctx) -> ModuleResult:
        cmd = self.params["cmd"]
        creates = self.params.get("creates")
        removes = self.params.get("removes")

        if creates and await unix.path_exists(ctx.provider, creates):
            return {"changed": False, "cmd": cmd, "msg": f"skipped, {creates} exists"}
        if removes and not await unix.path_exists(ctx.provider, removes):
            return {"changed": False, "cmd": cmd, "msg": f"skipped, {removes} does not exist"}
        if ctx.check_mode:
            return {"changed": True, "cmd": cmd, "msg": "skipped, running in check mode"}

        response = await ctx.exec_safe(
            cmd,
            env=self.params.get("env"),
            cwd=self.params.get("chdir"),
            timeout=self.params.get("timeout"),
        )
        result = {
            "changed": True,
            "cmd": cmd,
            "rc": response.code,
            "stdout": response.stdout,
            "stderr": response.stderr,
        }
        if response.code != 0:
            result["failed"] = True
            result["msg"] = f"Command failed with exit code {response.code}"
        return result
