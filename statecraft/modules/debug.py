"""debug module: log a message or variable values."""

import json
import logging
from typing import Any, Dict

from ..exceptions import ModuleValidationError
from ..variables.lookups import get_path, split_path
from .base import Module, ModuleResult


LEVELS = {"debug", "info", "warning", "error"}


class DebugModule(Module):
    """
    Print diagnostics.

    Accepts a message string, a list of messages, or a mapping with
    ``msg``, ``var`` (name or list of dotted names), ``vars`` (inline
    mapping), ``label``, ``level`` and ``quiet``. Never changes the target.
    """

    name = "debug"

    def validate_params(self, params: Any) -> Dict[str, Any]:
        if isinstance(params, (str, list)):
            params = {"msg": params}
        params = super().validate_params(params)
        params.setdefault("level", "info")
        if params["level"] not in LEVELS:
            raise ModuleValidationError(
                f"Invalid level '{params['level']}': must be one of {', '.join(sorted(LEVELS))}"
            )
        return params

    async def execute(self, ctx) -> ModuleResult:
        lines = []
        if self.params.get("label"):
            lines.append(str(self.params["label"]))

        msg = self.params.get("msg")
        for message in (msg if isinstance(msg, list) else [msg]):
            if message is not None and message != "":
                lines.append(str(message))

        values: Dict[str, Any] = {}
        names = self.params.get("var")
        for name in ([names] if isinstance(names, str) else names or []):
            values[name] = get_path(ctx.variables, split_path([name]))
        values.update(self.params.get("vars") or {})

        if values:
            lines.append(json.dumps(values, indent=2, default=str))
        if not lines:
            lines.append("ok")

        output = "\n".join(lines)
        if not self.params.get("quiet"):
            ctx.logger.log(getattr(logging, self.params["level"].upper()), output)

        result: ModuleResult = {"changed": False, "msg": output}
        if values:
            result["values"] = values
        return result
