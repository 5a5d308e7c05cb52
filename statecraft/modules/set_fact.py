"""set_fact module: define variables for later tasks on the same target."""

from typing import Any, Dict

from ..exceptions import ModuleValidationError
from .base import Module, ModuleResult


class SetFactModule(Module):
    """
    Export variables.

    Parameters are either the facts themselves (``{name: value}``) or
    ``{"vars": {name: value}}``. Values arrive already rendered.
    """

    name = "set_fact"

    def validate_params(self, params: Any) -> Dict[str, Any]:
        params = super().validate_params(params)
        facts = params["vars"] if set(params) == {"vars"} else params
        if not isinstance(facts, dict) or not facts:
            raise ModuleValidationError("set_fact requires at least one variable")
        for key in facts:
            if not isinstance(key, str) or not key.isidentifier():
                raise ModuleValidationError(f"Invalid fact name '{key}'")
        return {"vars": facts}

    async def execute(self, ctx) -> ModuleResult:
        facts = self.params["vars"]
        for key, value in facts.items():
            ctx.export(key, value)
        return {"changed": False, "facts": dict(facts)}
