"""
Task controls.

A control wraps a task's execute function with extra behaviour. Controls
are folded over the module call in ascending priority, so the control with
the highest priority ends up outermost:

    register (1000) -> loop (100) -> until (50) -> environment (10) -> when (10) -> module

Controls with equal priority keep their declaration order. The ``when`` condition is therefore re-evaluated for every loop item and
``register`` always captures the aggregated loop result.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Tuple

from ..exceptions import ModuleValidationError


logger = logging.getLogger(__name__)

ExecuteFn = Callable[[Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class Control:
    """
    One control.

    Attributes:
        priority: Fold order; lower values wrap first and run innermost
        config_key: Task key that enables the control
        wrap: ``wrap(config, base) -> execute`` building the wrapper
    """
    priority: int
    config_key: str
    wrap: Callable[[Any, ExecuteFn], ExecuteFn]


async def _truthy(ctx, condition: Any) -> bool:
    if isinstance(condition, str):
        return bool(await ctx.evaluate_expression(condition))
    return bool(condition)


def when_control(condition: Any, base: ExecuteFn) -> ExecuteFn:
    async def run_when(ctx) -> Dict[str, Any]:
        if not await _truthy(ctx, condition):
            ctx.logger.debug(f"[when] skipped: {condition}")
            return {"changed": False, "skipped": True}
        return await base(ctx)
    return run_when


def environment_control(config: Any, base: ExecuteFn) -> ExecuteFn:
    """
    Export task-level environment variables to every command of the task.

    ``config`` is a mapping or an expression evaluating to one; its values
    are rendered per call. Provider environment < task environment <
    per-command environment.
    """
    async def run_environment(ctx) -> Dict[str, Any]:
        environment = config
        if isinstance(environment, str):
            environment = await ctx.evaluate_expression(environment)
        if environment is None:
            environment = {}
        if not isinstance(environment, Mapping):
            raise ModuleValidationError(
                f"'environment' must be a mapping, got {type(environment).__name__}"
            )
        rendered = await ctx.render(dict(environment))
        previous = ctx.environment
        ctx.environment = {
            **previous,
            **{str(k): str(v) for k, v in rendered.items() if v is not None},
        }
        try:
            return await base(ctx)
        finally:
            ctx.environment = previous
    return run_environment


def normalize_until_config(config: Any) -> Dict[str, Any]:
    if isinstance(config, Mapping):
        settings = {"retries": 3, "delay": 0, **config}
    else:
        settings = {"condition": config, "retries": 3, "delay": 0}
    if not settings.get("condition"):
        raise ModuleValidationError("'until' requires a condition")
    if not isinstance(settings["retries"], int) or settings["retries"] < 0:
        raise ModuleValidationError("'until.retries' must be a non-negative integer")
    return settings


def until_control(config: Any, base: ExecuteFn) -> ExecuteFn:
    """
    Re-run the inner function until ``condition`` holds.

    The condition sees the latest attempt's result as ``result``. After
    ``retries`` extra attempts the last result is returned marked failed.
    """
    settings = normalize_until_config(config)

    async def run_until(ctx) -> Dict[str, Any]:
        attempts = 0
        while True:
            result = await base(ctx)
            attempts += 1
            ctx.variables["result"] = result
            if await _truthy(ctx, settings["condition"]):
                break
            if attempts > settings["retries"]:
                result = {**result, "failed": True,
                          "msg": f"Condition '{settings['condition']}' not met after {attempts} attempts"}
                break
            ctx.logger.debug(f"[until] attempt {attempts} did not satisfy condition, retrying")
            if settings["delay"]:
                await asyncio.sleep(settings["delay"])
        return {**result, "attempts": attempts, "retries": settings["retries"]}
    return run_until


def normalize_loop_config(config: Any) -> Dict[str, Any]:
    settings = dict(config) if isinstance(config, Mapping) and "for" in config else {"for": config}
    for key, value in (
        ("index_var", "index"),
        ("loop_var", "item"),
        ("extended", False),
        ("extended_allitems", True),
        ("break_when", []),
        ("pause", 0),
        ("label", None),
    ):
        settings.setdefault(key, value)
    if isinstance(settings["break_when"], str):
        settings["break_when"] = [settings["break_when"]]
    return settings


def loop_entries(collection: Any) -> List[Tuple[Any, Any]]:
    """
    Normalise a loop collection to ``(key, value)`` pairs.

    Raises:
        ModuleValidationError: If the value is not a list or mapping
    """
    if isinstance(collection, Mapping):
        return list(collection.items())
    if isinstance(collection, Iterable) and not isinstance(collection, (str, bytes)):
        return list(enumerate(collection))
    raise ModuleValidationError(
        f"Loop value must be a list or mapping, got {type(collection).__name__}"
    )


def loop_control(config: Any, base: ExecuteFn) -> ExecuteFn:
    """
    Run the inner function once per loop entry, sequentially.

    ``changed`` and ``failed`` are OR-ed across iterations; ``skipped`` is
    true only when every processed iteration was skipped.
    """
    settings = normalize_loop_config(config)

    async def run_loop(ctx) -> Dict[str, Any]:
        ctx.logger.debug("[loop] start")
        collection = settings["for"]
        if isinstance(collection, str):
            collection = await ctx.evaluate_expression(collection)
        entries = loop_entries(collection)
        items = [value for _, value in entries]

        aggregate: Dict[str, Any] = {"changed": False, "failed": False, "skipped": True, "results": []}
        for position, (key, value) in enumerate(entries):
            if position and settings["pause"]:
                await asyncio.sleep(settings["pause"])

            ctx.variables[settings["index_var"]] = key
            ctx.variables[settings["loop_var"]] = value
            if settings["extended"]:
                ctx.variables["task_loop"] = {
                    "allitems": items if settings["extended_allitems"] else None,
                    "index": position + 1,
                    "index0": position,
                    "revindex": len(items) - position,
                    "revindex0": len(items) - position - 1,
                    "first": position == 0,
                    "last": position == len(items) - 1,
                    "length": len(items),
                    "previtem": items[position - 1] if position > 0 else None,
                    "nextitem": items[position + 1] if position + 1 < len(items) else None,
                }

            label = value
            if settings["label"]:
                label = await ctx.evaluate(settings["label"])
            ctx.logger.debug(f"[loop] {position} {key} {label}")

            result = dict(await base(ctx))
            result["item"] = value
            aggregate["changed"] = aggregate["changed"] or bool(result.get("changed"))
            aggregate["failed"] = aggregate["failed"] or bool(result.get("failed"))
            aggregate["skipped"] = aggregate["skipped"] and bool(result.get("skipped"))
            aggregate["results"].append(result)

            stop = False
            for condition in settings["break_when"]:
                if await _truthy(ctx, condition):
                    ctx.logger.debug(f"[loop] break_when matched: {condition}")
                    stop = True
                    break
            if stop:
                break

        ctx.logger.debug("[loop] end")
        return aggregate
    return run_loop


def register_control(name: Any, base: ExecuteFn) -> ExecuteFn:
    if not isinstance(name, str) or not name.isidentifier():
        raise ModuleValidationError(f"Invalid register name '{name}'")

    async def run_register(ctx) -> Dict[str, Any]:
        result = await base(ctx)
        ctx.export(name, result)
        ctx.logger.debug(f"[register] {name}")
        return result
    return run_register


CONTROLS: List[Control] = [
    Control(priority=10, config_key="when", wrap=when_control),
    Control(priority=10, config_key="environment", wrap=environment_control),
    Control(priority=50, config_key="until", wrap=until_control),
    Control(priority=100, config_key="loop", wrap=loop_control),
    Control(priority=1000, config_key="register", wrap=register_control),
]

CONTROL_KEYS = [control.config_key for control in CONTROLS]


def compose(base: ExecuteFn, config: Mapping[str, Any], controls: Iterable[Control] = CONTROLS) -> ExecuteFn:
    """
    Fold the enabled controls over ``base``.

    A control is enabled when its ``config_key`` is present in ``config``
    with a value other than None.
    """
    execute = base
    for control in sorted(controls, key=lambda c: c.priority):
        if config.get(control.config_key) is not None:
            execute = control.wrap(config[control.config_key], execute)
    return execute
