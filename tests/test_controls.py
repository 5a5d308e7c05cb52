"""
Tests for the control chain: when, environment, until, loop and register,
and the order in which they compose.
"""

import pytest

from statecraft.exceptions import ModuleValidationError
from statecraft.task.controls import (
    CONTROLS,
    Control,
    compose,
    loop_entries,
    normalize_loop_config,
)

from tests.fakes import FakeProvider


class Counter:
    """Base execute function recording every invocation."""

    def __init__(self, results=None):
        self.calls = 0
        self.seen_items = []
        self.results = results or {}

    async def __call__(self, ctx):
        self.calls += 1
        item = ctx.variables.get("item")
        self.seen_items.append(item)
        return dict(self.results.get(item, {"changed": False}))


class TestComposition:
    """Fold order."""

    def test_priorities(self):
        assert [(c.config_key, c.priority) for c in sorted(CONTROLS, key=lambda c: c.priority)] == [
            ("when", 10), ("environment", 10), ("until", 50), ("loop", 100), ("register", 1000),
        ]

    @pytest.mark.asyncio
    async def test_last_applied_is_outermost(self, make_ctx):
        order = []

        def tracer(label):
            def wrap(config, base):
                async def run(ctx):
                    order.append(f"{label}:enter")
                    result = await base(ctx)
                    order.append(f"{label}:exit")
                    return result
                return run
            return wrap

        async def base(ctx):
            order.append("base")
            return {"changed": False}

        controls = [
            Control(1000, "outer", tracer("outer")),
            Control(10, "inner", tracer("inner")),
            Control(100, "middle", tracer("middle")),
        ]
        execute = compose(base, {"inner": 1, "middle": 1, "outer": 1}, controls)
        await execute(make_ctx())

        assert order == [
            "outer:enter", "middle:enter", "inner:enter", "base",
            "inner:exit", "middle:exit", "outer:exit",
        ]

    @pytest.mark.asyncio
    async def test_absent_keys_leave_base_untouched(self):
        async def base(ctx):
            return {"changed": True}

        assert compose(base, {}) is base
        assert compose(base, {"when": None}) is base


class TestWhen:
    """Precondition control."""

    @pytest.mark.asyncio
    async def test_false_condition_skips_without_calling_base(self, make_ctx):
        base = Counter()
        execute = compose(base, {"when": "enabled"})

        result = await execute(make_ctx({"enabled": False}))

        assert result == {"changed": False, "skipped": True}
        assert base.calls == 0

    @pytest.mark.asyncio
    async def test_true_condition_delegates(self, make_ctx):
        base = Counter()
        execute = compose(base, {"when": "count > 1"})

        result = await execute(make_ctx({"count": 2}))

        assert result == {"changed": False}
        assert base.calls == 1

    @pytest.mark.asyncio
    async def test_boolean_condition(self, make_ctx):
        base = Counter()
        assert (await compose(base, {"when": False})(make_ctx()))["skipped"] is True
        assert base.calls == 0


class TestLoop:
    """Iteration control."""

    def test_config_normalisation(self):
        assert normalize_loop_config(["a", "b"])["for"] == ["a", "b"]
        settings = normalize_loop_config({"for": "xs", "break_when": "item == 1"})
        assert settings["break_when"] == ["item == 1"]
        assert settings["index_var"] == "index"
        assert settings["loop_var"] == "item"
        assert settings["extended"] is False
        assert settings["extended_allitems"] is True

    def test_entries(self):
        assert loop_entries(["a", "b"]) == [(0, "a"), (1, "b")]
        assert loop_entries({"x": 1}) == [("x", 1)]
        assert loop_entries(()) == []

    def test_scalar_collection_is_rejected(self):
        with pytest.raises(ModuleValidationError, match="got str"):
            loop_entries("abc")
        with pytest.raises(ModuleValidationError, match="got NoneType"):
            loop_entries(None)

    @pytest.mark.asyncio
    async def test_scalar_for_expression_fails_instead_of_skipping(self, make_ctx):
        base = Counter()
        with pytest.raises(ModuleValidationError, match="got int"):
            await compose(base, {"loop": "count"})(make_ctx({"count": 3}))
        assert base.calls == 0

    @pytest.mark.asyncio
    async def test_break_when_stops_after_matching_item(self, make_ctx):
        base = Counter({
            "a": {"changed": True},
            "b": {"changed": False, "failed": True},
            "c": {"changed": False},
        })
        execute = compose(base, {"loop": {"for": ["a", "b", "c"], "break_when": ["item == 'b'"]}})

        result = await execute(make_ctx())

        assert base.calls == 2
        assert base.seen_items == ["a", "b"]
        assert len(result["results"]) == 2
        assert [r["item"] for r in result["results"]] == ["a", "b"]
        assert result["changed"] is True
        assert result["failed"] is True

    @pytest.mark.asyncio
    async def test_or_aggregation_all_false(self, make_ctx):
        execute = compose(Counter(), {"loop": ["x", "y"]})
        result = await execute(make_ctx())
        assert result["changed"] is False
        assert result["failed"] is False
        assert result["skipped"] is False

    @pytest.mark.asyncio
    async def test_for_expression_is_evaluated(self, make_ctx):
        base = Counter()
        execute = compose(base, {"loop": {"for": "packages | reverse | list"}})
        await execute(make_ctx({"packages": ["a", "b"]}))
        assert base.seen_items == ["b", "a"]

    @pytest.mark.asyncio
    async def test_mapping_iterates_keys_and_values(self, make_ctx):
        keys = []

        async def base(ctx):
            keys.append((ctx.variables["key"], ctx.variables["value"]))
            return {"changed": False}

        execute = compose(base, {"loop": {"for": {"x": 1, "y": 2}, "index_var": "key", "loop_var": "value"}})
        await execute(make_ctx())
        assert keys == [("x", 1), ("y", 2)]

    @pytest.mark.asyncio
    async def test_extended_metadata(self, make_ctx):
        snapshots = []

        async def base(ctx):
            snapshots.append(dict(ctx.variables["task_loop"]))
            return {"changed": False}

        execute = compose(base, {"loop": {"for": ["a", "b", "c"], "extended": True}})
        await execute(make_ctx())

        middle = snapshots[1]
        assert middle["index"] == 2
        assert middle["index0"] == 1
        assert middle["revindex"] == 2
        assert middle["revindex0"] == 1
        assert middle["first"] is False
        assert middle["last"] is False
        assert middle["length"] == 3
        assert middle["previtem"] == "a"
        assert middle["nextitem"] == "c"
        assert middle["allitems"] == ["a", "b", "c"]
        assert snapshots[0]["first"] is True and snapshots[0]["previtem"] is None
        assert snapshots[2]["last"] is True and snapshots[2]["nextitem"] is None

    @pytest.mark.asyncio
    async def test_extended_without_allitems(self, make_ctx):
        snapshots = []

        async def base(ctx):
            snapshots.append(ctx.variables["task_loop"]["allitems"])
            return {"changed": False}

        execute = compose(base, {"loop": {"for": [1], "extended": True, "extended_allitems": False}})
        await execute(make_ctx())
        assert snapshots == [None]

    @pytest.mark.asyncio
    async def test_when_is_evaluated_per_item(self, make_ctx):
        base = Counter()
        execute = compose(base, {"loop": ["a", "b", "c"], "when": "item != 'b'"})

        result = await execute(make_ctx())

        assert base.seen_items == ["a", "c"]
        assert result["results"][1] == {"changed": False, "skipped": True, "item": "b"}
        assert result["skipped"] is False

    @pytest.mark.asyncio
    async def test_skipped_only_when_every_item_skipped(self, make_ctx):
        execute = compose(Counter(), {"loop": ["a", "b"], "when": "false"})
        result = await execute(make_ctx())
        assert result["skipped"] is True
        assert result["changed"] is False

    @pytest.mark.asyncio
    async def test_empty_loop(self, make_ctx):
        base = Counter()
        result = await compose(base, {"loop": []})(make_ctx())
        assert base.calls == 0
        assert result["results"] == []


class RecordingProvider(FakeProvider):
    """Fake provider that keeps the environment of every command."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.environments = []

    async def run(self, command, env=None, timeout=None, cwd=None):
        self.environments.append(env)
        return await super().run(command, env=env, timeout=timeout, cwd=cwd)


async def run_true(ctx):
    await ctx.exec("true", env={"C": "call"})
    return {"changed": False}


class TestEnvironment:
    """Task-level environment control."""

    @pytest.mark.asyncio
    async def test_layers_provider_task_and_call_environment(self, make_ctx):
        provider = RecordingProvider(options={"environment": {"A": "provider", "B": "provider"}})
        ctx = make_ctx({"version": 3}, provider=provider)
        config = {"B": "task", "C": "task", "D": "{{ version }}", "E": None}

        await compose(run_true, {"environment": config})(ctx)

        assert provider.environments == [{"A": "provider", "B": "task", "C": "call", "D": "3"}]
        assert ctx.environment == {}

    @pytest.mark.asyncio
    async def test_expression_config(self, make_ctx):
        provider = RecordingProvider()
        ctx = make_ctx({"task_env": {"X": 1}}, provider=provider)
        await compose(run_true, {"environment": "task_env"})(ctx)
        assert provider.environments == [{"X": "1", "C": "call"}]

    @pytest.mark.asyncio
    async def test_rejects_non_mapping(self, make_ctx):
        with pytest.raises(ModuleValidationError, match="must be a mapping"):
            await compose(run_true, {"environment": "'nope'"})(make_ctx())


class TestUntil:
    """Retry-until control."""

    @pytest.mark.asyncio
    async def test_retries_until_condition_holds(self, make_ctx):
        calls = {"n": 0}

        async def base(ctx):
            calls["n"] += 1
            return {"changed": False, "value": calls["n"]}

        execute = compose(base, {"until": {"condition": "result.value >= 3", "retries": 5}})
        result = await execute(make_ctx())

        assert calls["n"] == 3
        assert result["attempts"] == 3
        assert not result.get("failed")

    @pytest.mark.asyncio
    async def test_exhausted_retries_mark_failed(self, make_ctx):
        base = Counter()
        execute = compose(base, {"until": {"condition": "false", "retries": 2}})
        result = await execute(make_ctx())

        assert base.calls == 3
        assert result["failed"] is True
        assert result["attempts"] == 3


class TestRegister:
    """Result capture control."""

    @pytest.mark.asyncio
    async def test_single_result(self, make_ctx):
        ctx = make_ctx()
        result = await compose(Counter(), {"register": "r"})(ctx)
        assert ctx.variables["r"] == result
        assert ctx.exported["r"] == result

    @pytest.mark.asyncio
    async def test_skip_result(self, make_ctx):
        ctx = make_ctx()
        result = await compose(Counter(), {"register": "r", "when": "false"})(ctx)
        assert ctx.variables["r"] == {"changed": False, "skipped": True} == result

    @pytest.mark.asyncio
    async def test_captures_aggregated_loop_result(self, make_ctx):
        ctx = make_ctx()
        result = await compose(Counter(), {"register": "r", "loop": ["a", "b"]})(ctx)
        assert ctx.variables["r"] == result
        assert len(ctx.variables["r"]["results"]) == 2
