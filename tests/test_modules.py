"""
Tests for the module lifecycle, constraints, the module registry and the
debug, set_fact and command modules.
"""

import logging

import pytest

from statecraft.exceptions import (
    ModuleContractError,
    ModuleValidationError,
    PreconditionError,
    UnknownModuleError,
)
from statecraft.modules.base import Module
from statecraft.modules.command import CommandModule
from statecraft.modules.debug import DebugModule
from statecraft.modules.registry import ModuleRegistry
from statecraft.modules.set_fact import SetFactModule
from statecraft.providers.types import ProviderResponse

from tests.fakes import FakeProvider


class RecordingModule(Module):
    """Records lifecycle phases; optionally fails in one of them."""

    name = "recording"

    def __init__(self, params=None, fail_in=None, result=None):
        super().__init__(params)
        self.fail_in = fail_in
        self.result = {"changed": True} if result is None else result
        self.phases = []

    async def _phase(self, name):
        self.phases.append(name)
        if self.fail_in == name:
            raise RuntimeError(f"{name} failed")

    async def check(self, ctx):
        await self._phase("check")

    async def initialize(self, ctx):
        await self._phase("initialize")

    async def execute(self, ctx):
        await self._phase("execute")
        return self.result

    async def cleanup(self, ctx):
        await self._phase("cleanup")

    async def compensate(self, ctx, error):
        await self._phase("compensate")


class TestLifecycle:
    """Phase ordering and error handling in Module.run."""

    @pytest.mark.asyncio
    async def test_phase_order(self, make_ctx):
        module = RecordingModule()
        assert await module.run(make_ctx()) == {"changed": True}
        assert module.phases == ["check", "initialize", "execute", "cleanup"]

    @pytest.mark.asyncio
    async def test_check_failure_skips_later_phases_but_cleans_up(self, make_ctx):
        module = RecordingModule(fail_in="check")
        with pytest.raises(RuntimeError, match="check failed"):
            await module.run(make_ctx())
        assert module.phases == ["check", "cleanup"]

    @pytest.mark.asyncio
    async def test_execute_failure_compensates(self, make_ctx):
        module = RecordingModule(fail_in="execute")
        with pytest.raises(RuntimeError, match="execute failed"):
            await module.run(make_ctx())
        assert module.phases == ["check", "initialize", "execute", "compensate", "cleanup"]

    @pytest.mark.asyncio
    async def test_compensation_error_does_not_mask_original(self, make_ctx):
        class BadCompensation(RecordingModule):
            async def compensate(self, ctx, error):
                raise RuntimeError("rollback exploded")

        with pytest.raises(RuntimeError, match="execute failed"):
            await BadCompensation(fail_in="execute").run(make_ctx())

    @pytest.mark.asyncio
    async def test_cleanup_error_is_suppressed(self, make_ctx):
        module = RecordingModule(fail_in="cleanup")
        assert await module.run(make_ctx()) == {"changed": True}

    @pytest.mark.asyncio
    async def test_cleanup_error_does_not_replace_execute_error(self, make_ctx):
        class DoubleFailure(RecordingModule):
            async def cleanup(self, ctx):
                raise RuntimeError("cleanup failed")

        with pytest.raises(RuntimeError, match="execute failed"):
            await DoubleFailure(fail_in="execute").run(make_ctx())

    @pytest.mark.asyncio
    async def test_non_mapping_result_is_contract_error(self, make_ctx):
        module = RecordingModule(result=["not", "a", "dict"])
        with pytest.raises(ModuleContractError):
            await module.run(make_ctx())


class TestConstraints:
    """Platform constraint checks."""

    @pytest.mark.asyncio
    async def test_any_platform(self, make_ctx):
        await RecordingModule().check_constraints(make_ctx(provider=FakeProvider(family="windows")))

    @pytest.mark.asyncio
    async def test_architecture_root_and_binaries(self, make_ctx):
        class Strict(RecordingModule):
            constraints = {"platform": {"linux": {
                "arch": ["x86_64"], "require_root": True, "binaries": ["systemctl"],
            }}}

        provider = FakeProvider(binaries={"systemctl"})
        await Strict().check_constraints(make_ctx(provider=provider))
        assert provider.commands == ["id -u", "command -v systemctl >/dev/null 2>&1"]

        with pytest.raises(PreconditionError, match="requires 'systemctl'"):
            await Strict().check_constraints(make_ctx(provider=FakeProvider(binaries=set())))

        non_root = FakeProvider(binaries={"systemctl"}).on(r"^id -u$", ProviderResponse(0, "1000\n"))
        with pytest.raises(PreconditionError, match="requires root"):
            await Strict().check_constraints(make_ctx(provider=non_root))

    @pytest.mark.asyncio
    async def test_wrong_architecture(self, make_ctx):
        class ArmOnly(RecordingModule):
            constraints = {"platform": {"linux": {"arch": ["arm64"]}}}

        with pytest.raises(PreconditionError, match="architecture 'x86_64'"):
            await ArmOnly().check_constraints(make_ctx())


class TestModuleRegistry:
    """Registration and lookup."""

    def test_builtins(self):
        assert ModuleRegistry().list_modules() == ["apt_repository", "command", "debug", "set_fact"]

    def test_duplicate_name_rejected(self):
        class Duplicate(RecordingModule):
            name = "debug"

        with pytest.raises(ValueError, match="already registered"):
            ModuleRegistry().register(Duplicate)

    def test_non_module_rejected(self):
        with pytest.raises(ValueError):
            ModuleRegistry().register(dict)

    def test_get_unknown(self):
        with pytest.raises(UnknownModuleError):
            ModuleRegistry().get("nope", {})

    def test_get_instantiates_with_params(self):
        module = ModuleRegistry().get("debug", "hello")
        assert isinstance(module, DebugModule)
        assert module.params["msg"] == "hello"

    def test_mapping_required(self):
        with pytest.raises(ModuleValidationError, match="must be a mapping"):
            ModuleRegistry().get("apt_repository", "deb http://x y z")


class TestDebugModule:

    @pytest.mark.asyncio
    async def test_message_and_vars(self, make_ctx, caplog):
        ctx = make_ctx({"app": {"port": 80}})
        module = DebugModule({"msg": "hello", "var": "app.port"})
        with caplog.at_level(logging.INFO):
            result = await module.run(ctx)

        assert result["changed"] is False
        assert result["values"] == {"app.port": 80}
        assert "hello" in caplog.text

    @pytest.mark.asyncio
    async def test_defaults_to_ok(self, make_ctx):
        result = await DebugModule({}).run(make_ctx())
        assert result["msg"] == "ok"

    def test_invalid_level(self):
        with pytest.raises(ModuleValidationError):
            DebugModule({"msg": "x", "level": "loud"})


class TestSetFactModule:

    @pytest.mark.asyncio
    async def test_exports_facts(self, make_ctx):
        ctx = make_ctx()
        result = await SetFactModule({"release": "bookworm", "mirrors": ["a"]}).run(ctx)
        assert result["facts"] == {"release": "bookworm", "mirrors": ["a"]}
        assert ctx.exported == {"release": "bookworm", "mirrors": ["a"]}
        assert ctx.variables["release"] == "bookworm"

    @pytest.mark.asyncio
    async def test_vars_form(self, make_ctx):
        ctx = make_ctx()
        await SetFactModule({"vars": {"a": 1}}).run(ctx)
        assert ctx.exported == {"a": 1}

    def test_invalid_names(self):
        with pytest.raises(ModuleValidationError):
            SetFactModule({"not-valid": 1})
        with pytest.raises(ModuleValidationError):
            SetFactModule({})


class TestCommandModule:

    @pytest.mark.asyncio
    async def test_runs_and_reports_output(self, make_ctx):
        provider = FakeProvider().on(r"^echo hi$", ProviderResponse(0, "hi\n"))
        result = await CommandModule("echo hi").run(make_ctx(provider=provider))
        assert result["changed"] is True
        assert result["rc"] == 0
        assert result["stdout"] == "hi\n"

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails(self, make_ctx):
        provider = FakeProvider().on(r"^false$", ProviderResponse(1, "", "boom"))
        result = await CommandModule({"cmd": "false"}).run(make_ctx(provider=provider))
        assert result["failed"] is True
        assert result["stderr"] == "boom"

    @pytest.mark.asyncio
    async def test_creates_guard(self, make_ctx):
        provider = FakeProvider(files={"/opt/app/installed": ""})
        result = await CommandModule({"cmd": "install.sh", "creates": "/opt/app/installed"}).run(
            make_ctx(provider=provider)
        )
        assert result["changed"] is False
        assert "install.sh" not in provider.commands

    @pytest.mark.asyncio
    async def test_removes_guard(self, make_ctx):
        provider = FakeProvider()
        result = await CommandModule({"cmd": "rm -rf /tmp/cache", "removes": "/tmp/cache"}).run(
            make_ctx(provider=provider)
        )
        assert result["changed"] is False
        assert provider.commands == ["test -e /tmp/cache"]

    @pytest.mark.asyncio
    async def test_check_mode(self, make_ctx):
        provider = FakeProvider()
        result = await CommandModule("reboot").run(make_ctx(provider=provider, check_mode=True))
        assert result["changed"] is True
        assert provider.commands == []

    def test_requires_cmd(self):
        with pytest.raises(ModuleValidationError):
            CommandModule({"creates": "/x"})
