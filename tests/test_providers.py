"""Tests for the provider contract, the local provider and the provider registry."""

import pytest

from statecraft.exceptions import ExecutionFailedError, TargetResolutionError
from statecraft.providers.local import LocalProvider, parse_os_release
from statecraft.providers.registry import ProviderRegistry
from statecraft.providers.types import normalize_arch, normalize_family
from statecraft.targets import TargetInventory

from tests.fakes import FakeProvider


class TestLocalProvider:

    @pytest.mark.asyncio
    async def test_run_captures_output(self):
        response = await LocalProvider("localhost").run("echo out; echo err >&2; exit 3")
        assert response.code == 3
        assert response.stdout == "out\n"
        assert response.stderr == "err\n"

    @pytest.mark.asyncio
    async def test_exec_raises_on_failure(self):
        with pytest.raises(ExecutionFailedError) as exc_info:
            await LocalProvider("localhost").exec("echo nope >&2; exit 2")
        assert exc_info.value.result.code == 2
        assert exc_info.value.stderr == "nope\n"

    @pytest.mark.asyncio
    async def test_exec_safe_returns_failure(self):
        response = await LocalProvider("localhost").exec_safe("exit 5")
        assert response.code == 5

    @pytest.mark.asyncio
    async def test_timeout_maps_to_124(self):
        response = await LocalProvider("localhost").run("sleep 5", timeout=0.1)
        assert response.code == 124
        assert "timed out" in response.stderr

    @pytest.mark.asyncio
    async def test_target_environment_is_merged(self):
        provider = LocalProvider("localhost", {"environment": {"A": "target", "B": "target"}})
        response = await provider.exec('echo "$A $B"', env={"B": "call"})
        assert response.stdout == "target call\n"

    @pytest.mark.asyncio
    async def test_cwd(self, tmp_path):
        response = await LocalProvider("localhost").exec("pwd", cwd=str(tmp_path))
        assert response.stdout.strip() == str(tmp_path.resolve())

    def test_parse_os_release(self):
        release = parse_os_release('# comment\nID=debian\nVERSION_ID="12"\n')
        assert release == {"ID": "debian", "VERSION_ID": "12"}

    def test_normalizers(self):
        assert normalize_arch("amd64") == "x86_64"
        assert normalize_arch("AARCH64") == "arm64"
        assert normalize_arch("sparc") == "unknown"
        assert normalize_family("Linux") == "linux"
        assert normalize_family("FreeBSD") == "freebsd"


class TestProviderLifecycle:

    @pytest.mark.asyncio
    async def test_ensure_ready_reads_os_info_once(self):
        provider = FakeProvider(family="darwin")
        await provider.ensure_ready()
        assert provider.connected and provider.initialized
        assert provider.os.family == "darwin"
        provider.os.family = "changed"
        await provider.ensure_ready()
        assert provider.os.family == "changed"

    @pytest.mark.asyncio
    async def test_safe_shutdown_swallows_destroy_errors(self):
        class Broken(FakeProvider):
            async def destroy(self):
                raise RuntimeError("gone")

        provider = Broken()
        await provider.safe_shutdown()


class TestProviderRegistry:

    def test_for_target_reuses_instances(self):
        registry = ProviderRegistry(TargetInventory({"web1": {}}))
        provider = registry.for_target("web1")
        assert isinstance(provider, LocalProvider)
        assert registry.for_target("web1") is provider

    def test_registered_type(self):
        registry = ProviderRegistry(TargetInventory({"box": {"provider": "fake", "variables": {"a": 1}}}))
        registry.register(FakeProvider.type_name, FakeProvider)
        provider = registry.for_target("box")
        assert isinstance(provider, FakeProvider)
        assert provider.variables == {"a": 1}
        assert registry.list_types() == ["fake", "local"]

    def test_unknown_type(self):
        registry = ProviderRegistry(TargetInventory({"box": {"provider": "ssh"}}))
        with pytest.raises(TargetResolutionError, match="Unknown provider type 'ssh'"):
            registry.for_target("box")

    def test_unknown_target(self):
        with pytest.raises(TargetResolutionError, match="Unknown target"):
            ProviderRegistry().for_target("ghost")

    def test_register_rejects_non_providers(self):
        with pytest.raises(ValueError):
            ProviderRegistry().register("bogus", dict)

    @pytest.mark.asyncio
    async def test_shutdown_destroys_instances(self):
        registry = ProviderRegistry(TargetInventory({"box": {"provider": "fake"}}))
        registry.register(FakeProvider.type_name, FakeProvider)
        provider = registry.for_target("box")
        await registry.shutdown()
        assert provider.destroyed
