"""Tests for the host-facing facade."""

import pytest

from conftest import EchoKernel, FakeProvider
from nbprobe.config import Settings
from nbprobe.host import NO_NOTEBOOK_MESSAGE, NotebookHost
from nbprobe.kernel.engine import NO_KERNEL_MESSAGE, NO_PROVIDER_MESSAGE
from nbprobe.kernel.errors import EnvelopeError
from nbprobe.kernel.resolver import ProviderRegistry
from nbprobe.kernel.types import JUPYTER


class RecordingMessenger:
    def __init__(self):
        self.info: list[str] = []
        self.errors: list[str] = []

    def show_information(self, message):
        self.info.append(message)

    def show_error(self, message):
        self.errors.append(message)


def make_host(kernels=None):
    registry = ProviderRegistry()
    if kernels is not None:
        registry.register(JUPYTER, FakeProvider(kernels))
    messenger = RecordingMessenger()
    host = NotebookHost(registry, Settings(refresh_debounce=0.01), messenger)
    return host, messenger


class TestRunFireAndForget:
    @pytest.mark.asyncio
    async def test_no_notebook(self):
        host, messenger = make_host()
        assert await host.run_fire_and_forget(None, "x = 1") == ""
        assert messenger.info == [NO_NOTEBOOK_MESSAGE]

    @pytest.mark.asyncio
    async def test_no_provider(self, notebook_id):
        host, messenger = make_host()
        assert await host.run_fire_and_forget(notebook_id, "x = 1") == ""
        assert messenger.info == [NO_PROVIDER_MESSAGE]

    @pytest.mark.asyncio
    async def test_no_kernel(self, notebook_id):
        host, messenger = make_host({})
        assert await host.run_fire_and_forget(notebook_id, "x = 1") == ""
        assert messenger.info == [NO_KERNEL_MESSAGE]

    @pytest.mark.asyncio
    async def test_runs_code(self, notebook_id):
        host, messenger = make_host({notebook_id: EchoKernel()})
        assert await host.run_fire_and_forget(notebook_id, 'print("ran")') == "ran"
        assert messenger.info == []

    @pytest.mark.asyncio
    async def test_execution_errors_raise(self, notebook_id):
        host, _ = make_host({notebook_id: EchoKernel()})
        with pytest.raises(EnvelopeError):
            await host.run_fire_and_forget(notebook_id, "undefined_name")


class TestCacheAccess:
    @pytest.mark.asyncio
    async def test_refresh_through_host(self, notebook_id):
        host, _ = make_host({notebook_id: EchoKernel()})
        result = await host.refresh_cache(notebook_id)
        assert result.error is None
        assert host.get_cached_entries(notebook_id) == []

    @pytest.mark.asyncio
    async def test_missing_variable(self, notebook_id):
        host, _ = make_host({notebook_id: EchoKernel()})
        await host.run_fire_and_forget(notebook_id, "x = 1")
        result = await host.refresh_entry(notebook_id, "x")
        assert result.entry is None
        assert host.get_cached_entry(notebook_id, "x") is None
        host.close()
