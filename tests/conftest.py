"""Test fixtures: in-process kernels and providers."""

import asyncio
import contextlib
import io
from typing import Optional

import pytest
import structlog

from nbprobe.kernel.engine import ExecutionEngine
from nbprobe.kernel.resolver import KernelResolver, ProviderRegistry
from nbprobe.kernel.types import JUPYTER, STDOUT_MIME, OutputBatch, OutputItem

NOTEBOOK = "/work/analysis.ipynb"


class EchoKernel:
    """Runs code with exec() against its own namespace and streams stdout.

    ``queue_delay`` holds back all output (a busy kernel). ``run_delay`` sends
    the first line, then stalls before the rest (a long-running cell).
    """

    def __init__(self, queue_delay: float = 0.0, run_delay: float = 0.0, extra=None):
        self.queue_delay = queue_delay
        self.run_delay = run_delay
        self.extra = list(extra or [])
        self.namespace: dict = {}
        self.executed: list[str] = []
        self.interrupts = 0

    def interrupt(self):
        self.interrupts += 1

    async def execute_code(self, code, token):
        self.executed.append(code)
        if self.queue_delay:
            await asyncio.sleep(self.queue_delay)

        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            exec(compile(code, "<echo>", "exec"), self.namespace)
        text = buffer.getvalue()

        for batch in self.extra:
            yield batch

        head, sep, rest = text.partition("\n")
        yield _stdout(head + sep)
        if self.run_delay:
            await asyncio.sleep(self.run_delay)
        if rest:
            yield _stdout(rest)


class ScriptedKernel:
    """Yields a fixed list of batches regardless of the code."""

    def __init__(self, batches):
        self.batches = list(batches)
        self.executed: list[str] = []

    async def execute_code(self, code, token):
        self.executed.append(code)
        for batch in self.batches:
            yield batch


class RaisingKernel:
    """Fails mid-stream like a dropped connection."""

    def __init__(self, error: Exception):
        self.error = error

    async def execute_code(self, code, token):
        yield _stdout("partial\n")
        raise self.error


class FakeProvider:
    """Kernel accessor keyed by notebook identity."""

    def __init__(self, kernels: Optional[dict] = None, is_async: bool = False):
        self.kernels = dict(kernels or {})
        self.is_async = is_async
        self.lookups = 0

    def _lookup(self, notebook_id):
        self.lookups += 1
        return self.kernels.get(notebook_id)

    def get_kernel(self, notebook_id):
        if self.is_async:
            return self._async_lookup(notebook_id)
        return self._lookup(notebook_id)

    async def _async_lookup(self, notebook_id):
        return self._lookup(notebook_id)


def _stdout(text: str) -> OutputBatch:
    return OutputBatch(items=[OutputItem(mime=STDOUT_MIME, data=text)], metadata={"channel": "stdout"})


@pytest.fixture(autouse=True)
def reset_logging():
    """Commands configure structlog against the runner's streams; undo that."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def notebook_id():
    return NOTEBOOK


@pytest.fixture
def make_engine():
    """Build an engine with one provider serving ``kernel`` for NOTEBOOK."""

    def _make(kernel, provider: str = JUPYTER, **kwargs) -> ExecutionEngine:
        registry = ProviderRegistry()
        registry.register(provider, FakeProvider({NOTEBOOK: kernel}))
        return ExecutionEngine(KernelResolver(registry), **kwargs)

    return _make
