"""Jupyter kernel provider backed by jupyter_client's asyncio API."""

import json
import queue
from typing import Any, AsyncIterator, Optional

import structlog
from jupyter_client.manager import AsyncKernelManager

from nbprobe.kernel.types import (
    ERROR_MIME,
    STDERR_MIME,
    STDOUT_MIME,
    CancellationToken,
    OutputBatch,
    OutputItem,
)

logger = structlog.get_logger(__name__)


def iopub_to_batch(msg: dict) -> Optional[OutputBatch]:
    """Translate one iopub message into an output batch (None if not output)."""
    msg_type = msg.get("msg_type") or msg.get("header", {}).get("msg_type")
    content = msg.get("content", {})

    if msg_type == "stream":
        name = content.get("name", "stdout")
        mime = STDERR_MIME if name == "stderr" else STDOUT_MIME
        return OutputBatch(
            items=[OutputItem(mime=mime, data=content.get("text", ""))],
            metadata={"channel": name},
        )

    if msg_type in ("execute_result", "display_data"):
        data = content.get("data", {})
        items = [OutputItem(mime=mime, data=value) for mime, value in data.items()]
        return OutputBatch(items=items, metadata=dict(content.get("metadata", {})))

    if msg_type == "error":
        payload = {
            "name": content.get("ename", "Error"),
            "message": content.get("evalue", ""),
            "stack": "\n".join(content.get("traceback", [])),
        }
        return OutputBatch(
            items=[OutputItem(mime=ERROR_MIME, data=json.dumps(payload))],
            metadata={"channel": "error"},
        )

    return None


class JupyterKernel:
    """A live Jupyter kernel exposing ``execute_code`` and ``interrupt``."""

    def __init__(self, kernel_name: str = "python3", poll_interval: float = 0.1):
        self.kernel_name = kernel_name
        self.poll_interval = poll_interval
        self._km: Optional[AsyncKernelManager] = None
        self._kc: Any = None  # AsyncKernelClient

    @property
    def is_started(self) -> bool:
        return self._km is not None and self._kc is not None

    async def start(self) -> None:
        """Start the kernel."""
        if self.is_started:
            return

        self._km = AsyncKernelManager(kernel_name=self.kernel_name)
        await self._km.start_kernel()
        self._kc = self._km.client()
        self._kc.start_channels()
        await self._kc.wait_for_ready(timeout=60)
        logger.info("kernel started", kernel=self.kernel_name)

    async def shutdown(self) -> None:
        """Shutdown the kernel."""
        if self._kc:
            self._kc.stop_channels()
        if self._km:
            await self._km.shutdown_kernel(now=True)
        self._km = None
        self._kc = None

    async def is_alive(self) -> bool:
        return self._km is not None and await self._km.is_alive()

    async def interrupt(self) -> None:
        """Interrupt current execution."""
        if self._km:
            await self._km.interrupt_kernel()

    async def execute_code(
        self, code: str, token: CancellationToken
    ) -> AsyncIterator[OutputBatch]:
        """Execute code and yield its iopub output until the kernel goes idle."""
        if not self.is_started:
            await self.start()

        msg_id = self._kc.execute(code, allow_stdin=False)

        while not token.is_cancellation_requested:
            try:
                msg = await self._kc.get_iopub_msg(timeout=self.poll_interval)
            except queue.Empty:
                continue

            # Skip messages from other executions
            if msg.get("parent_header", {}).get("msg_id") != msg_id:
                continue

            if msg.get("msg_type") == "status":
                if msg.get("content", {}).get("execution_state") == "idle":
                    return
                continue

            batch = iopub_to_batch(msg)
            if batch is not None and batch.items:
                yield batch


class JupyterProvider:
    """Jupyter kernels keyed by notebook identity."""

    def __init__(self, kernel_name: str = "python3"):
        self.kernel_name = kernel_name
        self._kernels: dict[str, JupyterKernel] = {}

    async def start_kernel(self, notebook_id: str) -> JupyterKernel:
        kernel = self._kernels.get(notebook_id)
        if kernel is None:
            kernel = JupyterKernel(self.kernel_name)
            self._kernels[notebook_id] = kernel
        await kernel.start()
        return kernel

    async def get_kernel(self, notebook_id: str) -> Optional[JupyterKernel]:
        kernel = self._kernels.get(notebook_id)
        if kernel is None or not await kernel.is_alive():
            return None
        return kernel

    async def shutdown_kernel(self, notebook_id: str) -> None:
        kernel = self._kernels.pop(notebook_id, None)
        if kernel is not None:
            await kernel.shutdown()

    async def shutdown_all(self) -> None:
        for notebook_id in list(self._kernels):
            await self.shutdown_kernel(notebook_id)
