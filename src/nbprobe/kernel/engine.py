"""Execution engine: run code in a notebook's kernel and recover its outcome.

Each execution moves through ``idle -> queued -> running`` and ends in one of
``completed``, ``timed_out``, ``queue_timed_out`` or ``cancelled``. Two timers
race the output-consuming loop: the queue timer runs until the start marker is
seen, then the run timer takes over.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from nbprobe.kernel.envelope import (
    build_envelope,
    build_start_statement,
    extract_envelope_result,
    new_marker,
    select_execution_error,
)
from nbprobe.kernel.errors import (
    EnvelopeError,
    KernelError,
    NoLiveKernelError,
    ProviderUnavailableError,
    QueueTimeoutError,
    RunTimeoutError,
    TransportError,
)
from nbprobe.kernel.outputs import classify_output, decode_output_item
from nbprobe.kernel.resolver import KernelAccess, KernelResolver
from nbprobe.kernel.types import (
    STDOUT_MIME,
    TEXT_PLAIN_MIME,
    CancellationToken,
    OutputBatch,
)

logger = structlog.get_logger(__name__)

DEFAULT_RUN_TIMEOUT = 10.0
DEFAULT_WARN_AFTER = 2.0
DEFAULT_QUEUE_WARN_AFTER = 2.0

NO_PROVIDER_MESSAGE = "No compatible kernel provider found (Jupyter or marimo)."
NO_KERNEL_MESSAGE = "No active kernel for this notebook."

ACTION_MIMES = frozenset({STDOUT_MIME, TEXT_PLAIN_MIME})


@dataclass(frozen=True)
class ExecutionOptions:
    """Time budget and diagnostics label for one execution.

    Times are in seconds. A ``timeout`` of ``None`` disables the run timer;
    ``queue_timeout`` falls back to ``timeout`` when unset.
    """
    timeout: Optional[float] = DEFAULT_RUN_TIMEOUT
    queue_timeout: Optional[float] = None
    warn_after: float = DEFAULT_WARN_AFTER
    queue_warn_after: float = DEFAULT_QUEUE_WARN_AFTER
    operation: Optional[str] = None
    interrupt_on_timeout: bool = True

    @property
    def effective_queue_timeout(self) -> Optional[float]:
        return self.queue_timeout if self.queue_timeout is not None else self.timeout

    @property
    def label(self) -> str:
        return self.operation or "kernel command"


class ExecutionState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    QUEUE_TIMED_OUT = "queue_timed_out"
    CANCELLED = "cancelled"


def _strip_marker(text: str, marker: str) -> str:
    for variant in (f"{marker}\r\n", f"{marker}\n", marker):
        if variant in text:
            return text.replace(variant, "", 1)
    return text


class Execution:
    """A single run of already-wrapped code against a resolved kernel."""

    def __init__(
        self,
        access: KernelAccess,
        code: str,
        options: ExecutionOptions,
        start_marker: Optional[str] = None,
        mimes: Optional[frozenset] = None,
    ):
        self.access = access
        self.code = code
        self.options = options
        self.start_marker = start_marker
        self.mimes = mimes  # None keeps every non-error item
        self.token = CancellationToken()
        self.started = asyncio.Event()
        self.state = ExecutionState.IDLE
        self.chunks: list[str] = []
        self.transport_errors: list[str] = []
        self.batch_count = 0
        self._began = 0.0
        self._log = logger.bind(operation=options.label, provider=access.provider)

    def _transition(self, state: ExecutionState) -> None:
        self._log.debug("execution state", previous=self.state.value, state=state.value)
        self.state = state

    def _mark_started(self) -> None:
        self.started.set()
        self._transition(ExecutionState.RUNNING)
        waited = time.monotonic() - self._began
        if waited > self.options.queue_warn_after:
            self._log.warning("kernel queue delay", waited=round(waited, 3))

    def _handle_batch(self, batch: OutputBatch) -> None:
        channel = batch.channel
        for item in batch.items:
            error = classify_output(self.access.provider, channel, item)
            if error is not None:
                self.transport_errors.append(error)
                continue
            if self.mimes is not None and item.mime not in self.mimes:
                continue
            decoded = decode_output_item(item)
            if not decoded:
                continue
            if (
                self.start_marker is not None
                and not self.started.is_set()
                and self.start_marker in decoded
            ):
                decoded = _strip_marker(decoded, self.start_marker)
                self._mark_started()
            if decoded:
                self.chunks.append(decoded)

    async def _consume(self) -> None:
        iterator = self.access.handle.execute_code(self.code, self.token)
        try:
            async for batch in iterator:
                self.batch_count += 1
                self._log.debug(
                    "kernel output batch", batch=self.batch_count, items=len(batch.items)
                )
                self._handle_batch(batch)
                if self.token.is_cancellation_requested:
                    break
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _stop(self, consume: asyncio.Future) -> None:
        """Flip the token and ask the provider's iterator to stop."""
        self.token.cancel()
        if not consume.done():
            consume.cancel()
        try:
            await consume
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self._log.debug("kernel iterator stopped with error", error=str(e))

    async def _interrupt(self) -> None:
        interrupt = getattr(self.access.handle, "interrupt", None)
        if not callable(interrupt):
            self._log.warning("kernel interrupt not supported")
            return
        try:
            result = interrupt()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._log.warning("kernel interrupt failed", error=str(e))
            return
        self._log.info("kernel interrupted after timeout")

    async def _await_start(self, consume: asyncio.Future) -> None:
        waiter = asyncio.ensure_future(self.started.wait())
        try:
            done, _ = await asyncio.wait(
                {consume, waiter},
                timeout=self.options.effective_queue_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
        if done:
            return
        self._transition(ExecutionState.QUEUE_TIMED_OUT)
        await self._stop(consume)
        raise QueueTimeoutError(
            f"Kernel is busy: {self.options.label} did not start within "
            f"{self.options.effective_queue_timeout:g}s."
        )

    async def _await_finish(self, consume: asyncio.Future) -> None:
        done, _ = await asyncio.wait({consume}, timeout=self.options.timeout)
        if not done:
            self._transition(ExecutionState.TIMED_OUT)
            await self._stop(consume)
            if self.options.interrupt_on_timeout:
                await self._interrupt()
            raise RunTimeoutError(
                f"{self.options.label} timed out after {self.options.timeout:g}s."
            )
        self._transition(ExecutionState.COMPLETED)
        error = consume.exception()
        if error is None:
            return
        if isinstance(error, KernelError):
            raise error
        raise TransportError(str(error) or type(error).__name__) from error

    async def run(self) -> str:
        """Drive the execution to an end state and return the raw output."""
        self._began = time.monotonic()
        self._transition(ExecutionState.QUEUED)
        if self.start_marker is None:
            self._mark_started()

        consume = asyncio.ensure_future(self._consume())
        try:
            if not self.started.is_set():
                await self._await_start(consume)
            await self._await_finish(consume)
        except asyncio.CancelledError:
            self._transition(ExecutionState.CANCELLED)
            await self._stop(consume)
            raise
        finally:
            elapsed = time.monotonic() - self._began
            if elapsed > self.options.warn_after:
                self._log.warning("slow kernel execution", elapsed=round(elapsed, 3))

        self._log.debug("kernel execution finished", batches=self.batch_count)
        return "".join(self.chunks)


class ExecutionEngine:
    """Runs code for a notebook identity through whichever provider is live."""

    def __init__(
        self,
        resolver: KernelResolver,
        default_options: Optional[ExecutionOptions] = None,
        action_options: Optional[ExecutionOptions] = None,
    ):
        self.resolver = resolver
        self.default_options = default_options or ExecutionOptions()
        self.action_options = action_options or ExecutionOptions(timeout=None)

    async def acquire_kernel(self, notebook_id: str) -> KernelAccess:
        """Resolve a kernel or fail with a classified error."""
        resolution = await self.resolver.resolve(notebook_id)
        if resolution.access is not None:
            return resolution.access
        if not resolution.providers:
            raise ProviderUnavailableError(NO_PROVIDER_MESSAGE)
        raise NoLiveKernelError(NO_KERNEL_MESSAGE)

    async def run_for_result(
        self, notebook_id: str, code: str, options: Optional[ExecutionOptions] = None
    ) -> str:
        """Run an inspection query and return its cleaned output.

        Raises a single ``KernelError`` on failure.
        """
        options = options or self.default_options
        access = await self.acquire_kernel(notebook_id)

        marker = new_marker("result")
        start_marker = new_marker("start")
        wrapped = "\n".join([build_start_statement(start_marker), build_envelope(code, marker)])

        log = logger.bind(operation=options.label, notebook=notebook_id)
        log.debug("executing code for output", provider=access.provider)
        log.debug("python code", code=code)

        execution = Execution(access, wrapped, options, start_marker=start_marker)
        output = await execution.run()
        return self._resolve_outcome(output, marker, execution.transport_errors, log)

    async def run_fire_and_forget(
        self, notebook_id: str, code: str, options: Optional[ExecutionOptions] = None
    ) -> str:
        """Run a user action, streaming only stdout/plain-text output."""
        options = options or self.action_options
        access = await self.acquire_kernel(notebook_id)

        marker = new_marker("result")
        log = logger.bind(operation=options.label, notebook=notebook_id)
        log.debug("executing code", provider=access.provider)
        log.debug("python code", code=code)

        execution = Execution(access, build_envelope(code, marker), options, mimes=ACTION_MIMES)
        output = await execution.run()
        return self._resolve_outcome(output, marker, execution.transport_errors, log)

    @staticmethod
    def _resolve_outcome(output: str, marker: str, transport_errors: list[str], log) -> str:
        extraction = extract_envelope_result(output, marker)
        selection = select_execution_error(transport_errors, extraction.result)

        if selection.message is None:
            if transport_errors:
                log.debug("ignored transport errors", errors=transport_errors)
            return extraction.cleaned_output

        log.error(
            "kernel execution failed",
            error=selection.message,
            source=selection.source,
            traceback=selection.traceback,
        )
        if selection.source == "envelope":
            raise EnvelopeError(
                selection.message,
                exc_type=extraction.result.exc_type if extraction.result else None,
                traceback=selection.traceback,
                output=extraction.cleaned_output,
            )
        raise TransportError(selection.message)
