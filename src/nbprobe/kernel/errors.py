"""Kernel execution error taxonomy.

Every failure surfaces to callers as exactly one ``KernelError`` carrying a
single human-readable message. Tracebacks travel alongside for logging only.
"""

from typing import Optional


class KernelError(Exception):
    """Base class for all execution failures."""

    def __init__(self, message: str, traceback: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.traceback = traceback


class ProviderUnavailableError(KernelError):
    """No installed provider exposes a kernel accessor."""


class NoLiveKernelError(KernelError):
    """A provider is installed but has no usable kernel for the notebook."""


class ExecutionTimeoutError(KernelError):
    """Execution exceeded one of its time budgets."""


class QueueTimeoutError(ExecutionTimeoutError):
    """Execution never started within the queue budget."""


class RunTimeoutError(ExecutionTimeoutError):
    """Execution started but did not finish within the run budget."""


class TransportError(KernelError):
    """Provider-reported error on the universal or a provider error channel."""


class EnvelopeError(KernelError):
    """The executed code raised; captured structurally by the envelope."""

    def __init__(
        self,
        message: str,
        exc_type: Optional[str] = None,
        traceback: Optional[str] = None,
        output: str = "",
    ):
        super().__init__(message, traceback=traceback)
        self.exc_type = exc_type
        self.output = output
