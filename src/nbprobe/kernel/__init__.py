"""Kernel execution engine package."""

from .types import (
    ERROR_MIME,
    JUPYTER,
    MARIMO,
    STDERR_MIME,
    STDOUT_MIME,
    TEXT_HTML_MIME,
    TEXT_PLAIN_MIME,
    CancellationToken,
    KernelHandle,
    OutputBatch,
    OutputItem,
)
from .errors import (
    EnvelopeError,
    ExecutionTimeoutError,
    KernelError,
    NoLiveKernelError,
    ProviderUnavailableError,
    QueueTimeoutError,
    RunTimeoutError,
    TransportError,
)
from .resolver import KernelAccess, KernelResolver, ProviderRegistry, Resolution
from .engine import ExecutionEngine, ExecutionOptions, ExecutionState

__all__ = [
    "ERROR_MIME",
    "JUPYTER",
    "MARIMO",
    "STDERR_MIME",
    "STDOUT_MIME",
    "TEXT_HTML_MIME",
    "TEXT_PLAIN_MIME",
    "CancellationToken",
    "KernelHandle",
    "OutputBatch",
    "OutputItem",
    "EnvelopeError",
    "ExecutionTimeoutError",
    "KernelError",
    "NoLiveKernelError",
    "ProviderUnavailableError",
    "QueueTimeoutError",
    "RunTimeoutError",
    "TransportError",
    "KernelAccess",
    "KernelResolver",
    "ProviderRegistry",
    "Resolution",
    "ExecutionEngine",
    "ExecutionOptions",
    "ExecutionState",
]
