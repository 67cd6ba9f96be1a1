"""Kernel provider types shared by the resolver, engine and providers."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable


# Universal output mimes understood by every provider.
ERROR_MIME = "application/vnd.code.notebook.error"
STDOUT_MIME = "application/vnd.code.notebook.stdout"
STDERR_MIME = "application/vnd.code.notebook.stderr"
TEXT_PLAIN_MIME = "text/plain"
TEXT_HTML_MIME = "text/html"

# Provider tags, in resolution priority order.
JUPYTER = "jupyter"
MARIMO = "marimo"
PROVIDER_PRIORITY = (JUPYTER, MARIMO)


@dataclass
class OutputItem:
    """A single mime-tagged piece of kernel output."""
    mime: str
    data: Any


@dataclass
class OutputBatch:
    """A group of output items delivered together by a provider."""
    items: list[OutputItem] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def channel(self) -> Optional[str]:
        """Out-of-band channel tag (e.g. ``stderr``, ``marimo-error``)."""
        value = self.metadata.get("channel")
        return value if isinstance(value, str) else None


class CancellationToken:
    """Cooperative cancellation signal handed to a provider's iterator."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()


@runtime_checkable
class KernelHandle(Protocol):
    """A live kernel that can execute code and stream back output."""

    def execute_code(
        self, code: str, token: CancellationToken
    ) -> AsyncIterator[OutputBatch]: ...


class KernelProvider(Protocol):
    """Host integration exposing a kernel accessor for notebooks.

    ``get_kernel`` may be a plain function or a coroutine function.
    """

    def get_kernel(self, notebook_id: str) -> Any: ...


def has_execute_code(candidate: Any) -> bool:
    """Structural capability check: does the object expose ``execute_code``?"""
    return candidate is not None and callable(getattr(candidate, "execute_code", None))
