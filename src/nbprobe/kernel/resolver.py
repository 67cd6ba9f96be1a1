"""Kernel discovery across the installed providers."""

import inspect
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from nbprobe.kernel.types import PROVIDER_PRIORITY, KernelHandle, has_execute_code

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """Provider accessors installed in the host, keyed by provider tag.

    Known tags resolve in ``PROVIDER_PRIORITY`` order; any other tags follow
    in registration order.
    """

    def __init__(self):
        self._providers: dict[str, Any] = {}

    def register(self, tag: str, provider: Any) -> None:
        self._providers[tag] = provider

    def unregister(self, tag: str) -> None:
        self._providers.pop(tag, None)

    def get(self, tag: str) -> Optional[Any]:
        return self._providers.get(tag)

    def tags(self) -> list[str]:
        """All known provider tags in resolution order."""
        ordered = list(PROVIDER_PRIORITY)
        ordered.extend(tag for tag in self._providers if tag not in ordered)
        return ordered


@dataclass(frozen=True)
class KernelAccess:
    """A capability-checked kernel handle, valid for one execution."""
    provider: str
    handle: KernelHandle
    accessor: Any = None


@dataclass
class Resolution:
    providers: list[str] = field(default_factory=list)
    access: Optional[KernelAccess] = None


class KernelResolver:
    """Find a live kernel for a notebook. Nothing is cached between calls."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    async def resolve(self, notebook_id: str) -> Resolution:
        """Try providers in priority order and stop at the first usable kernel.

        ``providers`` lists every provider whose accessor is present, so callers
        can tell "nothing installed" apart from "no live kernel".
        """
        resolution = Resolution()
        for tag in self.registry.tags():
            accessor = self.registry.get(tag)
            get_kernel = getattr(accessor, "get_kernel", None)
            if not callable(get_kernel):
                continue
            resolution.providers.append(tag)

            try:
                handle = get_kernel(notebook_id)
                if inspect.isawaitable(handle):
                    handle = await handle
            except Exception as e:
                logger.warning(
                    "kernel lookup failed",
                    provider=tag,
                    notebook=notebook_id,
                    error=str(e),
                )
                continue

            if has_execute_code(handle):
                logger.debug("kernel resolved", provider=tag, notebook=notebook_id)
                resolution.access = KernelAccess(provider=tag, handle=handle, accessor=accessor)
                return resolution

        return resolution
