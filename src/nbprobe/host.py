"""Host-facing facade: the calls UI surfaces and command handlers make."""

from typing import Optional, Protocol

import structlog
from rich.console import Console

from nbprobe.config import Settings
from nbprobe.inspect.cache import CacheStore, EntryResult, RefreshResult, create_cache_store
from nbprobe.inspect.types import CacheEntry
from nbprobe.kernel.engine import ExecutionEngine, ExecutionOptions
from nbprobe.kernel.errors import NoLiveKernelError, ProviderUnavailableError
from nbprobe.kernel.resolver import KernelResolver, ProviderRegistry

logger = structlog.get_logger(__name__)

NO_NOTEBOOK_MESSAGE = "open a notebook to run this command."


class HostMessenger(Protocol):
    def show_information(self, message: str) -> None: ...

    def show_error(self, message: str) -> None: ...


class ConsoleMessenger:
    """Shows host messages on a rich console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def show_information(self, message: str) -> None:
        self.console.print(f"[yellow]nbprobe: {message}[/yellow]")

    def show_error(self, message: str) -> None:
        self.console.print(f"[red]nbprobe: {message}[/red]")


class NotebookHost:
    """Wires registry, resolver, engine and cache for one host process."""

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        settings: Optional[Settings] = None,
        messenger: Optional[HostMessenger] = None,
    ):
        self.settings = settings or Settings()
        self.registry = registry or ProviderRegistry()
        self.messenger = messenger or ConsoleMessenger()
        self.resolver = KernelResolver(self.registry)
        self.engine = ExecutionEngine(
            self.resolver,
            default_options=self.settings.execution_options(),
            action_options=self.settings.action_options(),
        )
        self.cache: CacheStore = create_cache_store(self.engine, self.settings)

    async def run_fire_and_forget(
        self,
        notebook_id: Optional[str],
        code: str,
        options: Optional[ExecutionOptions] = None,
    ) -> str:
        """Run a user action. Missing notebook/provider/kernel shows a message
        and returns an empty string; execution errors still raise.
        """
        if not notebook_id:
            self.messenger.show_information(NO_NOTEBOOK_MESSAGE)
            return ""
        try:
            return await self.engine.run_fire_and_forget(notebook_id, code, options)
        except (ProviderUnavailableError, NoLiveKernelError) as e:
            logger.debug("action skipped", notebook=notebook_id, reason=e.message)
            self.messenger.show_information(e.message)
            return ""

    async def run_for_result(
        self, notebook_id: str, code: str, options: Optional[ExecutionOptions] = None
    ) -> str:
        return await self.engine.run_for_result(notebook_id, code, options)

    async def refresh_cache(self, notebook_id: str) -> RefreshResult:
        return await self.cache.refresh(notebook_id)

    async def refresh_entry(
        self, notebook_id: str, variable_name: str, include_details: bool = True
    ) -> EntryResult:
        return await self.cache.refresh_entry(notebook_id, variable_name, include_details)

    def get_cached_entries(self, notebook_id: str) -> list[CacheEntry]:
        return self.cache.entries(notebook_id)

    def get_cached_entry(self, notebook_id: str, variable_name: str) -> Optional[CacheEntry]:
        return self.cache.get(notebook_id, variable_name)

    def invalidate_entry(self, notebook_id: str, variable_name: str) -> None:
        self.cache.invalidate(notebook_id, variable_name)

    def clear_cache(self, notebook_id: str) -> None:
        self.cache.clear(notebook_id)

    def dispose(self, notebook_id: str) -> None:
        self.cache.dispose(notebook_id)

    def close(self) -> None:
        self.cache.close()
