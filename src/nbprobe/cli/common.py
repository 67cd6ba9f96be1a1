"""Shared helpers for commands that talk to a live kernel."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import typer
from rich.console import Console
from rich.markup import escape

from nbprobe.config import Settings
from nbprobe.host import NotebookHost
from nbprobe.kernel.errors import KernelError
from nbprobe.kernel.jupyter import JupyterProvider
from nbprobe.kernel.resolver import ProviderRegistry
from nbprobe.kernel.types import JUPYTER

console = Console()


def notebook_identity(notebook: str) -> str:
    """Stable identity for a notebook path."""
    return str(Path(notebook).resolve())


@asynccontextmanager
async def open_host(notebook_id: str, settings: Settings) -> AsyncIterator[NotebookHost]:
    """Start a kernel for the notebook and yield a host wired to it.

    The kernel is shut down on exit.
    """
    provider = JupyterProvider(settings.kernel_name)
    registry = ProviderRegistry()
    registry.register(JUPYTER, provider)
    host = NotebookHost(registry, settings)

    try:
        try:
            await provider.start_kernel(notebook_id)
        except Exception as e:
            console.print(f"[red]Error: Failed to start kernel: {escape(str(e))}[/red]")
            console.print("[dim]Is ipykernel installed? Try: pip install ipykernel[/dim]")
            raise typer.Exit(1)
        yield host
    finally:
        host.close()
        await provider.shutdown_all()


async def run_setup(host: NotebookHost, notebook_id: str, setup: Optional[str]) -> None:
    """Run optional setup code before a query."""
    if setup:
        await host.run_fire_and_forget(notebook_id, setup, host.settings.action_options("setup"))


def report_kernel_error(e: KernelError) -> None:
    console.print(f"[red]Error: {escape(e.message)}[/red]")
    if e.traceback:
        console.print(e.traceback, markup=False, highlight=False, style="dim")
