"""Vars command implementation."""

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nbprobe.cli.common import notebook_identity, open_host, report_kernel_error, run_setup
from nbprobe.config import load_settings
from nbprobe.inspect.cache import RefreshResult
from nbprobe.kernel.errors import KernelError
from nbprobe.log import configure_logging

console = Console()


def _format_shape(shape) -> str:
    if shape is None:
        return ""
    return "(" + ", ".join(str(n) for n in shape) + ")"


def vars_list(
    notebook: str = typer.Argument(..., help="Notebook the kernel belongs to"),
    setup: Optional[str] = typer.Option(
        None, "--setup", "-s", help="Code to run before listing variables"
    ),
    details: bool = typer.Option(
        True, "--details/--summary", help="Include dims, shape and dtype for arrays"
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
) -> None:
    """List the inspectable variables in a notebook kernel."""
    settings = load_settings()
    settings.refresh_details = settings.refresh_details and details
    configure_logging(settings.log_level)
    notebook_id = notebook_identity(notebook)

    async def _run() -> RefreshResult:
        async with open_host(notebook_id, settings) as host:
            await run_setup(host, notebook_id, setup)
            return await host.refresh_cache(notebook_id)

    try:
        result = asyncio.run(_run())
    except KernelError as e:
        report_kernel_error(e)
        raise typer.Exit(1)

    if result.error:
        console.print(f"[red]Error: {escape(result.error)}[/red]")
        raise typer.Exit(1)

    if format == "json":
        console.print(json.dumps([e.to_dict() for e in result.entries], indent=2))
        return

    if not result.entries:
        console.print("[dim]No inspectable variables.[/dim]")
        return

    table = Table(title=f"Variables in {notebook}")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Shape")
    table.add_column("Dtype")
    for entry in sorted(result.entries, key=lambda e: e.variable_name):
        table.add_row(
            entry.variable_name,
            entry.type,
            _format_shape(entry.shape),
            entry.dtype or "",
        )
    console.print(table)
