"""Inspect command implementation."""

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nbprobe.cli.common import notebook_identity, open_host, report_kernel_error, run_setup
from nbprobe.config import load_settings
from nbprobe.inspect.cache import EntryResult
from nbprobe.kernel.errors import KernelError
from nbprobe.log import configure_logging

console = Console()


def inspect_var(
    notebook: str = typer.Argument(..., help="Notebook the kernel belongs to"),
    name: str = typer.Argument(..., help="Variable to inspect"),
    setup: Optional[str] = typer.Option(
        None, "--setup", "-s", help="Code to run before inspecting"
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
) -> None:
    """Show the details of one variable in a notebook kernel."""
    settings = load_settings()
    configure_logging(settings.log_level)
    notebook_id = notebook_identity(notebook)

    async def _run() -> EntryResult:
        async with open_host(notebook_id, settings) as host:
            await run_setup(host, notebook_id, setup)
            return await host.refresh_entry(notebook_id, name, include_details=True)

    try:
        result = asyncio.run(_run())
    except KernelError as e:
        report_kernel_error(e)
        raise typer.Exit(1)

    if result.error:
        console.print(f"[red]Error: {escape(result.error)}[/red]")
        raise typer.Exit(1)

    if result.entry is None:
        console.print(f"[yellow]'{name}' is not an inspectable variable[/yellow]")
        raise typer.Exit(1)

    data = result.entry.to_dict()
    if format == "json":
        console.print(json.dumps(data, indent=2))
        return

    table = Table(title=name, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        if value is None or key == "variable_name":
            continue
        table.add_row(key, json.dumps(value) if isinstance(value, (list, dict)) else str(value))
    console.print(table)
