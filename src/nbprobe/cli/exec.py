"""Exec command implementation."""

import asyncio
from dataclasses import replace
from typing import Optional

import typer
from rich.console import Console

from nbprobe.cli.common import notebook_identity, open_host, report_kernel_error
from nbprobe.config import load_settings
from nbprobe.kernel.errors import EnvelopeError, KernelError
from nbprobe.log import configure_logging

console = Console()


def exec_code(
    notebook: str = typer.Argument(..., help="Notebook the kernel belongs to"),
    code: str = typer.Argument(..., help="Python code to execute"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Seconds the code may run once started"
    ),
    queue_timeout: Optional[float] = typer.Option(
        None, "--queue-timeout", help="Seconds to wait for a busy kernel to start the code"
    ),
    no_interrupt: bool = typer.Option(
        False, "--no-interrupt", help="Do not interrupt the kernel on timeout"
    ),
    fire_and_forget: bool = typer.Option(
        False, "--fire-and-forget", help="Run as a user action (no queue budget, text output only)"
    ),
) -> None:
    """Execute code in a notebook kernel and print its output."""
    settings = load_settings()
    configure_logging(settings.log_level)
    notebook_id = notebook_identity(notebook)

    if fire_and_forget:
        options = settings.action_options("exec")
    else:
        options = settings.execution_options("exec")
    if timeout is not None:
        options = replace(options, timeout=timeout)
    if queue_timeout is not None:
        options = replace(options, queue_timeout=queue_timeout)
    if no_interrupt:
        options = replace(options, interrupt_on_timeout=False)

    async def _run() -> str:
        async with open_host(notebook_id, settings) as host:
            if fire_and_forget:
                return await host.run_fire_and_forget(notebook_id, code, options)
            return await host.run_for_result(notebook_id, code, options)

    try:
        output = asyncio.run(_run())
    except EnvelopeError as e:
        if e.output:
            console.print(e.output, markup=False, highlight=False)
        report_kernel_error(e)
        raise typer.Exit(1)
    except KernelError as e:
        report_kernel_error(e)
        raise typer.Exit(1)

    if output:
        console.print(output, markup=False, highlight=False)
