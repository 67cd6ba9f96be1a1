"""nbprobe CLI entry point.

Each command opens the notebook's kernel for the duration of one call, runs
its setup code, does its work and shuts the kernel down again.
"""

import typer
from rich.console import Console

from nbprobe import __version__

# Root command group; subcommands are registered at the bottom of this module.
app = typer.Typer(
    name="nbprobe",
    help="Run code in notebook kernels and inspect what they hold",
    no_args_is_help=True,
    invoke_without_command=True,
)

console = Console()


def _print_version() -> None:
    console.print(f"nbprobe {__version__}")


@app.callback()
def main(
    show_version: bool = typer.Option(
        False, "--version", "-V", help="Show version and exit"
    ),
) -> None:
    """nbprobe: notebook kernel execution and object inspection."""
    if show_version:
        _print_version()
        raise typer.Exit()


@app.command()
def version():
    """Show nbprobe version."""
    _print_version()


from nbprobe.cli.exec import exec_code
from nbprobe.cli.vars import vars_list
from nbprobe.cli.inspect import inspect_var

app.command(name="exec")(exec_code)
app.command(name="vars")(vars_list)
app.command(name="inspect")(inspect_var)


if __name__ == "__main__":
    app()
