"""
CLI interface for notebook-bind.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from notebook_bind.config import ServerOptions
from notebook_bind.engine import LiveNotebook
from notebook_bind.errors import EvaluationError
from notebook_bind.notebook import Notebook, find_notebooks
from notebook_bind.session import content_hash
from notebook_bind.utils import format_rich_output, truncate_text


console = Console()


def setup_logging(level: str = "INFO"):
    """Route all logging through a Rich handler."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def collect_notebooks(paths: tuple[str, ...]) -> list[Path]:
    """Expand directories into the notebooks found below them."""
    found: list[Path] = []
    for raw in paths or (".",):
        path = Path(raw)
        if path.is_dir():
            found.extend(find_notebooks(path))
        else:
            found.append(path)
    return list(dict.fromkeys(found))


@click.group()
def main():
    """notebook-bind: serve interactive notebooks to many clients."""
    pass


@main.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True))
@click.option("--host", default=None, help="Interface to listen on")
@click.option("--port", type=int, default=None, help="Port (default: first free from 1234)")
@click.option("--simulated-lag", type=float, default=None, help="Seconds to wait before each bond update")
@click.option("--copy-to-temp", is_flag=True, help="Run temporary copies of the notebooks")
@click.option("--create-statefiles", is_flag=True, help="Write the initial state next to each notebook")
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def serve(paths, host, port, simulated_lag, copy_to_temp, create_statefiles, log_level):
    """Serve notebooks. PATHS may be notebook files or directories (default: .)."""
    setup_logging(log_level)
    options = ServerOptions.from_env(
        host=host,
        port=port,
        simulated_lag=simulated_lag,
        copy_to_temp_before_running=copy_to_temp or None,
        create_statefiles=create_statefiles or None,
    )

    notebooks = collect_notebooks(paths)
    if not notebooks:
        console.print("[yellow]No notebooks found[/yellow]")
        sys.exit(1)
    logging.getLogger(__name__).info("Found notebooks: %s", [str(p) for p in notebooks])

    from notebook_bind.web import serve as serve_notebooks
    try:
        serve_notebooks(notebooks, options)
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--quiet", "-q", is_flag=True, help="Only print the summary")
def check(path: str, quiet: bool):
    """Run a notebook once and show what the server would serve."""
    data = Path(path).read_bytes()
    live = LiveNotebook(Notebook.from_bytes(data, path))

    console.print(Panel(
        f"[bold]{live.name}[/bold]  [dim]{path}[/dim]\n[dim]Hash:[/dim] {content_hash(data)}",
        title="[bold blue]notebook-bind[/bold blue]",
        border_style="blue",
    ))

    failure: Optional[EvaluationError] = None
    try:
        live.run_all()
    except EvaluationError as e:
        failure = e

    if not quiet:
        for node in live.topology.nodes:
            cell = live.notebook.get_cell_by_id(node.cell_id)
            result = live.cell_results[node.cell_id]
            if result["queued"]:
                continue
            console.print(f"[dim]--- Cell {node.cell_id} ---[/dim]")
            console.print(Syntax(cell.source, "python", theme="monokai", line_numbers=True))
            for output in result["outputs"]:
                console.print(format_rich_output(output))
            console.print()

    connections = live.topology.bond_connections()
    if connections:
        table = Table(title="Bond connections", border_style="blue", show_lines=True)
        table.add_column("Bound variable", style="bold cyan")
        table.add_column("Affects", style="white")
        for name, affected in connections.items():
            table.add_row(name, truncate_text(", ".join(affected) or "-", 80))
        console.print(table)
    else:
        console.print("[dim]No bound variables[/dim]")

    if failure is not None:
        console.print(f"[red]Error: {failure.message}[/red]")
        sys.exit(1)
    console.print(f"[green]All {len(live.topology.nodes)} code cells executed successfully[/green]")


if __name__ == "__main__":
    main()
