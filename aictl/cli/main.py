"""aictl CLI — manage agent code versions, optimization and learning.

`aictl agent ...` holds the commands; this module only sets up logging
and registers the groups.
"""

from __future__ import annotations

import logging

import structlog
import typer
from rich.console import Console
from rich.logging import RichHandler

from aictl.cli import agent
from aictl.config import settings

console = Console()

app = typer.Typer(
    name="aictl",
    help="aictl -- agent code lifecycle: versions, optimization, rollback, learning.",
    no_args_is_help=True,
)

app.add_typer(agent.app, name="agent", help="Manage agents and their code versions")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # Route structlog events through the same handler
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Log at INFO level"),
    namespace: str = typer.Option(None, "--namespace", "-n", help="Kubernetes namespace"),
):
    """Configure logging and namespace before any command runs."""
    _configure_logging("INFO" if verbose else settings.log_level)
    if namespace:
        settings.namespace = namespace


@app.command("version")
def version_cmd():
    """Show aictl version."""
    from aictl import __version__
    console.print(f"aictl v{__version__}")
