import functools
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.traceback import Traceback

from clish_shell.engine.driver import ThreadConfig
from clish_shell.engine.loop import LoopResult
from clish_shell.interactive.main import Shell, start_repl
from clish_shell.management.definition_manager import DiscoveryConfig
from clish_shell.state import APP_STATE

err_console = Console(stderr=True)


def setup_logging(verbose: bool):
    """Routes structlog through the root logger to stderr, at DEBUG when verbose."""
    log_level = logging.DEBUG if verbose else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # setup_logging runs once per invocation; keep a single stderr handler.
    for stale in root_logger.handlers[:]:
        if getattr(stale, "stream", None) is not sys.stderr:
            root_logger.removeHandler(stale)
    if not any(getattr(h, "stream", None) is sys.stderr for h in root_logger.handlers):
        root_logger.addHandler(logging.StreamHandler(sys.stderr))


def handle_exceptions(func):
    """Reports an unexpected error on stderr and exits with code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            err_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            if APP_STATE.verbose_mode:
                err_console.print(Traceback.from_exception(type(e), e, e.__traceback__))
            raise typer.Exit(code=1)

    return wrapper


def _discovery_config() -> DiscoveryConfig:
    return DiscoveryConfig.from_env(search_path=APP_STATE.search_path)


app = typer.Typer(
    name="clish",
    help="A scriptable command shell driven by YAML command definitions.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode="markdown",
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose DEBUG logging."
    ),
    path: Optional[str] = typer.Option(
        None,
        "--path",
        help="Semicolon-separated definition search path. Overrides CLISH_PATH.",
    ),
    thread: bool = typer.Option(
        False, "--thread", help="Run the session on a worker thread."
    ),
):
    APP_STATE.verbose_mode = verbose
    APP_STATE.search_path = path
    setup_logging(verbose)
    if ctx.invoked_subcommand is None:
        _run_repl(thread)


@handle_exceptions
def _run_repl(thread: bool):
    if not start_repl(_discovery_config(), use_thread=thread):
        raise typer.Exit(code=1)


@app.command()
@handle_exceptions
def run(
    script: Path = typer.Argument(..., help="The script file to run."),
    thread: bool = typer.Option(
        False, "--thread", help="Run the session on a worker thread."
    ),
):
    """Runs every command of a script file, then exits."""
    shell = Shell(_discovery_config())
    shell.load_definitions()
    config = ThreadConfig(name="clish-run")
    if not shell.run_file(script, use_thread=thread, thread_config=config):
        err_console.print(f"[bold red]Error:[/bold red] could not run '{script}'.")
        raise typer.Exit(code=1)
    if shell.session.last_result is LoopResult.STOPPED_ON_ERROR:
        raise typer.Exit(code=2)


@app.command()
@handle_exceptions
def definitions():
    """Lists the commands found on the definition search path."""
    console = Console()
    shell = Shell(_discovery_config())
    loaded = shell.load_definitions()

    table = Table(title="Commands")
    table.add_column("Name", style="cyan")
    table.add_column("Params")
    table.add_column("Action")
    table.add_column("Source", style="dim")
    for command in shell.registry:
        params = " ".join(
            f"[{p.name}]" if p.optional else f"<{p.name}>" for p in command.params
        )
        action = f"builtin:{command.builtin}" if command.builtin else command.action.strip()
        table.add_row(
            command.name, escape(params), escape(action), command.source_path or "(default)"
        )
    console.print(table)
    console.print(f"[dim]{len(loaded)} definition file(s) loaded.[/dim]")
