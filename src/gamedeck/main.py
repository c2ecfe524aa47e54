"""Main CLI entry point for gamedeck.

This module provides the Typer application that validates the configured
profiles and runs game sessions.

Usage:
    gamedeck launch <game-id>
    gamedeck games
    gamedeck check
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gamedeck.apps import ActionHandlerRegistry, build_default_registry
from gamedeck.config import GamedeckConfig, load_config
from gamedeck.context import SessionContext
from gamedeck.errors import ConfigurationError
from gamedeck.launchers import detect_installed_launchers
from gamedeck.logging import get_logger, setup_logging
from gamedeck.models import ActionResult, ExitCode, GameProfile
from gamedeck.orchestrator import CancellationToken, InterruptHandler, SessionOrchestrator

app = typer.Typer(
    name="gamedeck",
    help="gamedeck: prepare, launch, monitor, and clean up gaming sessions",
    no_args_is_help=True,
)

console = Console()
logger = get_logger(__name__)


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded gamedeck configuration
        registry: Verb handler registry
    """

    def __init__(self, config: GamedeckConfig):
        self.config = config
        self.registry: ActionHandlerRegistry = build_default_registry()

    def session_context(self) -> SessionContext:
        return SessionContext(config=self.config)


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: GamedeckConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


def _config_error(e: ConfigurationError) -> typer.Exit:
    console.print(f"[red]Configuration error:[/red] {e}")
    return typer.Exit(code=int(ExitCode.CONFIGURATION_ERROR))


def _print_summary(game: GameProfile, orchestrator: SessionOrchestrator, exit_code: ExitCode) -> None:
    state = orchestrator.state
    table = Table(title=f"Session summary: {game.display_name}")
    table.add_column("Application", style="cyan")
    table.add_column("Startup")
    table.add_column("Shutdown")

    app_ids = list(orchestrator.setup_results) + [
        a for a in orchestrator.shutdown_results if a not in orchestrator.setup_results
    ]
    for app_id in app_ids:
        table.add_row(
            app_id,
            _describe(orchestrator.setup_results.get(app_id)),
            _describe(orchestrator.shutdown_results.get(app_id)),
        )
    if app_ids:
        console.print(table)

    color = "green" if exit_code == ExitCode.OK else "red"
    duration = f"{state.duration_seconds:.0f}s" if state is not None else "-"
    suffix = " (interrupted)" if state is not None and state.interrupted else ""
    console.print(f"[{color}]Session finished: {exit_code.name}{suffix}[/{color}] [dim]{duration}[/dim]")


def _describe(result: ActionResult | None) -> str:
    if result is None:
        return "[dim]-[/dim]"
    if not result.success:
        return f"[red]failed[/red] {result.message or ''}"
    if result.already_in_desired_state:
        return f"[yellow]unchanged[/yellow] {result.message or ''}"
    return f"[green]ok[/green] {result.message or ''}"


@app.command()
def launch(
    game_id: Annotated[str, typer.Argument(help="Configured game identifier")],
) -> None:
    """Run a complete session for a configured game.

    Starts the game's managed applications, launches the game, waits for it
    to exit, and restores the environment. Exits with 0 for any session that
    completes, even when optional integrations failed.
    """
    app_ctx = get_app_context()
    try:
        game = app_ctx.config.get_game(game_id)
        app_ctx.registry.validate(app_ctx.config, games=[game])
    except ConfigurationError as e:
        raise _config_error(e)

    apps = app_ctx.config.apps_for(game)
    console.print(
        Panel.fit(
            f"[bold]{game.display_name}[/bold]\n"
            f"[dim]Platform:[/dim] {game.platform.value}\n"
            f"[dim]Process:[/dim] {game.process_name}\n"
            f"[dim]Applications:[/dim] {', '.join(a.id for a in apps) or 'none'}",
            title="gamedeck",
            border_style="cyan",
        )
    )

    token = CancellationToken()
    orchestrator = SessionOrchestrator(app_ctx.session_context(), app_ctx.registry, token=token)

    def on_interrupt(signal_name: str) -> None:
        console.print(f"[yellow]{signal_name} received. Restoring environment...[/yellow]")

    with InterruptHandler(token, on_interrupt=on_interrupt):
        exit_code = asyncio.run(orchestrator.run_session(game))

    _print_summary(game, orchestrator, exit_code)
    raise typer.Exit(code=int(exit_code))


@app.command()
def games() -> None:
    """List configured games."""
    config = get_app_context().config
    if not config.games:
        console.print("[yellow]No games configured[/yellow]")
        return

    table = Table(title="Games")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Platform")
    table.add_column("Applications")
    for game in config.games.values():
        table.add_row(game.id, game.display_name, game.platform.value, ", ".join(game.managed_apps))
    console.print(table)


@app.command()
def check() -> None:
    """Validate every configured profile and report detected launchers."""
    app_ctx = get_app_context()
    try:
        app_ctx.registry.validate(app_ctx.config)
    except ConfigurationError as e:
        raise _config_error(e)

    console.print(
        f"[green]Configuration valid:[/green] {len(app_ctx.config.games)} games, "
        f"{len(app_ctx.config.apps)} applications"
    )
    detected = detect_installed_launchers(app_ctx.config.launchers)
    for platform, path in sorted(detected.items(), key=lambda item: item[0].value):
        console.print(f"[dim]{platform.value}:[/dim] {path}")


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and load the configuration.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
    """
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        raise _config_error(e)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)

    initialize_context(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")
    logger.debug("config_loaded", config_path=str(config_path) if config_path else None)


if __name__ == "__main__":
    app()
