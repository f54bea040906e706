"""
Command-line interface for turnstream.

Provides commands for serving the HTTP API and inspecting configuration.
"""

import sys
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .utils.rich_logging import console as turnstream_console

app = typer.Typer(
    name="turnstream",
    help="Streaming turn orchestrator for persona chat with tool calls and debates",
    add_completion=False,
)

console = turnstream_console.console


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]turnstream[/bold cyan] version {__version__}")
    console.print("Streaming Turn Orchestrator")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default from config)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """
    Serve the HTTP API with uvicorn.
    """
    import uvicorn

    from .api.app import create_app
    from .core.config import get_config
    from .models.enums import LogLevel
    from .utils.logging import setup_logging

    config = get_config()
    if debug:
        config.log_level = LogLevel.DEBUG
    setup_logging(config)

    host = host or config.host
    port = port or config.port

    if config.enable_rich_console:
        turnstream_console.print_banner()
        turnstream_console.print_config_summary(config)
        if not config.api_key:
            turnstream_console.print_warning(
                "No TURNSTREAM_API_KEY set; relying on provider environment variables"
            )
        turnstream_console.print_info(f"Serving on http://{host}:{port}")

    uvicorn.run(
        create_app(),
        host=host,
        port=port,
        log_level=config.log_level.value.lower(),
    )


@app.command()
def personas():
    """List the built-in personas."""
    from .catalog import PERSONAS

    turnstream_console.print_personas(list(PERSONAS))


@app.command()
def info():
    """
    Display project information.
    """
    panel = Panel(
        f"""[bold cyan]turnstream[/bold cyan] - Streaming Turn Orchestrator

[bold]Version:[/bold] {__version__}
[bold]Purpose:[/bold] Stream persona replies over SSE with tool round trips

[bold]Components:[/bold]
  • Turn Orchestrator     - validate, stream, execute tools, persist
  • Context Builder       - persona directive, memory, history window
  • Tool-Call Accumulator - reassemble streamed function calls
  • Debate Scheduler      - alternating persona rounds

[bold]Endpoints:[/bold] POST /api/messages, POST /api/messages/poll, POST /api/debate

[dim]For help: turnstream --help[/dim]
        """,
        title="Project Info",
        border_style="cyan",
    )
    console.print(panel)


# Configuration management subcommand group
config_app = typer.Typer(help="Configuration management commands")
app.add_typer(config_app, name="config")


@config_app.command("export")
def config_export(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file path (default: .turnstream/config.yaml)"
    ),
    include_secrets: bool = typer.Option(
        False,
        "--include-secrets",
        help="Include the API key in export (WARNING: sensitive data)"
    ),
):
    """
    Export current configuration to YAML file.

    The API key is excluded unless --include-secrets is given.
    """
    from .core.config import get_config
    from .utils.config_export import export_config

    try:
        output_path = export_config(get_config(), output, include_secrets)
    except (OSError, ValidationError) as e:
        turnstream_console.print_error(f"Export failed: {e}")
        sys.exit(1)

    turnstream_console.print_success(f"Configuration exported to: {output_path}")
    if not include_secrets:
        console.print("[dim]Note: API key excluded. Use --include-secrets to include it.[/dim]")


@config_app.command("load")
def config_load(
    config_file: Path = typer.Argument(..., help="Path to configuration YAML file"),
):
    """
    Load and validate configuration from YAML file.

    To actually use this config, set it as your environment or .env file.
    """
    from .utils.config_export import import_config

    try:
        config = import_config(config_file)
    except FileNotFoundError as e:
        turnstream_console.print_error(str(e))
        sys.exit(1)
    except (ValidationError, yaml.YAMLError) as e:
        turnstream_console.print_error(f"Invalid configuration file: {e}")
        sys.exit(1)

    turnstream_console.print_success(f"Configuration loaded from: {config_file}")
    turnstream_console.print_config_summary(config)


@config_app.command("show")
def config_show():
    """
    Display current configuration settings, without secrets.
    """
    from .core.config import TurnConfig, get_config

    try:
        config = get_config()
    except ValidationError as e:
        turnstream_console.print_error(f"Failed to load config: {e}")
        sys.exit(1)

    table = Table(title="Active Settings")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="yellow")

    config_dict = config.model_dump(exclude=set(TurnConfig.SECRET_FIELDS), exclude_none=True)
    for key, value in sorted(config_dict.items()):
        table.add_row(key, str(value))

    console.print(table)


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
