"""Console output with Rich: banner, configuration and persona tables"""

from typing import TYPE_CHECKING, Optional

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme
from rich.traceback import install as install_rich_traceback

if TYPE_CHECKING:
    from ..catalog import PersonaDefinition
    from ..core.config import TurnConfig

TURNSTREAM_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "persona": "magenta",
        "setting": "cyan",
        "value": "yellow",
    }
)


class TurnstreamConsole:
    """Singleton console with the turnstream theme"""

    _instance: Optional["TurnstreamConsole"] = None

    def __new__(cls) -> "TurnstreamConsole":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, "initialized"):
            self.console = Console(theme=TURNSTREAM_THEME)
            self.initialized = True

    def print_banner(self):
        self.console.print(
            Panel.fit(
                "[bold cyan]turnstream[/bold cyan] - Streaming Turn Orchestrator\n"
                "[dim]Token streaming • Tool round trips • Persona debates[/dim]",
                border_style="cyan",
            )
        )

    def print_config_summary(self, config: "TurnConfig"):
        """Print configuration summary table"""
        table = Table(title="Configuration", show_header=False, border_style="cyan")
        table.add_column("Setting", style="setting")
        table.add_column("Value", style="value")

        table.add_row("Chat Model", config.chat_model)
        table.add_row("Image Model", f"{config.image_model} ({config.image_size})")
        table.add_row(
            "Max Tokens",
            f"{config.primary_max_tokens:,} primary / {config.secondary_max_tokens:,} after tools",
        )
        table.add_row("History Window", f"{config.history_window} messages")
        table.add_row("Anonymous Limit", f"{config.anonymous_message_limit} messages")
        table.add_row("Debate Rounds", str(config.debate_rounds))
        table.add_row("Upstream Base URL", config.api_base or "provider default")
        table.add_row("API Key", "set" if config.api_key else "[warning]not set[/warning]")

        self.console.print(table)

    def print_personas(self, personas: list["PersonaDefinition"]):
        table = Table(title="Personas", show_header=True, border_style="cyan")
        table.add_column("Id", style="persona", no_wrap=True)
        table.add_column("Name", style="value")
        table.add_column("Description", style="dim")

        for persona in personas:
            table.add_row(persona.id, f"{persona.icon} {persona.name}", persona.description)

        self.console.print(table)

    def print_success(self, message: str):
        self.console.print(f"[success]✓[/success] {message}")

    def print_error(self, message: str):
        self.console.print(f"[error]✗[/error] {message}")

    def print_warning(self, message: str):
        self.console.print(f"[warning]⚠[/warning] {message}")

    def print_info(self, message: str):
        self.console.print(f"[info]ℹ[/info] {message}")


# Global console instance
console = TurnstreamConsole()


def setup_rich_logging() -> None:
    """
    Install Rich's traceback handler globally.

    structlog configuration is handled separately in utils/logging.py.
    """
    install_rich_traceback(
        show_locals=False,
        width=120,
        extra_lines=3,
        theme="monokai",
        word_wrap=False,
        suppress=[structlog],
    )
