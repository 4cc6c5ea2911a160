"""CLI entry point for oclaw."""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
from rich.console import Console

from . import __version__
from .client import GatewayClient
from .config import CONFIG_FILE, Config, load_config, save_config
from .models import VerboseLevel
from .tui_textual import OclawApp

console = Console()

LOG_FILE = Path.home() / ".cache" / "oclaw" / "debug.log"
ENV_OVERRIDES = ("OPENCLAW_GATEWAY_URL", "OPENCLAW_GATEWAY_TOKEN", "OCLAW_VERBOSE", "OCLAW_DEBUG_LOGGING")


def setup_logging(debug_logging: bool, log_file: Path = LOG_FILE) -> None:
    """Configure logging based on config (opt-in debug logging)."""
    if debug_logging:
        # Debug logging enabled - use rotating file handler
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
        )
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            handlers=[handler],
        )
        logging.info("oclaw starting (debug logging enabled)")
    else:
        # Default: only warn+ so TUI stays clean
        logging.basicConfig(
            level=logging.WARNING,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )


def _mask(token: str) -> str:
    if not token:
        return "not set"
    return f"{token[:4]}…" if len(token) > 8 else "set"


@click.group(invoke_without_command=True)
@click.option("--url", default=None, help="Gateway URL (default http://127.0.0.1:18789)")
@click.option("--token", default=None, help="Gateway bearer token")
@click.option("--verbose", type=click.Choice([v.value for v in VerboseLevel]), default=None, help="Initial tool-call detail level")
@click.option("--debug-logging/--no-debug-logging", default=None, help="Enable debug logging to file")
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def main(ctx: click.Context, url: str | None, token: str | None, verbose: str | None, debug_logging: bool | None, version: bool) -> None:
    """oclaw - a terminal dashboard for OpenClaw agent sessions."""
    if version:
        console.print(f"oclaw v{__version__}")
        return

    # If no subcommand, run the main TUI
    if ctx.invoked_subcommand is None:
        config = load_config(url=url, token=token)
        # Apply CLI overrides (not saved to config file)
        if verbose is not None:
            config.verbose = VerboseLevel(verbose)
        if debug_logging is not None:
            config.debug_logging = debug_logging
        run_dashboard(config)


def run_dashboard(config: Config) -> None:
    """Run the dashboard TUI against the configured gateway."""
    setup_logging(config.debug_logging)
    logging.getLogger(__name__).info(f"Connecting to gateway at {config.gateway_url}")

    client = GatewayClient(config)
    try:
        app = OclawApp(client, config)
        app.run()
    except KeyboardInterrupt:
        pass
    finally:
        client.close()
        console.print("\n[dim]Goodbye![/dim]")


@main.command()
@click.option("--url", default=None, help="Gateway URL to save as default")
@click.option("--verbose", type=click.Choice([v.value for v in VerboseLevel]), default=None, help="Default tool-call detail level")
@click.option("--debug-logging/--no-debug-logging", default=None, help="Enable debug logging to file")
@click.option("--show", is_flag=True, help="Show current configuration")
def config(url: str | None, verbose: str | None, debug_logging: bool | None, show: bool) -> None:
    """Configure oclaw settings.

    Examples:
      oclaw config --verbose full          # Show full tool output by default
      oclaw config --debug-logging         # Enable debug logging
      oclaw config --show                  # Show current config
    """
    current_config = load_config()

    if show:
        console.print("\n[bold]Current Configuration:[/bold]")
        console.print(f"  Gateway URL:    [cyan]{current_config.gateway_url}[/cyan]")
        console.print(f"  Token:          [cyan]{_mask(current_config.token)}[/cyan]")
        console.print(f"  Verbose:        [cyan]{current_config.verbose.value}[/cyan]")
        console.print(f"  Debug Logging:  [cyan]{current_config.debug_logging}[/cyan]")
        console.print(f"  History Limit:  [cyan]{current_config.history_limit}[/cyan]")
        poll = current_config.poll
        console.print(
            f"  Polling:        [cyan]sessions {poll.sessions}s, processes {poll.processes}s, "
            f"health {poll.health}s, logs {poll.logs}s[/cyan]"
        )
        console.print(f"\nConfig file: [dim]{CONFIG_FILE}[/dim]")

        # Show environment variable overrides if set
        for name in ENV_OVERRIDES:
            value = os.getenv(name)
            if value:
                shown = _mask(value) if name.endswith("TOKEN") else value
                console.print(f"[yellow]Note:[/yellow] {name} is set: {shown}")
        return

    if url is None and verbose is None and debug_logging is None:
        console.print("Use --url, --verbose or --debug-logging to change settings.")
        console.print("Use --show to view current configuration.")
        return

    if url is not None:
        current_config.gateway_url = url
    if verbose is not None:
        current_config.verbose = VerboseLevel(verbose)
    if debug_logging is not None:
        current_config.debug_logging = debug_logging
    save_config(current_config)

    console.print("\n[green]Configuration saved![/green]")
    console.print(f"  Gateway URL:    [cyan]{current_config.gateway_url}[/cyan]")
    console.print(f"  Verbose:        [cyan]{current_config.verbose.value}[/cyan]")
    console.print(f"  Debug Logging:  [cyan]{current_config.debug_logging}[/cyan]")
    console.print(f"\nSaved to: [dim]{CONFIG_FILE}[/dim]")


if __name__ == "__main__":
    main()
