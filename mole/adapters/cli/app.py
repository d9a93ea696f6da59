"""
Main CLI application
"""
import typer
from pathlib import Path
from typing import Optional

from ...core.exceptions import ConfigError
from ...core.logging import setup_logging, get_logger, get_stderr_console
from .gateway import register_gateway_app
from .keys import register_keys_app
from .runtime import Runtime
from .setup import register_setup_commands
from .tunnel import register_tunnel_app

logger = get_logger(__name__)
stderr_console = get_stderr_console()

# Create main app
app = typer.Typer(
    name="mole",
    add_completion=False,
    help="Persistent reverse SSH tunnel supervisor",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

register_tunnel_app(app)
register_keys_app(app)
register_gateway_app(app)
register_setup_commands(app)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log file path",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file path (TOML, default: ~/.mole/config.toml)",
    ),
):
    """
    Mole - keep a host behind NAT reachable through a public gateway

    Use subcommands to perform different operations:
    - tunnel: Install, control and diagnose tunnel endpoints
    - keys: Manage client credentials
    - setup/teardown: Provision the inside host end to end
    - gateway: Provision the public gateway (run on the gateway)
    """
    setup_logging(level=log_level, log_file=log_file)

    if ctx.obj is None:
        try:
            ctx.obj = Runtime.load(config_file)
        except ConfigError as e:
            stderr_console.print(f"[red]Config Error:[/red] {e}")
            raise typer.Exit(1)


def run():
    """CLI entry point"""
    app()


if __name__ == "__main__":
    run()
