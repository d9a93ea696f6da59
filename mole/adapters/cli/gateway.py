"""
Gateway provisioning CLI commands (run on the public gateway)
"""
import typer

from ...core.logging import get_logger, get_stdout_console, get_stderr_console
from ...core.constants import DEFAULT_REMOTE_BIND_PORT
from ...core.exceptions import MoleError
from ...domain.provisioning import GatewayOptions, GatewayProvisioner
from .prompts import RichPromptProvider
from .runtime import get_runtime

logger = get_logger(__name__)
stdout_console = get_stdout_console()
stderr_console = get_stderr_console()
prompt_provider = RichPromptProvider()


def register_gateway_app(app: typer.Typer) -> None:
    """Register gateway subcommand app"""
    gateway_app = typer.Typer(
        name="gateway",
        help="Provision the public gateway (sshd, firewall, mosh)",
        add_completion=False,
        no_args_is_help=True,
    )

    gateway_app.command(name="setup")(gateway_setup)
    gateway_app.command(name="teardown")(gateway_teardown)

    app.add_typer(gateway_app, name="gateway")


def gateway_setup(
    ctx: typer.Context,
    tunnel_port: int = typer.Option(
        DEFAULT_REMOTE_BIND_PORT, "--tunnel-port", "-p",
        help="Tunnel port the inside host binds (kept closed in the firewall)"
    ),
    skip_packages: bool = typer.Option(False, "--skip-packages", help="Do not install mosh"),
):
    """
    Configure the gateway to accept the reverse tunnel

    Restricts forwarded ports to loopback (GatewayPorts no), opens the
    mosh UDP range 60000-61000 and restarts sshd. Requires sudo.

    Examples:
        mole gateway setup
        mole gateway setup --tunnel-port 2223
    """
    runtime = get_runtime(ctx)
    options = GatewayOptions(tunnel_port=tunnel_port, install_packages=not skip_packages)
    try:
        warnings = GatewayProvisioner(runtime.settings, runtime.runner).setup(
            options, on_step=prompt_provider.step
        )
    except MoleError as e:
        stderr_console.print(f"[red]Gateway Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Gateway setup failed")
        stderr_console.print(f"[red]Error:[/red] Gateway setup failed: {e}")
        raise typer.Exit(1)

    for warning in warnings:
        prompt_provider.warning(warning)

    stdout_console.print()
    stdout_console.print("[bold blue]Connection Info:[/bold blue]")
    stdout_console.print(f"  Tunnel port: {tunnel_port} (reachable from this gateway only)")
    stdout_console.print(f"  Mosh UDP ports: {options.mosh_port_start}-{options.mosh_port_end}")
    stdout_console.print(f"  Clients connect with: ssh -J <user>@<this-gateway> -p {tunnel_port} <inside-user>@localhost")
    stdout_console.print()
    stdout_console.print("[bold green]=== Gateway Setup Complete ===[/bold green]")


def gateway_teardown(
    ctx: typer.Context,
    tunnel_port: int = typer.Option(
        DEFAULT_REMOTE_BIND_PORT, "--tunnel-port", "-p",
        help="Tunnel port whose firewall rule should be removed"
    ),
    uninstall_mosh: bool = typer.Option(False, "--uninstall-mosh", help="Also uninstall mosh"),
):
    """
    Undo gateway setup

    Restores sshd_config from the backup taken during setup, removes the
    firewall rules and restarts sshd. Requires sudo.
    """
    runtime = get_runtime(ctx)
    options = GatewayOptions(tunnel_port=tunnel_port, uninstall_packages=uninstall_mosh)
    try:
        messages = GatewayProvisioner(runtime.settings, runtime.runner).teardown(
            options, on_step=prompt_provider.step
        )
    except MoleError as e:
        stderr_console.print(f"[red]Gateway Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Gateway teardown failed")
        stderr_console.print(f"[red]Error:[/red] Gateway teardown failed: {e}")
        raise typer.Exit(1)

    for message in messages:
        prompt_provider.detail(message)

    stdout_console.print()
    stdout_console.print("[bold green]=== Gateway Teardown Complete ===[/bold green]")
