"""
Inside host setup/teardown commands
"""
import getpass
import typer
from typing import List, Optional

from ...core.logging import get_logger, get_stdout_console, get_stderr_console
from ...core.constants import DEFAULT_ENDPOINT_NAME
from ...core.exceptions import MoleError
from ...domain.provisioning import InsideHostProvisioner, SetupRequest, TeardownRequest
from ...domain.tunnel import TunnelEndpoint
from .prompts import RichPromptProvider
from .runtime import Runtime, get_runtime

logger = get_logger(__name__)
stdout_console = get_stdout_console()
stderr_console = get_stderr_console()
prompt_provider = RichPromptProvider()


def register_setup_commands(app: typer.Typer) -> None:
    """Register setup and teardown directly on the main app"""
    app.command(name="setup")(setup)
    app.command(name="teardown")(teardown)


def _provisioner(runtime: Runtime) -> InsideHostProvisioner:
    return InsideHostProvisioner(
        runtime.settings,
        runtime.credentials,
        runtime.supervisor,
        runtime.runner,
        runtime.connection_factory,
    )


def _split_clients(values: List[str]) -> List[str]:
    names: List[str] = []
    for value in values:
        names.extend(n.strip() for n in value.split(",") if n.strip())
    return names


def print_connection_instructions(endpoint: TunnelEndpoint, key_dir, client: str) -> None:
    """How clients reach this host through the gateway"""
    local_user = getpass.getuser()
    key = f"~/.ssh/{client}_ed25519"
    stdout_console.print()
    stdout_console.print("[bold blue]Client Connection Instructions:[/bold blue]")
    stdout_console.print(f"  Distribute the private key files (*_ed25519) in {key_dir} to clients.")
    stdout_console.print()
    stdout_console.print("  # Option 1: Mosh + SSH (recommended for reliability)")
    stdout_console.print(f"  mosh {endpoint.destination}", markup=False)
    stdout_console.print(
        f"  ssh -p {endpoint.remote_bind_port} -i {key} {local_user}@localhost", markup=False
    )
    stdout_console.print()
    stdout_console.print("  # Option 2: Direct SSH with ProxyJump")
    stdout_console.print(
        f"  ssh -J {endpoint.destination} -p {endpoint.remote_bind_port} -i {key} {local_user}@localhost",
        markup=False,
    )
    stdout_console.print()
    stdout_console.print("[bold blue]Management Commands:[/bold blue]")
    stdout_console.print(f"  mole tunnel status {endpoint.name}")
    stdout_console.print(f"  mole tunnel restart {endpoint.name}")


def setup(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", "-H", help="Gateway hostname or IP"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Username on the gateway"),
    clients: List[str] = typer.Option(
        ..., "--clients", "-c",
        help="Client names, comma separated or repeated (e.g. m4,s23,laptop)"
    ),
    tunnel_port: Optional[int] = typer.Option(
        None, "--tunnel-port", "-p",
        help="Tunnel port on the gateway (default: 2222)"
    ),
    ssh_port: Optional[int] = typer.Option(None, "--ssh-port", help="Gateway SSH port (default: 22)"),
    identity: Optional[str] = typer.Option(None, "--identity", "-i", help="Private key used to reach the gateway"),
    name: str = typer.Option(DEFAULT_ENDPOINT_NAME, "--name", "-n", help="Tunnel endpoint name"),
    passphrase: bool = typer.Option(
        False, "--passphrase", "-P",
        help="Prompt for a passphrase to encrypt the client keys"
    ),
    skip_packages: bool = typer.Option(False, "--skip-packages", help="Do not install autossh and mosh"),
    skip_verify: bool = typer.Option(False, "--skip-verify", help="Do not verify SSH access to the gateway"),
    no_start: bool = typer.Option(False, "--no-start", help="Install the tunnel without starting it"),
):
    """
    Configure this host to keep a persistent reverse SSH tunnel

    Installs autossh and mosh, verifies SSH access to the gateway, issues
    and authorizes client keys, then installs and starts the tunnel.
    Safe to re-run.

    Examples:
        mole setup --host server.example.com --user admin --clients m4,s23
        mole setup -H 192.168.1.100 -u admin -p 2222 -c laptop -c phone
    """
    runtime = get_runtime(ctx)
    try:
        endpoint = runtime.endpoint(name, {
            "remote_host": host,
            "remote_user": user,
            "remote_ssh_port": ssh_port,
            "identity_file": identity,
            "remote_bind_port": tunnel_port,
        })
        names = _split_clients(clients)
        if not names:
            raise typer.BadParameter("at least one client name is required", param_hint="--clients")

        stdout_console.print("[bold yellow]Configuration:[/bold yellow]")
        stdout_console.print(f"  Server: {endpoint.destination}:{endpoint.remote_ssh_port}", markup=False)
        stdout_console.print(f"  Tunnel port: {endpoint.remote_bind_port} (gateway loopback only)")
        stdout_console.print(f"  Clients: {', '.join(names)}")
        stdout_console.print(f"  Key storage: {runtime.settings.key_dir}")
        stdout_console.print()

        secret = None
        if passphrase:
            secret = prompt_provider.prompt("Client key passphrase", password=True) or None

        outcome = _provisioner(runtime).setup(
            SetupRequest(
                endpoint=endpoint,
                clients=names,
                passphrase=secret,
                install_packages=not skip_packages,
                verify_ssh=not skip_verify,
                start=not no_start,
            ),
            on_step=prompt_provider.step,
            on_info=prompt_provider.detail,
        )
    except MoleError as e:
        stderr_console.print(f"[red]Setup Error:[/red] {e}")
        raise typer.Exit(1)
    except typer.BadParameter:
        raise
    except Exception as e:
        logger.exception("Setup failed")
        stderr_console.print(f"[red]Error:[/red] Setup failed: {e}")
        raise typer.Exit(1)

    print_connection_instructions(endpoint, runtime.settings.key_dir, outcome.credentials[0].name)
    stdout_console.print()
    stdout_console.print("[bold green]=== Setup Complete ===[/bold green]")


def teardown(
    ctx: typer.Context,
    name: str = typer.Option(DEFAULT_ENDPOINT_NAME, "--name", "-n", help="Tunnel endpoint name"),
    remove_keys: bool = typer.Option(False, "--remove-keys", help="Delete the client key directory"),
    remove_auth: bool = typer.Option(False, "--remove-auth", help="Remove tunnel keys from authorized_keys"),
    uninstall_tools: bool = typer.Option(False, "--uninstall-tools", help="Uninstall autossh and mosh"),
):
    """
    Remove the tunnel from this host

    Client keys, authorized_keys entries and tools are kept unless asked.

    Examples:
        mole teardown
        mole teardown --remove-keys --remove-auth
    """
    runtime = get_runtime(ctx)
    try:
        _provisioner(runtime).teardown(
            TeardownRequest(
                name=name,
                remove_keys=remove_keys,
                remove_auth=remove_auth,
                uninstall_tools=uninstall_tools,
            ),
            on_step=prompt_provider.step,
            on_info=prompt_provider.detail,
        )
    except MoleError as e:
        stderr_console.print(f"[red]Teardown Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Teardown failed")
        stderr_console.print(f"[red]Error:[/red] Teardown failed: {e}")
        raise typer.Exit(1)

    stdout_console.print()
    stdout_console.print("[bold green]=== Teardown Complete ===[/bold green]")
