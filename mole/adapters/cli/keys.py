"""
Client credential CLI commands
"""
import typer
from typing import List

from rich.table import Table

from ...core.logging import get_logger, get_stdout_console, get_stderr_console
from ...core.exceptions import CredentialExistsError, MoleError
from .prompts import RichPromptProvider
from .runtime import get_runtime

logger = get_logger(__name__)
stdout_console = get_stdout_console()
stderr_console = get_stderr_console()
prompt_provider = RichPromptProvider()


def register_keys_app(app: typer.Typer) -> None:
    """Register keys subcommand app"""
    keys_app = typer.Typer(
        name="keys",
        help="Issue, authorize and revoke client credentials",
        add_completion=False,
        no_args_is_help=True,
    )

    keys_app.command(name="issue")(keys_issue)
    keys_app.command(name="authorize")(keys_authorize)
    keys_app.command(name="revoke")(keys_revoke)
    keys_app.command(name="delete")(keys_delete)
    keys_app.command(name="list")(keys_list)

    app.add_typer(keys_app, name="keys")


def keys_issue(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="Client names"),
    passphrase: bool = typer.Option(
        False, "--passphrase", "-P",
        help="Prompt for a passphrase to encrypt the private keys"
    ),
    authorize: bool = typer.Option(
        False, "--authorize", "-a",
        help="Also add the new keys to authorized_keys"
    ),
):
    """
    Generate an Ed25519 keypair per client

    Existing keys are left untouched.

    Examples:
        mole keys issue phone tablet
        mole keys issue laptop --authorize -P
    """
    store = get_runtime(ctx).credentials
    secret = None
    if passphrase:
        secret = prompt_provider.prompt("Key passphrase", password=True) or None

    try:
        for name in names:
            try:
                credential = store.issue(name, secret)
                stdout_console.print(f"[green]✓[/green] Generated [cyan]{name}[/cyan]: {credential.private_key_path}")
            except CredentialExistsError:
                stdout_console.print(f"[cyan]ℹ[/cyan] Skipping [cyan]{name}[/cyan] (key already exists)")
            if authorize:
                added = store.authorize(name)
                stdout_console.print(
                    f"  {'Added to' if added else 'Already in'} {store.authorization.path}"
                )
    except MoleError as e:
        stderr_console.print(f"[red]Key Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Failed to issue keys")
        stderr_console.print(f"[red]Error:[/red] Failed to issue keys: {e}")
        raise typer.Exit(1)

    stdout_console.print(
        f"Copy the private key(s) from [cyan]{store.key_dir}[/cyan] to the client devices"
    )


def keys_authorize(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="Client names"),
):
    """Add client public keys to authorized_keys"""
    store = get_runtime(ctx).credentials
    try:
        for name in names:
            if store.authorize(name):
                stdout_console.print(f"[green]✓[/green] Added [cyan]{name}[/cyan] to {store.authorization.path}")
            else:
                stdout_console.print(f"[cyan]ℹ[/cyan] [cyan]{name}[/cyan] already in {store.authorization.path}")
    except MoleError as e:
        stderr_console.print(f"[red]Key Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Failed to authorize keys")
        stderr_console.print(f"[red]Error:[/red] Failed to authorize keys: {e}")
        raise typer.Exit(1)


def keys_revoke(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="Client names"),
):
    """
    Remove every authorized_keys entry of a client

    The keypair is kept and can be authorized again later.
    """
    store = get_runtime(ctx).credentials
    try:
        for name in names:
            removed = store.revoke(name)
            if removed:
                stdout_console.print(
                    f"[green]✓[/green] Revoked [cyan]{name}[/cyan] "
                    f"({removed} entr{'y' if removed == 1 else 'ies'} removed)"
                )
            else:
                stdout_console.print(f"[cyan]ℹ[/cyan] No entries for [cyan]{name}[/cyan] in {store.authorization.path}")
    except MoleError as e:
        stderr_console.print(f"[red]Key Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Failed to revoke keys")
        stderr_console.print(f"[red]Error:[/red] Failed to revoke keys: {e}")
        raise typer.Exit(1)


def keys_delete(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="Client names"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Revoke clients and delete their keypairs"""
    store = get_runtime(ctx).credentials
    if not yes and not prompt_provider.confirm(f"Delete keypair(s) for {', '.join(names)}?"):
        stdout_console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(1)

    try:
        for name in names:
            store.delete(name)
            stdout_console.print(f"[green]✓[/green] Deleted [cyan]{name}[/cyan]")
    except MoleError as e:
        stderr_console.print(f"[red]Key Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Failed to delete keys")
        stderr_console.print(f"[red]Error:[/red] Failed to delete keys: {e}")
        raise typer.Exit(1)


def keys_list(ctx: typer.Context):
    """List client credentials and their authorization status"""
    store = get_runtime(ctx).credentials
    try:
        credentials = list(store.list())
        if not credentials:
            stdout_console.print(f"[yellow]No client keys in {store.key_dir}[/yellow]")
            return

        table = Table(title="Client Credentials", show_header=True, header_style="bold cyan")
        table.add_column("Name", style="cyan")
        table.add_column("Status")
        table.add_column("Fingerprint", style="dim")
        table.add_column("Created", style="dim")

        for credential in credentials:
            if credential.revoked:
                status = "[red]revoked[/red]"
            elif store.authorization.contains(credential.public_key()):
                status = "[green]authorized[/green]"
            else:
                status = "[yellow]not authorized[/yellow]"
            table.add_row(
                credential.name,
                status,
                credential.fingerprint or "N/A",
                credential.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            )

        stdout_console.print(table)
    except MoleError as e:
        stderr_console.print(f"[red]Key Error:[/red] {e}")
        raise typer.Exit(1)
