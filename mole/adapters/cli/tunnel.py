"""
Tunnel CLI commands
"""
import typer
from datetime import datetime
from typing import Callable, Optional

from rich.table import Table
from rich.panel import Panel
from rich.text import Text

from ...core.logging import get_logger, get_stdout_console, get_stderr_console
from ...core.constants import DEFAULT_ENDPOINT_NAME, DEFAULT_LOG_LINES, LABEL_PREFIX
from ...core.exceptions import EndpointNotFoundError, MoleError
from ...domain.diagnostics import CheckStatus, DiagnosticReport, Verdict
from ...domain.tunnel import ControlResult, ProcessRole, TunnelState
from .runtime import get_runtime

logger = get_logger(__name__)
stdout_console = get_stdout_console()
stderr_console = get_stderr_console()

NAME_ARGUMENT = typer.Argument(DEFAULT_ENDPOINT_NAME, help="Tunnel endpoint name")

_STATE_STYLES = {
    TunnelState.CONNECTED: "green",
    TunnelState.STARTING: "cyan",
    TunnelState.DEGRADED: "yellow",
    TunnelState.STOPPED: "dim",
    TunnelState.FAILED: "red",
    TunnelState.UNINSTALLED: "dim",
}

_CHECK_STYLES = {
    CheckStatus.OK: "[green]✓[/green]",
    CheckStatus.FAIL: "[red]✗[/red]",
    CheckStatus.UNKNOWN: "[yellow]?[/yellow]",
}

_VERDICT_STYLES = {
    Verdict.HEALTHY: "green",
    Verdict.DEGRADED: "yellow",
    Verdict.DOWN: "red",
}


def register_tunnel_app(app: typer.Typer) -> None:
    """Register tunnel subcommand app"""
    tunnel_app = typer.Typer(
        name="tunnel",
        help="Install, control and diagnose reverse tunnel endpoints",
        add_completion=False,
        no_args_is_help=True,
    )

    tunnel_app.command(name="install")(tunnel_install)
    tunnel_app.command(name="start")(tunnel_start)
    tunnel_app.command(name="stop")(tunnel_stop)
    tunnel_app.command(name="restart")(tunnel_restart)
    tunnel_app.command(name="reset")(tunnel_reset)
    tunnel_app.command(name="status")(tunnel_status)
    tunnel_app.command(name="uninstall")(tunnel_uninstall)
    tunnel_app.command(name="list")(tunnel_list)

    app.add_typer(tunnel_app, name="tunnel")


def _print_result(result: ControlResult) -> None:
    style = _STATE_STYLES.get(result.state, "white")
    mark = "[green]✓[/green]" if result.changed else "[cyan]ℹ[/cyan]"
    stdout_console.print(f"{mark} {result.message} ([{style}]{result.state.value}[/{style}])")


def _run_control(action: str, call: Callable[[], ControlResult]) -> None:
    try:
        _print_result(call())
    except MoleError as e:
        stderr_console.print(f"[red]Tunnel Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception(f"Failed to {action} tunnel")
        stderr_console.print(f"[red]Error:[/red] Failed to {action} tunnel: {e}")
        raise typer.Exit(1)


def tunnel_install(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    host: Optional[str] = typer.Option(
        None, "--host", "-H",
        help="Gateway host name or ~/.ssh/config alias"
    ),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Gateway SSH user"),
    ssh_port: Optional[int] = typer.Option(None, "--ssh-port", "-p", help="Gateway SSH port (default: 22)"),
    identity: Optional[str] = typer.Option(None, "--identity", "-i", help="Private key used to reach the gateway"),
    tunnel_port: Optional[int] = typer.Option(
        None, "--tunnel-port", "-t",
        help="Port bound on the gateway's loopback interface (default: 2222)"
    ),
    local_port: Optional[int] = typer.Option(None, "--local-port", help="Local SSH port (default: 22)"),
    keepalive_interval: Optional[int] = typer.Option(None, "--keepalive-interval", help="Seconds between keepalives"),
    keepalive_retries: Optional[int] = typer.Option(None, "--keepalive-retries", help="Missed keepalives before reconnect"),
    restart_policy: Optional[str] = typer.Option(None, "--restart-policy", help="always or on-failure"),
    start: bool = typer.Option(False, "--start", "-s", help="Start the tunnel after installing"),
):
    """
    Register a tunnel endpoint with the platform service manager

    Re-running with the same settings is a no-op; changed settings
    replace the registration (the tunnel is stopped first).

    Examples:
        mole tunnel install --host gw.example.com --user ubuntu
        mole tunnel install laptop -H my-gateway -t 2223 --start
    """
    runtime = get_runtime(ctx)

    def install() -> ControlResult:
        endpoint = runtime.endpoint(name, {
            "remote_host": host,
            "remote_user": user,
            "remote_ssh_port": ssh_port,
            "identity_file": identity,
            "remote_bind_port": tunnel_port,
            "local_target_port": local_port,
            "keepalive_interval": keepalive_interval,
            "keepalive_retries": keepalive_retries,
            "restart_policy": restart_policy,
        })
        result = runtime.supervisor.install(endpoint)
        if start:
            _print_result(result)
            return runtime.supervisor.start(name)
        return result

    _run_control("install", install)


def tunnel_start(ctx: typer.Context, name: str = NAME_ARGUMENT):
    """
    Start an installed tunnel and wait for the transport to come up

    Examples:
        mole tunnel start
        mole tunnel start laptop
    """
    _run_control("start", lambda: get_runtime(ctx).supervisor.start(name))


def tunnel_stop(ctx: typer.Context, name: str = NAME_ARGUMENT):
    """Stop a tunnel and every process tagged with it"""
    _run_control("stop", lambda: get_runtime(ctx).supervisor.stop(name))


def tunnel_restart(ctx: typer.Context, name: str = NAME_ARGUMENT):
    """Stop then start a tunnel"""
    _run_control("restart", lambda: get_runtime(ctx).supervisor.restart(name))


def tunnel_reset(ctx: typer.Context, name: str = NAME_ARGUMENT):
    """Clear a failed tunnel back to stopped"""
    _run_control("reset", lambda: get_runtime(ctx).supervisor.reset(name))


def tunnel_uninstall(ctx: typer.Context, name: str = NAME_ARGUMENT):
    """Stop a tunnel, remove its registration and log files"""
    _run_control("uninstall", lambda: get_runtime(ctx).supervisor.uninstall(name))


def _format_pids(report: DiagnosticReport, role: ProcessRole) -> str:
    if report.processes is None:
        return "[yellow]unknown[/yellow]"
    pids = report.processes.get(role) or []
    if not pids:
        return "[red]not running[/red]"
    return "[green]running[/green] (PID " + ", ".join(str(p) for p in pids) + ")"


def render_report(report: DiagnosticReport, exit_status: Optional[str] = None) -> None:
    """Print a diagnostic report"""
    table = Table(title=f"Tunnel Status: {report.endpoint}", show_header=True, header_style="bold cyan")
    table.add_column("Check", style="cyan")
    table.add_column("Result")

    if report.recorded_state:
        style = _STATE_STYLES.get(TunnelState(report.recorded_state), "white")
        table.add_row("State", f"[{style}]{report.recorded_state}[/{style}]")
    else:
        table.add_row("State", "[dim]not installed[/dim]")
    table.add_row("Registration", f"{_CHECK_STYLES[report.registration.status]} {report.registration.detail}")
    loaded = f"{_CHECK_STYLES[report.service_loaded.status]} {report.service_loaded.detail}"
    if exit_status is not None:
        loaded += f" (last exit status: {exit_status})"
    table.add_row("Service manager", loaded)
    table.add_row("autossh", _format_pids(report, ProcessRole.RECONNECT))
    table.add_row("Sleep prevention", _format_pids(report, ProcessRole.SLEEP_PREVENTION))
    table.add_row("ssh transport", _format_pids(report, ProcessRole.TRANSPORT))
    if report.binding:
        table.add_row("Binding", f"{report.binding} on {report.remote}")
    else:
        table.add_row("Binding", "[yellow]unknown[/yellow]")
    table.add_row("Internet", f"{_CHECK_STYLES[report.internet.status]} {report.internet.detail}")
    table.add_row("Gateway", f"{_CHECK_STYLES[report.gateway.status]} {report.gateway.detail}")
    stdout_console.print(table)

    for tail in report.logs:
        if not tail.present:
            stdout_console.print(f"[dim]No {tail.stream} log at {tail.path}[/dim]")
            continue
        if tail.error:
            stdout_console.print(f"[yellow]Could not read {tail.path}: {tail.error}[/yellow]")
            continue
        body = "\n".join(tail.lines) if tail.lines else "(empty)"
        title = f"{tail.path} (last {len(tail.lines)} of {tail.total_lines} lines)"
        border = "red" if tail.stream == "stderr" and tail.lines else "blue"
        stdout_console.print(Panel(Text(body), title=title, border_style=border))

    for check, error in report.errors.items():
        logger.debug(f"Check '{check}' degraded: {error}")

    style = _VERDICT_STYLES[report.verdict]
    stdout_console.print(f"Verdict: [bold {style}]{report.verdict.value.upper()}[/bold {style}]")
    stdout_console.print(f"[dim]{report.caveat}[/dim]")

    if report.verdict != Verdict.HEALTHY:
        stderr_log = report.logs[-1].path if report.logs else None
        hints = [f"Restart tunnel:      mole tunnel restart {report.endpoint}"]
        if stderr_log:
            hints.append(f"Watch errors:        tail -f {stderr_log}")
        if report.remote:
            hints.append(f"Check SSH to server: ssh -v {report.remote} 'echo OK'")
        stdout_console.print(Panel(Text("\n".join(hints)), title="Troubleshooting", border_style="yellow"))


def tunnel_status(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    lines: int = typer.Option(DEFAULT_LOG_LINES, "--lines", "-n", help="Log lines to show per stream"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print the verdict"),
):
    """
    Diagnose a tunnel

    Exit status: 0 healthy, 2 degraded, 1 down.

    Examples:
        mole tunnel status
        mole tunnel status laptop -n 30
    """
    runtime = get_runtime(ctx)
    try:
        try:
            runtime.supervisor.probe(name)
        except EndpointNotFoundError:
            pass
        except MoleError as e:
            logger.warning(f"Could not refresh state of tunnel '{name}': {e}")

        report = runtime.aggregator.collect(name, log_lines=lines)
        if quiet:
            stdout_console.print(f"{name}: {report.verdict.value}")
            raise typer.Exit(report.verdict.exit_code)

        exit_status = None
        last_exit_status = getattr(runtime.actuator, "last_exit_status", None)
        if last_exit_status is not None:
            try:
                exit_status = last_exit_status(f"{LABEL_PREFIX}.{name}")
            except MoleError:
                exit_status = None
        render_report(report, exit_status)
    except typer.Exit:
        raise
    except Exception as e:
        logger.exception("Failed to get tunnel status")
        stderr_console.print(f"[red]Error:[/red] Failed to get tunnel status: {e}")
        raise typer.Exit(1)

    raise typer.Exit(report.verdict.exit_code)


def tunnel_list(ctx: typer.Context):
    """List installed tunnel endpoints"""
    runtime = get_runtime(ctx)
    try:
        endpoints = runtime.supervisor.list()
    except MoleError as e:
        stderr_console.print(f"[red]Tunnel Error:[/red] {e}")
        raise typer.Exit(1)

    if not endpoints:
        stdout_console.print("[yellow]No tunnel endpoints installed[/yellow]")
        return

    table = Table(title="Tunnel Endpoints", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="cyan")
    table.add_column("State")
    table.add_column("Gateway", style="green")
    table.add_column("Forward", style="blue")
    table.add_column("Updated", style="dim")

    for endpoint in endpoints:
        style = _STATE_STYLES.get(endpoint.state, "white")
        updated = datetime.fromtimestamp(endpoint.updated_at).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(
            endpoint.name,
            f"[{style}]{endpoint.state.value}[/{style}]",
            f"{endpoint.destination}:{endpoint.remote_ssh_port}",
            endpoint.forward_spec,
            updated,
        )

    stdout_console.print(table)
