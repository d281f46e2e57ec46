"""TicketKeeper CLI.

Commands:
    ticketkeeper run --config PATH        Keep the configured accounts signed in
    ticketkeeper check --config PATH      One ticket check, waiting for its workers
    ticketkeeper status                   Show the ticket cache principals
    ticketkeeper discover DOMAIN          Show the directory SRV records of a domain
    ticketkeeper secret set ACCOUNT       Store the secret of an account
    ticketkeeper secret remove ACCOUNT    Remove the secret of an account
    ticketkeeper version                  Show the version
"""

from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from returns.result import Failure
from rich.console import Console
from rich.table import Table

from ticketkeeper import __version__
from ticketkeeper.app import create_ticket_keeper
from ticketkeeper.core.config import SignInConfig, load_config
from ticketkeeper.core.exceptions import ConfigError
from ticketkeeper.core.logging import configure_logging
from ticketkeeper.core.types import Account
from ticketkeeper.credentials.store import KeyringCredentialStore
from ticketkeeper.directory.gssapi_client import gssapi_available
from ticketkeeper.discovery.srv import ServiceDiscovery, ldap_service_query
from ticketkeeper.signin.worker import WorkerReport
from ticketkeeper.state.store import Notification
from ticketkeeper.tickets.cache import TicketCacheInspector

app = typer.Typer(
    name="ticketkeeper",
    help="Keep Kerberos tickets for directory accounts signed in",
    add_completion=False,
)

secret_app = typer.Typer(help="Manage stored account secrets")
app.add_typer(secret_app, name="secret")

console = Console()


@app.callback()
def main(
    log_level: str = typer.Option("info", "--log-level", "-l", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Log as JSON lines"),
) -> None:
    """Configure logging for every command."""
    try:
        configure_logging(log_level, json_output=json_logs)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(2)


def _load(config_path: Path) -> SignInConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/] {e.message}")
        raise typer.Exit(1)


def _require_native() -> None:
    available, reason = gssapi_available()
    if not available:
        console.print(f"[red]Error:[/] GSSAPI is not available: {reason}")
        console.print("Install the native extra: [bold]pip install ticketkeeper[native][/]")
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Sign-in commands
# ---------------------------------------------------------------------------


@app.command("run")
def run(
    config_path: Path = typer.Option(..., "--config", "-c", help="Configuration JSON"),
    state_file: Optional[Path] = typer.Option(
        None, "--state-file", help="Export published user state to this JSON file"
    ),
    shutdown_timeout: float = typer.Option(30.0, help="Seconds to wait for workers on exit"),
) -> None:
    """Run the scheduler until interrupted. SIGHUP means the network changed."""
    config = _load(config_path)
    _require_native()

    keeper = create_ticket_keeper(config)
    stop_requested = threading.Event()

    def on_notification(notification: Notification, account: Account, details: Dict[str, Any]) -> None:
        console.print(f"[cyan]{notification.name.lower()}[/] {account}")
        if state_file is not None:
            keeper.state_store.export_json(state_file)

    def request_stop(signum: int, frame: Any) -> None:
        stop_requested.set()

    def network_changed(signum: int, frame: Any) -> None:
        keeper.scheduler.notify_network_change()

    keeper.state_store.add_listener(on_notification)
    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, network_changed)

    console.print(
        f"[bold green]TicketKeeper v{__version__}[/] "
        f"keeping {len(config.automatic_accounts)} account(s) signed in"
    )
    keeper.start()
    while not stop_requested.wait(timeout=1.0):
        pass

    console.print("Stopping...")
    if not keeper.stop(timeout=shutdown_timeout):
        console.print("[yellow]Warning:[/] workers still running at exit")


@app.command("check")
def check(
    config_path: Path = typer.Option(..., "--config", "-c", help="Configuration JSON"),
    timeout: float = typer.Option(120.0, help="Seconds to wait for the workers"),
) -> None:
    """Run one ticket check and report what every worker did."""
    config = _load(config_path)
    _require_native()

    keeper = create_ticket_keeper(config)
    passes = keeper.scheduler.check_tickets()
    finished = all(p.wait(timeout) for p in passes)

    reports = [r for p in passes for r in p.reports]
    _display_reports(reports)
    if not finished:
        console.print("[yellow]Warning:[/] check did not finish in time")
        raise typer.Exit(1)


def _display_reports(reports: List[WorkerReport]) -> None:
    table = Table(title="Ticket check")
    table.add_column("Account", style="bold")
    table.add_column("Outcome")
    table.add_column("State")
    table.add_column("Detail")
    for report in sorted(reports, key=lambda r: r.account.key):
        state = report.session.state.name if report.session else ""
        table.add_row(str(report.account), report.outcome.name, state, report.detail)
    console.print(table)


# ---------------------------------------------------------------------------
# Inspection commands
# ---------------------------------------------------------------------------


@app.command("status")
def status(
    klist: str = typer.Option("klist", help="Ticket cache listing tool"),
) -> None:
    """Show the principals held in the ticket cache."""
    listing = TicketCacheInspector(klist_command=klist).list_principals()
    if isinstance(listing, Failure):
        console.print(f"[red]Error:[/] {listing.failure().message}")
        raise typer.Exit(1)

    entries = sorted(listing.unwrap(), key=lambda e: e.principal.lower())
    if not entries:
        console.print("[dim]No tickets in the cache[/]")
        return

    table = Table(title="Ticket cache")
    table.add_column("Principal", style="bold")
    table.add_column("Default", justify="center")
    table.add_column("Expired", justify="center")
    table.add_column("Cache")
    for entry in entries:
        table.add_row(
            entry.principal,
            "*" if entry.is_default else "",
            "[red]yes[/]" if entry.expired else "",
            entry.cache_name,
        )
    console.print(table)


@app.command("discover")
def discover(
    domain: str = typer.Argument(..., help="Directory domain, e.g. example.com"),
    timeout: float = typer.Option(5.0, help="DNS lifetime in seconds"),
) -> None:
    """Show the LDAP SRV records advertised for a domain."""
    query = ldap_service_query(domain)
    result = ServiceDiscovery(timeout=timeout).resolve(query)
    if isinstance(result, Failure):
        console.print(f"[yellow]{result.failure().message}[/]")
        raise typer.Exit(1)

    table = Table(title=query)
    table.add_column("Target", style="bold")
    table.add_column("Port", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Weight", justify="right")
    for record in result.unwrap():
        table.add_row(record.target, str(record.port), str(record.priority), str(record.weight))
    console.print(table)


# ---------------------------------------------------------------------------
# Secret commands
# ---------------------------------------------------------------------------


def _account(principal: str) -> Account:
    try:
        return Account(principal)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(2)


@secret_app.command("set")
def secret_set(
    principal: str = typer.Argument(..., help="Account principal, user@DOMAIN"),
    service: str = typer.Option("ticketkeeper", help="Keyring service name"),
) -> None:
    """Store the secret used for automatic sign-in."""
    account = _account(principal)
    secret = typer.prompt(f"Password for {account}", hide_input=True, confirmation_prompt=True)
    result = KeyringCredentialStore(service=service).store(account, secret.encode("utf-8"))
    if isinstance(result, Failure):
        console.print(f"[red]Error:[/] {result.failure().message}")
        raise typer.Exit(1)
    console.print(f"  ✅ Secret stored for [bold]{account}[/]")


@secret_app.command("remove")
def secret_remove(
    principal: str = typer.Argument(..., help="Account principal, user@DOMAIN"),
    service: str = typer.Option("ticketkeeper", help="Keyring service name"),
) -> None:
    """Remove the stored secret of an account."""
    account = _account(principal)
    result = KeyringCredentialStore(service=service).remove(account)
    if isinstance(result, Failure):
        console.print(f"[red]Error:[/] {result.failure().message}")
        raise typer.Exit(1)
    console.print(f"  ✅ Secret removed for [bold]{account}[/]")


@app.command("version")
def version() -> None:
    """Show the TicketKeeper version."""
    console.print(f"TicketKeeper v{__version__}")
