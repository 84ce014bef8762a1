"""
CLI interface for Scan Credits.

Operator access to balances, usage history and billing reconciliation.
"""

import logging
import sys
from typing import Optional

import stripe
import typer
import yaml
from rich.console import Console
from rich.table import Table

from scan_credits.billing.stripe_provider import StripeBillingProvider
from scan_credits.config.loader import CreditPolicy, database_path, load_credit_policy
from scan_credits.core.catalog import CREDIT_PACKS, OPERATION_COSTS, get_credit_pack
from scan_credits.core.debit import DebitExecutor
from scan_credits.core.reconciler import GrantReconciler
from scan_credits.errors import ScanCreditsError
from scan_credits.storage.repository import get_store, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_state = {"config": None}


def _policy() -> CreditPolicy:
    path = _state["config"]
    if not path:
        return CreditPolicy()
    try:
        return load_credit_policy(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid credit policy:[/] {str(e)}")
        raise typer.Exit(EXIT_CODE_FAIL)


def _store():
    db_path = database_path()
    initialize_schema(db_path)
    return get_store(db_path, starter_grant=_policy().starter_grant)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to credit policy YAML"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Scan Credits CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    _state["config"] = config
    if ctx.invoked_subcommand is None:
        console.print("Scan Credits - Use --help to see available commands")


@app.command()
def init():
    """Initialize the balance database."""
    try:
        initialize_schema(database_path())
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def catalog():
    """Show scan costs and credit packs."""
    policy = _policy()

    table = Table(title="Scan Types")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Credits", justify="right")
    table.add_column("Description")
    for kind, cost in OPERATION_COSTS.items():
        table.add_row(kind.value, cost.name, str(policy.cost_of(kind)), cost.description)
    console.print(table)

    packs = Table(title="Credit Packs")
    packs.add_column("Pack")
    packs.add_column("Credits", justify="right")
    packs.add_column("Price", justify="right")
    packs.add_column("Per credit", justify="right")
    for pack in CREDIT_PACKS:
        name = f"{pack.pack_id} [yellow](popular)[/]" if pack.popular else pack.pack_id
        packs.add_row(name, str(pack.credits), f"${pack.price}", f"${pack.price_per_credit}")
    console.print(packs)
    console.print(f"Daily scan limit: {policy.daily_ceiling} ({policy.timezone} days)")


@app.command()
def balance(user_id: str = typer.Argument(..., help="User identifier")):
    """Show a user's credit balance."""
    try:
        record = _store().get_balance(user_id)
    except ScanCreditsError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]User:[/bold] {record.user_id}")
    console.print(f"Credits: {record.balance}")
    console.print(f"Total spent: {_format_currency(record.lifetime_spent)}")
    console.print(f"Scans on {record.last_operation_date or '-'}: {record.daily_operation_count}")
    console.print(f"Last purchase: {record.last_grant_at or '-'}")
    console.print(f"Scans recorded: {len(record.usage_history)}")


@app.command()
def history(
    user_id: str = typer.Argument(..., help="User identifier"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show")
):
    """Show a user's most recent scans."""
    try:
        entries = _store().get_usage_history(user_id, limit=limit)
    except ScanCreditsError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not entries:
        console.print("[dim]No scans recorded.[/]")
        return

    table = Table(title=f"Scan History: {user_id}")
    table.add_column("Time")
    table.add_column("Kind")
    table.add_column("Credits", justify="right")
    table.add_column("Document")
    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M"),
            entry.operation_kind,
            str(entry.units_spent),
            entry.label
        )
    console.print(table)


@app.command("can-scan")
def can_scan(
    user_id: str = typer.Argument(..., help="User identifier"),
    kind: str = typer.Argument("basic", help="Scan type: basic, deep or ultra")
):
    """Check whether a user may run a scan, without charging."""
    try:
        executor = DebitExecutor(_store(), policy=_policy())
        decision = executor.check(user_id, kind)
    except ScanCreditsError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if decision.admit:
        console.print(f"[green]✓[/] {kind} scan allowed ({decision.cost} credits)")
        sys.exit(EXIT_CODE_PASS)
    console.print(
        f"[red]✗[/] {decision.reason.message}. {decision.reason.suggested_action}."
    )
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def sync(user_id: str = typer.Argument(..., help="User identifier")):
    """Credit any paid Stripe sessions the webhook missed."""
    try:
        reconciler = GrantReconciler(_store(), provider=StripeBillingProvider())
        summary = reconciler.sync_from_provider(user_id)
    except (ScanCreditsError, ValueError, stripe.StripeError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Synced {summary.sessions_seen} sessions, "
        f"applied {len(summary.sessions_applied)}, "
        f"added {summary.units_granted} credits ({_format_currency(summary.amount_paid)})"
    )
    console.print(f"Current balance: {summary.balance}")


@app.command()
def grant(
    user_id: str = typer.Argument(..., help="User identifier"),
    units: Optional[int] = typer.Argument(None, help="Credits to add"),
    session: str = typer.Option(..., "--session", "-s", help="Unique reference for this grant"),
    amount: float = typer.Option(0.0, "--amount", "-a", help="Amount paid"),
    pack: Optional[str] = typer.Option(
        None,
        "--pack",
        "-p",
        help="Grant a credit pack (starter, professional, business) at its list price"
    )
):
    """Manually grant credits. Reusing a session reference is a no-op."""
    try:
        if pack is not None:
            if units is not None:
                raise ValueError("Give either UNITS or --pack, not both")
            credit_pack = get_credit_pack(pack)
            units = credit_pack.credits
            amount = float(credit_pack.price)
        elif units is None:
            raise ValueError("UNITS or --pack is required")
        reconciler = GrantReconciler(_store())
        applied = reconciler.grant_manually(user_id, units, session, amount_paid=amount)
    except (ScanCreditsError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if applied:
        console.print(f"[green]✓[/] Added {units} credits to {user_id}")
    else:
        console.print(f"[yellow]![/] Session {session} was already applied; nothing changed")


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


if __name__ == "__main__":
    app()
