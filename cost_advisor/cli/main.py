"""
CLI interface for Cost Advisor.

Provides command-line access to evaluation and the recommendation lifecycle.
"""

import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cost_advisor.config.loader import EngineConfig, load_engine_config
from cost_advisor.core.engine import run_evaluation
from cost_advisor.core.exceptions import CostAdvisorError, StoreFailure
from cost_advisor.core.lifecycle import dismiss, fail, implement, start
from cost_advisor.core.reporting import summarize, total_savings
from cost_advisor.log import setup_logging
from cost_advisor.storage.db import DEFAULT_DB_PATH
from cost_advisor.storage.models import AccountScope, Priority, RecommendationStatus, Service
from cost_advisor.storage.repository import (
    RecommendationRepository,
    UsageRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_PRIORITY_STYLES = {
    Priority.CRITICAL: "bold red",
    Priority.HIGH: "red",
    Priority.MEDIUM: "yellow",
    Priority.LOW: "dim",
}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Verbose console logging")
):
    """Cost Advisor CLI."""
    setup_logging(debug)
    if ctx.invoked_subcommand is None:
        console.print("Cost Advisor - Use --help to see available commands")


@app.command()
def init(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path")
):
    """Initialize the Cost Advisor database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def evaluate(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner id"),
    account: str = typer.Option(..., "--account", "-a", help="Cloud account reference"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Engine YAML config"),
    workers: int = typer.Option(1, "--workers", "-w", min=1, help="Parallel resource evaluations")
):
    """
    Generate recommendations from recent usage of one account.

    Safe to re-run: unchanged conditions never create duplicate
    recommendations.
    """
    try:
        config = load_engine_config(config_path) if config_path else EngineConfig()
        summary = run_evaluation(
            scope=AccountScope(owner, account),
            usage_store=UsageRepository(db),
            recommendation_store=RecommendationRepository(db),
            config=config,
            max_workers=workers
        )
    except StoreFailure as e:
        _print_store_failure(e)
        if e.partial_summary is not None:
            console.print(f"Partial progress: {e.partial_summary.as_dict()}")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("\n[bold]Evaluation Result[/bold]")
    console.print("-" * 40)
    console.print(f"Resources evaluated: {summary.resources_evaluated}")
    console.print(f"Created: {summary.created}")
    console.print(f"Updated: {summary.updated}")
    console.print(f"Unchanged: {summary.unchanged}")
    console.print(f"Skipped: {summary.skipped}")
    console.print(f"Errors: {summary.errors}")
    sys.exit(EXIT_CODE_PASS)


@app.command("list")
def list_recommendations(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner id"),
    account: str = typer.Option(..., "--account", "-a", help="Cloud account reference"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
    status: Optional[str] = typer.Option(None, "--status", help="Filter by status"),
    service: Optional[str] = typer.Option(None, "--service", help="Filter by service"),
    priority: Optional[str] = typer.Option(None, "--priority", help="Filter by priority"),
    limit: int = typer.Option(20, "--limit", min=1),
    offset: int = typer.Option(0, "--offset", min=0)
):
    """List recommendations, most urgent and largest savings first."""
    try:
        recommendations = RecommendationRepository(db).list_recommendations(
            AccountScope(owner, account),
            service=Service(service.upper()) if service else None,
            priority=Priority(priority.lower()) if priority else None,
            status=RecommendationStatus(status.lower()) if status else None,
            limit=limit,
            offset=offset
        )
    except StoreFailure as e:
        _print_store_failure(e)
        sys.exit(EXIT_CODE_FAIL)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not recommendations:
        console.print("\n[dim]No recommendations found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Recommendations")
    table.add_column("ID")
    table.add_column("Resource")
    table.add_column("Kind")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Savings/month", justify="right")
    for rec in recommendations:
        table.add_row(
            rec.id,
            rec.resource_id,
            rec.kind.value,
            f"[{_PRIORITY_STYLES[rec.priority]}]{rec.priority.value}[/]",
            rec.status.value,
            _format_currency(rec.estimated_savings.amount, rec.estimated_savings.currency)
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def summary(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner id"),
    account: str = typer.Option(..., "--account", "-a", help="Cloud account reference"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path")
):
    """Summarize active recommendations by service and priority."""
    try:
        active = RecommendationRepository(db).list_active(AccountScope(owner, account))
    except StoreFailure as e:
        _print_store_failure(e)
        sys.exit(EXIT_CODE_FAIL)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    groups = summarize(active)
    if not groups:
        console.print("\n[dim]No active recommendations.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Active Recommendations")
    table.add_column("Service")
    table.add_column("Priority")
    table.add_column("Count", justify="right")
    table.add_column("Savings/month", justify="right")
    for group in groups:
        table.add_row(
            group.service.value,
            f"[{_PRIORITY_STYLES[group.priority]}]{group.priority.value}[/]",
            str(group.count),
            _format_currency(group.total_savings, group.currency)
        )
    console.print(table)
    for currency, amount in total_savings(active).items():
        console.print(f"Total potential savings: {_format_currency(amount, currency)}")
    sys.exit(EXIT_CODE_PASS)


@app.command("start")
def start_command(
    recommendation_id: str = typer.Argument(..., help="Recommendation id"),
    actor: str = typer.Option(..., "--actor", help="User performing the change"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path")
):
    """Mark a recommendation as in progress."""
    _run_transition(lambda store: start(store, recommendation_id, actor), db)


@app.command("implement")
def implement_command(
    recommendation_id: str = typer.Argument(..., help="Recommendation id"),
    actor: str = typer.Option(..., "--actor", help="User performing the change"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path")
):
    """Mark a recommendation as implemented."""
    _run_transition(lambda store: implement(store, recommendation_id, actor), db)


@app.command("dismiss")
def dismiss_command(
    recommendation_id: str = typer.Argument(..., help="Recommendation id"),
    actor: str = typer.Option(..., "--actor", help="User dismissing the recommendation"),
    reason: str = typer.Option("", "--reason", "-r", help="Why the recommendation is dismissed"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path")
):
    """Dismiss a recommendation. A reason is required."""
    _run_transition(lambda store: dismiss(store, recommendation_id, actor, reason), db)


@app.command("fail")
def fail_command(
    recommendation_id: str = typer.Argument(..., help="Recommendation id"),
    actor: str = typer.Option(..., "--actor", help="User reporting the failure"),
    reason: str = typer.Option("", "--reason", "-r", help="What went wrong"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path")
):
    """Mark a recommendation as failed. A reason is required."""
    _run_transition(lambda store: fail(store, recommendation_id, actor, reason), db)


def _run_transition(operation, db: str) -> None:
    try:
        rec = operation(RecommendationRepository(db))
    except StoreFailure as e:
        _print_store_failure(e)
        sys.exit(EXIT_CODE_FAIL)
    except CostAdvisorError as e:
        console.print(f"[red]Error ({e.code}):[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Recommendation {rec.id} is now {rec.status.value}")
    sys.exit(EXIT_CODE_PASS)


def _print_store_failure(error: StoreFailure) -> None:
    console.print(f"[red]Store error:[/] {error.message}")
    if "no such table" in error.message.lower():
        console.print("Run `cost-advisor init` to initialize the database")


def _format_currency(amount, currency: str = "USD") -> str:
    """Format currency with proper symbols and formatting."""
    if currency == "USD":
        return f"${abs(amount):,.2f}"
    return f"{abs(amount):,.2f} {currency}"


if __name__ == "__main__":
    app()
