"""
CLI interface for Job Quota Guard.

Provides command-line access to the ledger, the response cache and the
guarded search flow.
"""

import logging
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from job_quota_guard.config.loader import GuardConfig, Settings, load_guard_config, load_settings
from job_quota_guard.core.guardrails import CreditGuard
from job_quota_guard.core.ledger import PointsLedger
from job_quota_guard.core.orchestrator import (
    ExecutionMode,
    SearchOrchestrator,
    SearchOutcome,
    Session,
    parse_execution_mode,
)
from job_quota_guard.core.points import calculate_usage_stats
from job_quota_guard.core.pricing import SpendType, SubscriptionTier
from job_quota_guard.core.usage import UsageWarningLevel, UsageWindowTracker
from job_quota_guard.sdk.jobs_client import JobSearchClient
from job_quota_guard.storage.cache import ResponseCache
from job_quota_guard.storage.models import PointsAccount
from job_quota_guard.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_state = {"config_path": None}


def _settings() -> Settings:
    return load_settings()


def _guard_config() -> GuardConfig:
    path = _state["config_path"]
    return load_guard_config(path) if path else GuardConfig()


def _ledger(settings: Settings, config: GuardConfig) -> PointsLedger:
    return PointsLedger(get_repository(settings.db_path), config.cost_table)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML file with point costs, tiers and credit guard settings"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Job Quota Guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    _state["config_path"] = config
    if ctx.invoked_subcommand is None:
        console.print("Job Quota Guard - Use --help to see available commands")


@app.command()
def init():
    """Initialize the points ledger database."""
    settings = _settings()
    try:
        initialize_schema(settings.db_path)
        console.print(f"[green]✓[/] Ledger initialized at {settings.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("create-account")
def create_account(
    user_id: str = typer.Argument(..., help="Developer id"),
    tier: SubscriptionTier = typer.Option(
        SubscriptionTier.FREE,
        "--tier",
        "-t",
        help="Subscription tier"
    ),
    monthly_points: Optional[int] = typer.Option(
        None,
        "--monthly-points",
        "-m",
        help="Override the tier's monthly allocation"
    )
):
    """Create a points account with the tier's monthly allocation."""
    settings = _settings()
    try:
        config = _guard_config()
        allocation = monthly_points
        if allocation is None:
            allocation = config.cost_table.get_subscription_tier(tier).monthly_points
        get_repository(settings.db_path).create_account(PointsAccount(
            developer_id=user_id,
            monthly_points=allocation,
            points_used=0,
            points_earned=0,
            subscription_tier=tier
        ))
        console.print(f"[green]✓[/] Created {tier.value} account {user_id} with {allocation} points")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def balance(user_id: str = typer.Argument(..., help="Developer id")):
    """Show a developer's points balance."""
    settings = _settings()
    try:
        current = _ledger(settings, _guard_config()).get_balance(user_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if current is None:
        console.print(f"[red]Error:[/] User not found: {user_id}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Points balance for {user_id}")
    table.add_column("Tier")
    table.add_column("Monthly", justify="right")
    table.add_column("Earned", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Available", justify="right")
    table.add_row(
        current.tier.value,
        str(current.monthly),
        str(current.earned),
        str(current.used),
        str(current.available)
    )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def spend(
    user_id: str = typer.Argument(..., help="Developer id"),
    spend_type: SpendType = typer.Argument(..., help="Paid action"),
    source_id: Optional[str] = typer.Option(
        None,
        "--source-id",
        "-s",
        help="Id of the artifact the spend pays for"
    )
):
    """Atomically spend points on an action."""
    settings = _settings()
    try:
        result = _ledger(settings, _guard_config()).spend_points_atomic(
            user_id, spend_type, source_id=source_id
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not result.success:
        console.print(f"[red]Spend rejected:[/] {result.error}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Spent {result.points_spent} points, new balance {result.new_balance} "
        f"(transaction {result.transaction_id})"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    user_id: str = typer.Argument(..., help="Developer id"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of transactions to show")
):
    """Show recent points transactions and totals."""
    settings = _settings()
    try:
        transactions = get_repository(settings.db_path).fetch_transactions(user_id, limit=limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not transactions:
        console.print(f"[dim]No transactions for {user_id}.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Transactions for {user_id}")
    table.add_column("When")
    table.add_column("Amount", justify="right")
    table.add_column("Type")
    table.add_column("Description")
    for tx in transactions:
        table.add_row(
            tx.created_at.strftime("%Y-%m-%d %H:%M"),
            f"{tx.amount:+d}",
            tx.spend_type.value if tx.spend_type else tx.source.value,
            tx.description
        )
    console.print(table)

    stats = calculate_usage_stats(transactions)
    console.print(f"Total spent: {stats.total_spent}  Total earned: {stats.total_earned}")
    sys.exit(EXIT_CODE_PASS)


def _parse_extra_params(pairs: List[str]) -> dict:
    params = {}
    for pair in pairs:
        if "=" not in pair:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}")
        key, value = pair.split("=", 1)
        params[key.strip()] = value.strip()
    return params


def _build_orchestrator(settings: Settings, config: GuardConfig, needs_client: bool) -> SearchOrchestrator:
    client = None
    if needs_client:
        if not settings.api_key:
            raise ValueError("RAPIDAPI_KEY is not set; use --mode stop to search without the provider")
        client = JobSearchClient(settings.api_key, settings.api_host, settings.timeout_seconds)
    cache = ResponseCache(settings.cache_dir, config.cache_ttl_seconds)
    tracker = UsageWindowTracker(initial=cache.load_usage_window())
    return SearchOrchestrator(
        cache=cache,
        tracker=tracker,
        guard=CreditGuard(tracker, config.credit_guard),
        ledger=_ledger(settings, config),
        client=client,
        defaults=settings.defaults
    )


def _display_outcome(outcome: SearchOutcome) -> None:
    if not outcome.ok:
        console.print(f"[red]Search failed ({outcome.status_code}):[/] {outcome.error}")
        for detail in outcome.details:
            console.print(f"  - {detail}")
        return

    table = Table(title=f"{len(outcome.results)} jobs (cache {outcome.cache_status})")
    table.add_column("Title")
    table.add_column("Organization")
    table.add_column("Location")
    for job in outcome.results:
        if not isinstance(job, dict):
            continue
        location = job.get("locations_derived") or job.get("location") or ""
        if isinstance(location, list):
            location = "; ".join(str(item) for item in location)
        table.add_row(
            str(job.get("title", "")),
            str(job.get("organization", "")),
            str(location)
        )
    console.print(table)

    if outcome.points_spent:
        console.print(f"Points spent: {outcome.points_spent}, new balance: {outcome.new_balance}")
    for warning in outcome.warnings:
        console.print(f"[yellow]Warning:[/] {warning}")
    usage_warning = (outcome.debug_info or {}).get("usageWarning")
    if usage_warning and usage_warning != UsageWarningLevel.NONE.value:
        console.print(f"[yellow]Provider quota is {usage_warning}[/]")


@app.command()
def search(
    title: Optional[str] = typer.Option(None, "--title", help="Job title filter"),
    location: Optional[str] = typer.Option(None, "--location", help="Location filter"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Number of results"),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Listing window: 7d, 24h or 1h"),
    param: List[str] = typer.Option([], "--param", "-p", help="Extra provider filter as key=value"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Search as this developer"),
    mode: Optional[str] = typer.Option(None, "--mode", help="Execution mode: off, log or stop")
):
    """
    Run a guarded job search.

    Cached results are served first; otherwise the credit guard and, for
    premium endpoints, the points ledger decide whether the provider is
    called.
    """
    try:
        settings = _settings()
        execution_mode = parse_execution_mode(mode) if mode else settings.mode
        raw = _parse_extra_params(param)
        raw.update({
            key: value
            for key, value in {
                "title_filter": title,
                "location_filter": location,
                "limit": limit,
                "endpoint": endpoint,
            }.items()
            if value is not None
        })
        orchestrator = _build_orchestrator(
            settings, _guard_config(), needs_client=execution_mode != ExecutionMode.STOP
        )
        try:
            outcome = orchestrator.search(
                raw,
                session=Session(user_id=user) if user else None,
                mode=execution_mode
            )
        finally:
            orchestrator.cache.close()
            if orchestrator.client is not None:
                orchestrator.client.close()
    except typer.BadParameter:
        raise
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_outcome(outcome)
    sys.exit(EXIT_CODE_PASS if outcome.ok else EXIT_CODE_FAIL)


def _format_quota(remaining: Optional[int], limit: Optional[int]) -> str:
    if remaining is None:
        return "unknown"
    return f"{remaining}/{limit}" if limit else str(remaining)


@app.command("cache-stats")
def cache_stats():
    """Show response cache statistics."""
    settings = _settings()
    cache = ResponseCache(settings.cache_dir, _guard_config().cache_ttl_seconds)
    try:
        stats = cache.stats()
        window = cache.load_usage_window()
    finally:
        cache.close()
    console.print(f"Entries: {stats.size}")
    console.print(f"Size on disk: {stats.volume_bytes} bytes")
    console.print(f"TTL: {stats.ttl_seconds}s")
    console.print(f"Directory: {stats.directory}")

    if window is None:
        console.print("[dim]No provider usage recorded yet.[/]")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"Jobs remaining: {_format_quota(window.jobs_remaining, window.jobs_limit)}")
    console.print(f"Requests remaining: {_format_quota(window.requests_remaining, window.requests_limit)}")
    if window.reset_at is not None:
        console.print(f"Quota resets: {window.reset_at.strftime('%Y-%m-%d %H:%M')}")
    level = UsageWindowTracker(initial=window).warning_level()
    console.print(f"Usage warning: {level.value}")
    sys.exit(EXIT_CODE_PASS)


@app.command("cache-clear")
def cache_clear():
    """Remove every cached provider response."""
    settings = _settings()
    cache = ResponseCache(settings.cache_dir, _guard_config().cache_ttl_seconds)
    try:
        removed = cache.clear()
    finally:
        cache.close()
    console.print(f"[green]✓[/] Removed {removed} cached responses")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
