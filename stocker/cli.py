"""
Stocker CLI

Typer-based command-line interface for fetching, updating and inspecting
daily stock price series.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from .config import (
    ConfigurationError,
    DataSource,
    LogLevel,
    StockerSettings,
    load_settings,
    normalize_symbol,
)
from .logging import configure_logging, get_logger, set_correlation_id
from .models import FetchOutcome, FetchStatus
from .registry import ReferenceRegistry, TickerReference
from .series import series_to_bars
from .service import StockerService
from .storage import StorageError

# Create Typer app
app = typer.Typer(
    name="stocker",
    help="Stocker - daily stock price fetcher with gap-aware incremental updates",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True
)
tickers_app = typer.Typer(
    help="Browse the ticker reference registry",
    no_args_is_help=True
)
app.add_typer(tickers_app, name="tickers")

console = Console()
logger = get_logger(__name__)

STATUS_STYLES = {
    FetchStatus.FETCHED: "green",
    FetchStatus.NO_DATA: "blue",
    FetchStatus.SKIPPED: "yellow",
    FetchStatus.ERROR: "red",
}


@dataclass
class CliState:
    """Global options shared by all commands."""

    data_dir: Optional[Path] = None
    config: Optional[Path] = None
    log_level: Optional[LogLevel] = None
    json_logs: bool = False


def parse_date(value: Optional[str], option: str) -> Optional[date]:
    """Parse a YYYY-MM-DD option value."""
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise typer.BadParameter(f"Invalid date '{value}', expected YYYY-MM-DD", param_hint=option) from e


def parse_symbol(value: str) -> str:
    try:
        return normalize_symbol(value)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="TICKER") from e


def load_cli_settings(ctx: typer.Context, **overrides: Any) -> StockerSettings:
    """Build settings from global options and command overrides, then set up logging."""
    state: CliState = ctx.obj or CliState()
    try:
        settings = load_settings(
            state.config,
            data_dir=state.data_dir,
            log_level=state.log_level,
            **overrides
        )
    except (ConfigurationError, ValidationError) as e:
        raise typer.BadParameter(str(e)) from e

    configure_logging(
        log_level=settings.log_level,
        use_json=state.json_logs,
        use_rich=not state.json_logs
    )
    return settings


def build_service(settings: StockerSettings, connect: bool = True) -> StockerService:
    """Create the service, translating missing configuration into a usage error."""
    try:
        return StockerService.from_settings(settings, connect=connect)
    except (ConfigurationError, ValueError) as e:
        raise typer.BadParameter(str(e)) from e


def render_outcomes(outcomes: List[FetchOutcome]) -> None:
    table = Table(title="Fetch Results")
    table.add_column("Ticker", style="cyan")
    table.add_column("Plan")
    table.add_column("Result")
    table.add_column("Records", justify="right")
    table.add_column("Range")

    for outcome in outcomes:
        style = STATUS_STYLES[outcome.status]
        summary = outcome.summary
        table.add_row(
            outcome.symbol,
            outcome.intent or "-",
            f"[{style}]{outcome.describe()}[/{style}]",
            f"{summary.record_count:,}" if summary else "-",
            f"{summary.first_date} to {summary.last_date}" if summary else "-",
        )

    console.print(table)


def report_outcomes(outcomes: List[FetchOutcome]) -> None:
    """Print results and exit non-zero when any symbol failed."""
    render_outcomes(outcomes)

    failed = [o for o in outcomes if o.failed]
    fetched = sum(1 for o in outcomes if o.status == FetchStatus.FETCHED)
    console.print(f"\nSymbols processed: {len(outcomes)}, fetched: {fetched}, failed: {len(failed)}")

    if failed:
        console.print("\n[red]Errors:[/red]")
        for outcome in failed:
            console.print(f"  {outcome.symbol}: {outcome.message}")
        raise typer.Exit(1)


async def _run_batch(
    service: StockerService,
    symbols: List[str],
    update_all: bool = False,
    **kwargs: Any
) -> List[FetchOutcome]:
    """Run a batch fetch with a progress bar."""
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True
        ) as progress:
            task = progress.add_task("Processing symbols...", total=len(set(symbols)))

            def on_complete(outcome: FetchOutcome) -> None:
                progress.advance(task)

            if update_all:
                return await service.update_all(symbols, on_complete=on_complete, **kwargs)
            return await service.fetch_many(symbols, on_complete=on_complete, **kwargs)
    finally:
        await service.close()


@app.callback()
def main(
    ctx: typer.Context,

    data_dir: Annotated[Optional[Path], typer.Option(
        "--data-dir", "-d",
        help="Root directory for price data"
    )] = None,

    config: Annotated[Optional[Path], typer.Option(
        "--config", "-c",
        help="Path to YAML config file (default ~/.stocker/config.yml)"
    )] = None,

    log_level: Annotated[Optional[LogLevel], typer.Option(
        "--log-level", "-l",
        help="Logging level"
    )] = None,

    json_logs: Annotated[bool, typer.Option(
        "--json-logs",
        help="Emit JSON log lines instead of console output"
    )] = False
):
    """Fetch and maintain daily OHLCV price series per ticker."""
    ctx.obj = CliState(
        data_dir=data_dir,
        config=config,
        log_level=log_level,
        json_logs=json_logs
    )


@app.command()
def fetch(
    ctx: typer.Context,

    tickers: Annotated[List[str], typer.Argument(
        help="Ticker symbols to fetch"
    )],

    start: Annotated[Optional[str], typer.Option(
        "--start", "-s",
        help="Start date (YYYY-MM-DD)"
    )] = None,

    end: Annotated[Optional[str], typer.Option(
        "--end", "-e",
        help="End date (YYYY-MM-DD)"
    )] = None,

    update: Annotated[bool, typer.Option(
        "--update", "-u",
        help="Extend stored data: fetch new days, or refill gaps"
    )] = False,

    force: Annotated[bool, typer.Option(
        "--force", "-f",
        help="Re-fetch symbols that already have data"
    )] = False,

    parallel: Annotated[Optional[int], typer.Option(
        "--parallel", "-p",
        help="Maximum number of concurrent fetches",
        min=1, max=20
    )] = None,

    source: Annotated[Optional[DataSource], typer.Option(
        "--source",
        help="Price data source"
    )] = None
):
    """
    Fetch daily prices for one or more tickers.

    New tickers get their full history (or the requested range). Existing
    tickers are skipped unless --update or --force is given.
    """
    start_date = parse_date(start, "--start")
    end_date = parse_date(end, "--end")
    if start_date and end_date and start_date > end_date:
        raise typer.BadParameter("--start must not be after --end")

    settings = load_cli_settings(ctx, data_source=source, max_workers=parallel)
    set_correlation_id()

    logger.info(
        "Starting fetch",
        tickers=len(tickers),
        start_date=start_date.isoformat() if start_date else None,
        end_date=end_date.isoformat() if end_date else None,
        update=update,
        force=force,
        source=settings.data_source.value,
        max_workers=settings.max_workers
    )

    service = build_service(settings)
    outcomes = asyncio.run(_run_batch(
        service,
        tickers,
        start=start_date,
        end=end_date,
        update=update,
        force=force
    ))
    report_outcomes(outcomes)


@app.command()
def update(
    ctx: typer.Context,

    tickers: Annotated[Optional[List[str]], typer.Argument(
        help="Tickers to update (default: every stored ticker)"
    )] = None,

    parallel: Annotated[Optional[int], typer.Option(
        "--parallel", "-p",
        help="Maximum number of concurrent fetches",
        min=1, max=20
    )] = None,

    source: Annotated[Optional[DataSource], typer.Option(
        "--source",
        help="Price data source"
    )] = None
):
    """Bring stored tickers up to date, refilling gaps where found."""
    settings = load_cli_settings(ctx, data_source=source, max_workers=parallel)
    set_correlation_id()

    service = build_service(settings)
    symbols = tickers or asyncio.run(service.list_tickers())
    if not symbols:
        console.print("[yellow]No tickers stored yet. Use 'stocker fetch' first.[/yellow]")
        return

    outcomes = asyncio.run(_run_batch(service, symbols, update_all=True))
    report_outcomes(outcomes)


@app.command()
def info(
    ctx: typer.Context,

    ticker: Annotated[str, typer.Argument(help="Ticker symbol")]
):
    """Show summary and gap report for a stored ticker."""
    ticker = parse_symbol(ticker)
    settings = load_cli_settings(ctx)
    service = build_service(settings, connect=False)

    try:
        ticker_info = asyncio.run(service.info(ticker))
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    if ticker_info is None:
        console.print(f"[red]No data stored for {ticker.upper()}[/red]")
        raise typer.Exit(1)

    summary = ticker_info.summary
    table = Table(title=f"{summary.symbol} Daily Prices")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Records", f"{summary.record_count:,}")
    table.add_row("First Date", summary.first_date.isoformat())
    table.add_row("Last Date", summary.last_date.isoformat())
    table.add_row("Last Update", summary.last_update.strftime("%Y-%m-%d %H:%M:%S"))
    table.add_row("Data Source", summary.data_source)
    table.add_row("Gaps", str(len(ticker_info.gaps)))
    table.add_row("Significant Gaps", str(len(ticker_info.significant_gaps)))
    console.print(table)

    if ticker_info.gaps:
        gaps_table = Table(title="Gaps")
        gaps_table.add_column("Start", style="cyan")
        gaps_table.add_column("End", style="cyan")
        gaps_table.add_column("Trading Days", justify="right")
        gaps_table.add_column("Significant")

        for gap in ticker_info.gaps:
            gaps_table.add_row(
                gap.start.isoformat(),
                gap.end.isoformat(),
                str(gap.days),
                "[red]yes[/red]" if gap.significant else "no"
            )
        console.print(gaps_table)


@app.command("list")
def list_stored(ctx: typer.Context):
    """List stored tickers with their record counts and date ranges."""
    settings = load_cli_settings(ctx)
    service = build_service(settings, connect=False)

    async def collect():
        summaries = []
        for symbol in await service.list_tickers():
            summaries.append((symbol, await service.store.get_summary(symbol)))
        return summaries

    try:
        summaries = asyncio.run(collect())
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    if not summaries:
        console.print("[yellow]No tickers stored[/yellow]")
        return

    table = Table(title=f"Stored Tickers ({len(summaries)})")
    table.add_column("Ticker", style="cyan")
    table.add_column("Records", justify="right")
    table.add_column("First Date")
    table.add_column("Last Date")
    table.add_column("Source")
    table.add_column("Last Update")

    for symbol, summary in summaries:
        if summary is None:
            table.add_row(symbol, "-", "-", "-", "-", "-")
            continue
        table.add_row(
            symbol,
            f"{summary.record_count:,}",
            summary.first_date.isoformat(),
            summary.last_date.isoformat(),
            summary.data_source,
            summary.last_update.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def prices(
    ctx: typer.Context,

    ticker: Annotated[str, typer.Argument(help="Ticker symbol")],

    from_: Annotated[Optional[str], typer.Option(
        "--from",
        help="First date (YYYY-MM-DD)"
    )] = None,

    to: Annotated[Optional[str], typer.Option(
        "--to",
        help="Last date (YYYY-MM-DD)"
    )] = None,

    latest: Annotated[bool, typer.Option(
        "--latest",
        help="Only the most recent bar"
    )] = False,

    first: Annotated[bool, typer.Option(
        "--first",
        help="Only the earliest bar"
    )] = False
):
    """Print stored bars for a ticker as JSON."""
    if latest and first:
        raise typer.BadParameter("--latest and --first are mutually exclusive")
    ticker = parse_symbol(ticker)
    start_date = parse_date(from_, "--from")
    end_date = parse_date(to, "--to")

    settings = load_cli_settings(ctx)
    service = build_service(settings, connect=False)

    try:
        if latest or first:
            bar = asyncio.run(
                service.get_latest_price(ticker) if latest else service.get_first_price(ticker)
            )
            if bar is None:
                console.print(f"[red]No data stored for {ticker.upper()}[/red]")
                raise typer.Exit(1)
            payload: Any = bar.model_dump(mode="json")
        else:
            series = asyncio.run(service.get_prices(ticker, start_date, end_date))
            payload = [bar.model_dump(mode="json") for bar in series_to_bars(series)]
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    typer.echo(json.dumps(payload, indent=2))


def _reference_row(entry: TickerReference) -> List[str]:
    price_range = (
        f"{entry.first_trade_date} to {entry.last_price_date}"
        if entry.first_trade_date and entry.last_price_date else "-"
    )
    return [
        entry.symbol,
        entry.name or "-",
        entry.exchange or "-",
        entry.status,
        price_range,
        ", ".join(entry.data_sources) or "-",
    ]


def _reference_table(title: str, entries: List[TickerReference]) -> Table:
    table = Table(title=title)
    table.add_column("Symbol", style="cyan")
    table.add_column("Name")
    table.add_column("Exchange")
    table.add_column("Status")
    table.add_column("Prices")
    table.add_column("Sources")
    for entry in entries:
        table.add_row(*_reference_row(entry))
    return table


def _registry(ctx: typer.Context) -> ReferenceRegistry:
    settings = load_cli_settings(ctx)
    return ReferenceRegistry(settings.reference_path)


@tickers_app.command("list")
def tickers_list(
    ctx: typer.Context,

    status: Annotated[Optional[str], typer.Option(
        "--status",
        help="Only tickers with this status (active, delisted, ...)"
    )] = None
):
    """List registered tickers."""
    entries = _registry(ctx).all(status=status)
    if not entries:
        console.print("[yellow]No registered tickers[/yellow]")
        return
    console.print(_reference_table(f"Registered Tickers ({len(entries)})", entries))


@tickers_app.command("search")
def tickers_search(
    ctx: typer.Context,

    query: Annotated[str, typer.Argument(help="Symbol or company name fragment")]
):
    """Search registered tickers by symbol or name."""
    entries = _registry(ctx).search(query)
    if not entries:
        console.print(f"[yellow]No tickers match '{query}'[/yellow]")
        return
    console.print(_reference_table(f"Matches for '{query}'", entries))


@tickers_app.command("stats")
def tickers_stats(ctx: typer.Context):
    """Show registry statistics."""
    stats: Dict[str, Any] = _registry(ctx).stats()

    table = Table(title="Ticker Registry")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Total Tickers", str(stats["total"]))
    table.add_row("Active", str(stats["active"]))
    table.add_row("Delisted", str(stats["delisted"]))
    table.add_row("With Prices", str(stats["with_prices"]))
    console.print(table)

    if stats["by_exchange"]:
        console.print("\n[bold]Tickers by Exchange:[/bold]")
        for exchange, count in stats["by_exchange"].items():
            console.print(f"  {exchange}: {count} tickers")


if __name__ == "__main__":
    app()
