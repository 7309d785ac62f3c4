"""
Tripweaver CLI Tool
Command-line interface for the Tripweaver API.
"""

import json
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .client import TripweaverAPIError, TripweaverClient
from .models import ItineraryResult


console = Console()


def get_client(url: str, api_key: Optional[str] = None, user_id: Optional[str] = None) -> TripweaverClient:
    """Create a client instance."""
    return TripweaverClient(base_url=url, api_key=api_key, user_id=user_id)


def _fail(error: Exception) -> None:
    if isinstance(error, TripweaverAPIError):
        console.print(f"❌ [red]{error.code}: {error.message}[/red]")
        if error.details:
            console.print(f"[dim]{json.dumps(error.details)}[/dim]")
    else:
        console.print(f"❌ [red]Error: {error}[/red]")
    sys.exit(1)


def _print_itinerary(result: ItineraryResult) -> None:
    itinerary = result.itinerary or {}
    lines = []
    for day in itinerary.get("days", []):
        lines.append(f"[bold]Day {day.get('day', '?')}[/bold] {day.get('title') or ''}")
        for activity in day.get("activities", []):
            slot = activity.get("time") or ""
            lines.append(f"  {slot:<10} {activity.get('name', '')}")
    console.print(Panel(
        "\n".join(lines) or "[dim]empty itinerary[/dim]",
        title=f"[cyan]{itinerary.get('title', 'Itinerary')}[/cyan]",
        border_style="green",
    ))

    footer = [f"providers: {', '.join(result.providers_used) or '-'}"]
    if result.quality_score is not None:
        footer.append(f"quality: {result.quality_score:.0f}/100")
    if result.fallback_used:
        footer.append("[yellow]quality review skipped[/yellow]")
    console.print(f"[dim]{' | '.join(footer)}[/dim]")


@click.group()
@click.option("--url", "-u", default="http://localhost:8000", help="API server URL")
@click.option("--api-key", "-k", envvar="TRIPWEAVER_API_KEY", help="API key")
@click.option("--user", envvar="TRIPWEAVER_USER_ID", help="User id sent as X-User-Id")
@click.pass_context
def cli(ctx, url: str, api_key: Optional[str], user: Optional[str]):
    """Tripweaver CLI - AI itinerary generation."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url
    ctx.obj["api_key"] = api_key
    ctx.obj["user"] = user


@cli.command()
@click.pass_context
def health(ctx):
    """Check API server health."""
    with get_client(ctx.obj["url"], ctx.obj["api_key"], ctx.obj["user"]) as client:
        try:
            status = client.health()
            if status.get("status") == "healthy":
                console.print("✅ [green]API is healthy[/green]")
                console.print(f"   Version: {status.get('version', 'unknown')}")
            else:
                console.print("⚠️ [yellow]API status unknown[/yellow]")
        except Exception as e:
            console.print(f"❌ [red]Connection failed: {e}[/red]")
            sys.exit(1)


@cli.command()
@click.argument("city")
@click.option("--days", "-d", default=3, show_default=True, help="Trip length in days")
@click.option("--interest", "-i", "interests", multiple=True, help="Interest keyword (repeatable)")
@click.option("--budget", type=click.Choice(["budget", "cheap", "moderate", "luxury", "splurge"]))
@click.option("--pace", type=click.Choice(["relaxed", "moderate", "active", "packed"]))
@click.option("--stream/--no-stream", default=True, help="Show live progress")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def generate(
    ctx,
    city: str,
    days: int,
    interests: tuple[str, ...],
    budget: Optional[str],
    pace: Optional[str],
    stream: bool,
    as_json: bool,
):
    """Generate an itinerary for CITY."""
    params = {"budget": budget, "pace": pace}
    with get_client(ctx.obj["url"], ctx.obj["api_key"], ctx.obj["user"]) as client:
        try:
            if stream:
                result = _generate_streaming(client, city, days, list(interests), params)
            else:
                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    console=console,
                    transient=True,
                ) as progress:
                    progress.add_task("Generating itinerary...", total=None)
                    result = client.generate(city, days, list(interests), **params)
        except Exception as e:
            _fail(e)
            return

        if as_json:
            console.print(json.dumps({
                "request_id": result.request_id,
                "itinerary": result.itinerary,
                "quality_score": result.quality_score,
                "fallback_used": result.fallback_used,
                "metrics": result.metrics,
            }, indent=2))
            return

        _print_itinerary(result)


def _generate_streaming(
    client: TripweaverClient,
    city: str,
    days: int,
    interests: list[str],
    params: dict,
) -> ItineraryResult:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Connecting...", total=100)
        for event in client.generate_stream(city, days, interests, **params):
            if event.type == "error":
                raise TripweaverAPIError(
                    status_code=200,
                    code=event.data.get("error", "internal_error"),
                    message=event.data.get("message", ""),
                )
            if event.type == "complete":
                progress.update(task, completed=100)
                return ItineraryResult.from_complete_event(event.data)
            if event.progress is not None:
                progress.update(task, description=event.message, completed=event.progress)
    raise TripweaverAPIError(200, "internal_error", "Stream ended without a result")


@cli.command()
@click.argument("usage_type", default="itineraries_created")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def usage(ctx, usage_type: str, as_json: bool):
    """Show quota usage for USAGE_TYPE."""
    with get_client(ctx.obj["url"], ctx.obj["api_key"], ctx.obj["user"]) as client:
        try:
            status = client.usage(usage_type)
        except Exception as e:
            _fail(e)
            return

        if as_json:
            console.print(json.dumps(status.__dict__, indent=2))
            return

        table = Table(title=f"Usage: {usage_type}")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Tier", status.tier or "-")
        table.add_row("Used", f"{status.current_usage} / {status.limit}")
        color = "green" if status.remaining > 0 else "red"
        table.add_row("Remaining", f"[{color}]{status.remaining}[/{color}]")
        table.add_row("Resets", status.period_resets_at)
        console.print(table)


@cli.command()
@click.pass_context
def metrics(ctx):
    """Show aggregated generation metrics."""
    with get_client(ctx.obj["url"], ctx.obj["api_key"], ctx.obj["user"]) as client:
        try:
            summary = client.metrics()
        except Exception as e:
            _fail(e)
            return

        table = Table(title="Generation Metrics")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Generations", f"{summary.get('total', 0):,}")
        table.add_row("Success Rate", f"{summary.get('success_rate', 0.0):.0%}")
        table.add_row("Fallback Rate", f"{summary.get('fallback_rate', 0.0):.0%}")
        table.add_row("Avg Latency", f"{summary.get('avg_latency_ms', 0.0):.0f}ms")
        table.add_row("P95 Latency", f"{summary.get('p95_latency_ms', 0.0):.0f}ms")
        quality = summary.get("avg_quality_score")
        table.add_row("Avg Quality", f"{quality:.0f}" if quality is not None else "-")
        console.print(table)


def main():
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
