"""CLI for the unfurl cleaner."""

import asyncio
import json

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from unfurl_cleaner.channels import ChannelStore
from unfurl_cleaner.delivery.embed import build_embed
from unfurl_cleaner.extractors.pipeline import FetchOrchestrator, shutdown
from unfurl_cleaner.extractors.urls import (
    clean_tracking_params,
    extract_urls,
    has_tracking_params,
    identify_platform,
    should_defer_to_native_rendering,
    should_skip_generic_fetch,
)

# Load environment variables (override=True to beat shell env vars)
load_dotenv(override=True)

app = typer.Typer(
    name="unfurl-cleaner",
    help="Resolve links into clean previews",
    add_completion=False,
)
console = Console()


@app.command()
def resolve(
    url: str = typer.Argument(..., help="URL to resolve"),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON"),
    embed: bool = typer.Option(False, "--embed", help="Print the Discord embed instead"),
):
    """Resolve a URL through the tiers and show what was found."""

    async def run():
        try:
            return await FetchOrchestrator().resolve_with_trace(url)
        finally:
            await shutdown()

    resolution = asyncio.run(run())
    content = resolution.content

    if embed:
        console.print_json(json.dumps(build_embed(content)))
        return
    if as_json:
        console.print_json(content.model_dump_json())
        return

    console.print(f"\n[bold]{content.platform}[/bold] [dim]({resolution.state.value})[/dim]")
    console.print(f"  Title: {content.title or 'N/A'}")
    if content.author_name or content.author_handle:
        console.print(f"  Author: {content.author_name or ''} {content.author_handle or ''}".rstrip())
    if content.body:
        console.print(f"  Body: {content.body[:200]}{'...' if len(content.body) > 200 else ''}")
    console.print(f"  Images: {len(content.images)}")

    table = Table(title="Tiers tried")
    table.add_column("Tier", style="cyan")
    table.add_column("Outcome")
    for outcome in resolution.outcomes:
        color = "green" if outcome.ok else "yellow"
        table.add_row(outcome.tier, f"[{color}]{outcome.status.value}[/{color}]")
    if resolution.outcomes:
        console.print(table)
    console.print(f"  Resolved by: {resolution.resolved_by or 'minimal fallback'}")


@app.command()
def urls(text: str = typer.Argument(..., help="Free text to scan")):
    """List URLs found in text and how each would be handled."""
    found = extract_urls(text)
    if not found:
        console.print("[yellow]No URLs found[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"URLs ({len(found)})")
    table.add_column("URL", style="cyan", max_width=60)
    table.add_column("Platform", style="green")
    table.add_column("Tracking")
    table.add_column("Route")

    for url in found:
        platform = identify_platform(url)
        if should_defer_to_native_rendering(url):
            route = "native preview"
        elif should_skip_generic_fetch(url):
            route = "browser first"
        else:
            route = "tiers"
        table.add_row(
            url,
            platform.value if platform else "-",
            "[red]yes[/red]" if has_tracking_params(url) else "no",
            route,
        )

    console.print(table)


@app.command()
def clean(url: str = typer.Argument(..., help="URL to clean")):
    """Strip tracking parameters from a URL."""
    console.print(clean_tracking_params(url))


@app.command()
def enable(
    channel: str = typer.Argument(..., help="Channel id"),
    guild: str = typer.Option(..., "--guild", "-g", help="Guild id"),
):
    """Turn link cleaning on for a channel."""
    ChannelStore().enable(channel, guild)


@app.command()
def disable(
    channel: str = typer.Argument(..., help="Channel id"),
    guild: str = typer.Option(..., "--guild", "-g", help="Guild id"),
):
    """Turn link cleaning off for a channel."""
    ChannelStore().disable(channel, guild)


@app.command()
def status(channel: str = typer.Argument(..., help="Channel id")):
    """Show whether link cleaning is on for a channel."""
    config = ChannelStore().get(channel)
    if config is None:
        console.print(f"Channel {channel}: [dim]not configured (disabled)[/dim]")
        return
    state = "[green]enabled[/green]" if config.enabled else "[yellow]disabled[/yellow]"
    console.print(f"Channel {channel} in guild {config.guild_id}: {state}")


@app.command()
def channels(guild: str = typer.Option(..., "--guild", "-g", help="Guild id")):
    """List channels with link cleaning enabled in a guild."""
    enabled = ChannelStore().enabled_for_guild(guild)
    if not enabled:
        console.print(f"[dim]No channels enabled in guild {guild}[/dim]")
        return
    console.print(f"\n[bold]Enabled in guild {guild}:[/bold]")
    for channel_id in enabled:
        console.print(f"  {channel_id}")


if __name__ == "__main__":
    app()
