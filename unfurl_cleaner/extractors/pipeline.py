"""Fetch orchestrator: URL -> NormalizedContent, escalating through tiers.

1. Platform API (known platforms only)
2. Plain fetch + OpenGraph
3. Rendering strategies (remote, metadata API, slug, local browser)

Domains on the skip-to-browser list run tier 3 before tier 2. When nothing
works, a minimal record derived from the URL alone is returned, so
``resolve`` never raises and never returns None.
"""

from enum import Enum
from typing import Optional, Protocol

import httpx
from rich.console import Console

from unfurl_cleaner.config import Settings, get_settings
from unfurl_cleaner.extractors.browser import BrowserManager, BrowserResolver, shutdown_browser
from unfurl_cleaner.extractors.fetch import close_http_client
from unfurl_cleaner.extractors.heuristics import title_from_slug
from unfurl_cleaner.extractors.platforms import build_platform_resolvers
from unfurl_cleaner.extractors.structured import GenericMetadataResolver
from unfurl_cleaner.extractors.urls import get_domain, identify_platform, should_skip_generic_fetch
from unfurl_cleaner.models import NormalizedContent, Platform, TierOutcome

console = Console()


class Resolver(Protocol):
    async def fetch(self, url: str) -> Optional[NormalizedContent]: ...


class ResolutionState(str, Enum):
    NOT_STARTED = "not_started"
    TIER1_ATTEMPTED = "tier1_attempted"
    TIER2_ATTEMPTED = "tier2_attempted"
    TIER3_ATTEMPTED = "tier3_attempted"
    RESOLVED = "resolved"
    MINIMAL_FALLBACK = "minimal_fallback"


class Resolution:
    """Resolved content plus the path taken to get it."""

    def __init__(self, url: str):
        self.url = url
        self.state = ResolutionState.NOT_STARTED
        self.content: Optional[NormalizedContent] = None
        self.outcomes: list[TierOutcome] = []
        self.resolved_by: Optional[str] = None  # "tier1", "tier2", "tier3" or None

    def attempted(self, state: ResolutionState, outcome: TierOutcome) -> None:
        self.state = state
        self.outcomes.append(outcome)

    @property
    def tiers_tried(self) -> list[str]:
        return [o.tier for o in self.outcomes]


def minimal_content(url: str) -> NormalizedContent:
    """Fallback record computed from the URL string alone (no I/O)."""
    domain = get_domain(url)
    return NormalizedContent(
        platform=domain or "Link",
        title=title_from_slug(url) or domain or "Link",
        source_url=url,
    )


def _has_text(content: Optional[NormalizedContent]) -> bool:
    return content is not None and content.has_text


def _generic_is_sufficient(content: Optional[NormalizedContent]) -> bool:
    """Tier 2 is enough with title+body, or title+image."""
    if content is None or not content.title:
        return False
    return bool(content.body) or bool(content.images)


class FetchOrchestrator:
    """Composes the three tiers into one total function."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        platform_resolvers: Optional[dict[Platform, Resolver]] = None,
        generic: Optional[Resolver] = None,
        browser: Optional[Resolver] = None,
        client: Optional[httpx.AsyncClient] = None,
        browser_manager: Optional[BrowserManager] = None,
    ):
        self.settings = settings or get_settings()
        if platform_resolvers is None:
            platform_resolvers = build_platform_resolvers(client, self.settings)
        self.platform_resolvers = platform_resolvers
        self.generic = generic or GenericMetadataResolver(client, self.settings)
        self.browser = browser or BrowserResolver(browser_manager, client, self.settings)

    async def _attempt(self, tier: str, resolver: Resolver, url: str, sufficient) -> TierOutcome:
        """Run one resolver with fault isolation."""
        try:
            content = await resolver.fetch(url)
        except Exception as e:
            console.print(f"[red]{tier} resolver raised for {url}: {e}[/red]")
            return TierOutcome.failed(tier)

        if content is None:
            return TierOutcome.failed(tier)
        if sufficient(content):
            return TierOutcome.success(content, tier)
        return TierOutcome.insufficient(content, tier)

    async def resolve_with_trace(self, url: str) -> Resolution:
        resolution = Resolution(url)
        try:
            await self._run(url, resolution)
        except Exception as e:
            # Guard for bugs in the state machine itself
            console.print(f"[red]Resolution crashed for {url}: {e}[/red]")
            resolution.content = None

        if resolution.content is None:
            console.print(f"[yellow]All tiers failed for {url}, returning minimal data[/yellow]")
            resolution.content = minimal_content(url)
            resolution.state = ResolutionState.MINIMAL_FALLBACK
            resolution.resolved_by = None
        else:
            resolution.state = ResolutionState.RESOLVED
        return resolution

    async def resolve(self, url: str) -> NormalizedContent:
        """Total: always returns a record, never raises."""
        resolution = await self.resolve_with_trace(url)
        return resolution.content

    async def _run(self, url: str, resolution: Resolution) -> None:
        platform = identify_platform(url, self.settings)
        domain = get_domain(url) or url

        # Tier 1: known platform with a native API
        resolver = self.platform_resolvers.get(platform) if platform else None
        if resolver is not None:
            console.print(f"[dim]Tier 1: trying {platform.value} for {url}[/dim]")
            outcome = await self._attempt("tier1", resolver, url, _has_text)
            resolution.attempted(ResolutionState.TIER1_ATTEMPTED, outcome)
            if outcome.ok:
                console.print(f"[green]Tier 1 success: {platform.value} for {url}[/green]")
                self._finish(resolution, outcome)
                return

        # Hard sites: browser first, plain fetch as backup
        if should_skip_generic_fetch(url, self.settings):
            console.print(f"[dim]Tier 3: skipping straight to browser for {domain}[/dim]")
            outcome = await self._attempt("tier3", self.browser, url, _has_text)
            resolution.attempted(ResolutionState.TIER3_ATTEMPTED, outcome)
            if outcome.ok:
                self._finish(resolution, outcome)
                return

            outcome = await self._attempt("tier2", self.generic, url, _has_text)
            resolution.attempted(ResolutionState.TIER2_ATTEMPTED, outcome)
            if outcome.ok:
                console.print(f"[green]Tier 2 backup success for {url}[/green]")
                self._finish(resolution, outcome)
            return

        # Tier 2: plain fetch + OpenGraph
        console.print(f"[dim]Tier 2: trying OpenGraph for {url}[/dim]")
        outcome = await self._attempt("tier2", self.generic, url, _generic_is_sufficient)
        resolution.attempted(ResolutionState.TIER2_ATTEMPTED, outcome)
        if outcome.ok:
            console.print(f"[green]Tier 2 success: OpenGraph for {url}[/green]")
            self._finish(resolution, outcome)
            return
        console.print("[dim]Tier 2: insufficient data, escalating to tier 3[/dim]")

        # Tier 3: rendering
        outcome = await self._attempt("tier3", self.browser, url, _has_text)
        resolution.attempted(ResolutionState.TIER3_ATTEMPTED, outcome)
        if outcome.ok:
            self._finish(resolution, outcome)

    @staticmethod
    def _finish(resolution: Resolution, outcome: TierOutcome) -> None:
        resolution.content = outcome.content
        resolution.resolved_by = outcome.tier


_default_orchestrator: Optional[FetchOrchestrator] = None


def get_orchestrator() -> FetchOrchestrator:
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = FetchOrchestrator()
    return _default_orchestrator


async def resolve(url: str) -> NormalizedContent:
    """Resolve a URL with the default orchestrator. Never raises."""
    return await get_orchestrator().resolve(url)


async def shutdown() -> None:
    """Release the shared HTTP client and headless browser."""
    await close_http_client()
    await shutdown_browser()
