"""Tier 3: rendering-based extraction for pages that need JavaScript.

Strategies, first success wins:
1. Browserless BrowserQL (remote rendering), when BROWSERLESS_TOKEN is set
2. Microlink metadata API, for domains on the hard-site list
3. Title guessed from the URL slug
4. Local headless Chromium via Playwright (shared, lazily launched)
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from bs4 import BeautifulSoup
from playwright.async_api import async_playwright
from rich.console import Console

from unfurl_cleaner.config import Settings, get_settings
from unfurl_cleaner.errors import RobotChallenge, SchemaMismatch, TransportFailure
from unfurl_cleaner.extractors.fetch import get_http_client
from unfurl_cleaner.extractors.heuristics import (
    MAX_BODY_LENGTH,
    PARAGRAPH_STRATEGIES,
    display_name,
    first_heading,
    first_success,
    is_robot_text,
    title_from_slug,
)
from unfurl_cleaner.extractors.structured import absolute_url, metadata_from_soup
from unfurl_cleaner.extractors.urls import get_domain, is_hard_site
from unfurl_cleaner.models import NormalizedContent

console = Console()

BROWSERLESS_URL = "https://chrome.browserless.io/chromium/bql"
MICROLINK_URL = "https://api.microlink.io/"

# Navigation budget inside the remote browser, below the HTTP timeout
BQL_NAVIGATION_TIMEOUT_MS = 20000

CONTEXT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

CONTEXT_OPTIONS = {
    "user_agent": CONTEXT_USER_AGENT,
    "viewport": {"width": 1920, "height": 1080},
    "locale": "en-US",
    "timezone_id": "America/New_York",
    "extra_http_headers": {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "DNT": "1",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
    },
}

BLOCKED_RESOURCE_TYPES = {"media", "font", "websocket"}

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

BQL_QUERY = """
mutation ExtractMetadata($url: String!, $timeout: Float) {
  goto(url: $url, waitUntil: networkIdle, timeout: $timeout) { status url }
  title: text(selector: "title") { text }
  ogTitle: text(selector: "meta[property='og:title']") { attribute(name: "content") }
  ogDescription: text(selector: "meta[property='og:description']") { attribute(name: "content") }
  ogImage: text(selector: "meta[property='og:image']") { attribute(name: "content") }
  ogSiteName: text(selector: "meta[property='og:site_name']") { attribute(name: "content") }
  twitterTitle: text(selector: "meta[name='twitter:title']") { attribute(name: "content") }
  twitterDescription: text(selector: "meta[name='twitter:description']") { attribute(name: "content") }
  twitterImage: text(selector: "meta[name='twitter:image']") { attribute(name: "content") }
  author: text(selector: "meta[name='author']") { attribute(name: "content") }
  description: text(selector: "meta[name='description']") { attribute(name: "content") }
  h1: text(selector: "h1") { text }
  articleText: text(selector: "article p") { text }
}
"""


class BrowserManager:
    """Owns the process-wide headless browser.

    Concurrent first callers share one in-flight launch. A failed launch is
    raised to every waiter and forgotten, so the next call tries again.
    """

    def __init__(
        self,
        launcher: Optional[Callable[[], Awaitable[Any]]] = None,
        launch_timeout: float = 30.0,
    ):
        self._launcher = launcher
        self.launch_timeout = launch_timeout
        self._browser = None
        self._playwright = None
        self._launching: Optional[asyncio.Task] = None
        self.launch_count = 0

    @property
    def browser(self):
        return self._browser

    async def get_browser(self):
        if self._browser is not None and self._browser.is_connected():
            return self._browser

        if self._launching is None:
            self._launching = asyncio.ensure_future(self._launch())
            self._launching.add_done_callback(self._launch_finished)

        # Shielded: a cancelled waiter must not cancel everyone's launch
        return await asyncio.shield(self._launching)

    def _launch_finished(self, task: asyncio.Task) -> None:
        if self._launching is task:
            self._launching = None
        # Mark any failure retrieved; every waiter may have gone
        if not task.cancelled():
            task.exception()

    async def _launch(self):
        if self._browser is not None or self._playwright is not None:
            console.print("[yellow]Headless browser disconnected, relaunching[/yellow]")
            await self.close()

        self.launch_count += 1
        launcher = self._launcher or self._launch_chromium
        browser = await asyncio.wait_for(launcher(), timeout=self.launch_timeout)
        self._browser = browser
        console.print("[green]Headless browser launched[/green]")
        return browser

    async def _launch_chromium(self):
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=True, args=LAUNCH_ARGS)
        except BaseException:
            # Includes the cancellation from the launch timeout
            await playwright.stop()
            raise
        self._playwright = playwright
        return browser

    async def close(self) -> None:
        """Tear the browser down; the next get_browser() relaunches."""
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None

        if browser is not None:
            try:
                await browser.close()
                console.print("[dim]Headless browser closed[/dim]")
            except Exception as e:
                console.print(f"[dim]Browser close failed (already gone?): {e}[/dim]")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                console.print(f"[dim]Playwright stop failed: {e}[/dim]")


_browser_manager: Optional[BrowserManager] = None


def get_browser_manager() -> BrowserManager:
    """Process-wide browser manager."""
    global _browser_manager
    if _browser_manager is None:
        _browser_manager = BrowserManager(launch_timeout=get_settings().browser_launch_timeout)
    return _browser_manager


async def shutdown_browser() -> None:
    if _browser_manager is not None:
        await _browser_manager.close()


async def _block_resources(route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


def extract_rendered(html: str, url: str) -> Optional[NormalizedContent]:
    """Build a record from fully rendered HTML."""
    soup = BeautifulSoup(html, "lxml")
    meta = metadata_from_soup(soup, url)

    body = meta.description or first_success(soup, PARAGRAPH_STRATEGIES)
    title = meta.title or first_heading(soup) or get_domain(url) or "Link"

    return NormalizedContent(
        platform=meta.site_name or get_domain(url) or "Link",
        author_name=meta.author,
        title=title,
        body=body,
        images=[meta.image] if meta.image else [],
        source_url=url,
    )


def _bql_value(field: Optional[dict]) -> Optional[str]:
    if not field:
        return None
    value = field.get("attribute") or field.get("text")
    return value.strip() if value and value.strip() else None


class BrowserResolver:
    """Tier 3 resolver composing the rendering strategies."""

    label = "Browser"

    def __init__(
        self,
        manager: Optional[BrowserManager] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self._manager = manager
        self._client = client
        self.settings = settings or get_settings()
        self.strategies = [
            ("browserless", self.fetch_remote_rendered),
            ("microlink", self.fetch_metadata_api),
            ("slug", self.fetch_from_slug),
            ("playwright", self.fetch_with_browser),
        ]

    @property
    def manager(self) -> BrowserManager:
        return self._manager or get_browser_manager()

    async def _client_or_shared(self) -> httpx.AsyncClient:
        return self._client or await get_http_client()

    async def fetch(self, url: str) -> Optional[NormalizedContent]:
        for name, strategy in self.strategies:
            try:
                result = await strategy(url)
            except (TransportFailure, SchemaMismatch) as e:
                console.print(f"[yellow]{name} failed for {url}: {e}[/yellow]")
                continue
            except RobotChallenge as e:
                console.print(f"[yellow]{name} got a robot check for {url}: {e}[/yellow]")
                continue
            except Exception as e:
                console.print(f"[red]{name} error for {url}: {e}[/red]")
                continue

            if result is not None and result.has_text:
                console.print(f"[green]Tier 3 ({name}) extracted {url}[/green]")
                return result
        return None

    async def fetch_remote_rendered(self, url: str) -> Optional[NormalizedContent]:
        """Render remotely through Browserless BrowserQL."""
        token = self.settings.browserless_token
        if not token:
            return None

        client = await self._client_or_shared()
        try:
            response = await client.post(
                BROWSERLESS_URL,
                params={"token": token},
                json={
                    "query": BQL_QUERY,
                    "variables": {"url": url, "timeout": BQL_NAVIGATION_TIMEOUT_MS},
                    "operationName": "ExtractMetadata",
                },
                timeout=self.settings.remote_timeout,
            )
        except httpx.HTTPError as e:
            raise TransportFailure(f"BrowserQL request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise TransportFailure(f"BrowserQL returned {response.status_code}: {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError as e:
            raise SchemaMismatch("BrowserQL returned invalid JSON") from e

        if payload.get("errors"):
            messages = ", ".join(str(err.get("message")) for err in payload["errors"])
            raise SchemaMismatch(f"BrowserQL errors: {messages}")

        data = payload.get("data")
        if not data:
            raise SchemaMismatch("BrowserQL returned no data")

        def first(*keys: str) -> Optional[str]:
            for key in keys:
                value = _bql_value(data.get(key))
                if value:
                    return value
            return None

        title = first("ogTitle", "twitterTitle", "h1", "title")
        description = first("ogDescription", "twitterDescription", "description", "articleText")

        if is_robot_text(title, description):
            raise RobotChallenge(title or "challenge page")
        if not title:
            return None

        image = absolute_url(first("ogImage", "twitterImage"), url)
        return NormalizedContent(
            platform=first("ogSiteName") or get_domain(url) or "Link",
            author_name=first("author"),
            title=title,
            body=description[:MAX_BODY_LENGTH] if description else None,
            images=[image] if image else [],
            source_url=url,
        )

    async def fetch_metadata_api(self, url: str) -> Optional[NormalizedContent]:
        """Ask Microlink for metadata (hard-to-scrape sites only)."""
        if not is_hard_site(url, self.settings):
            return None

        client = await self._client_or_shared()
        try:
            response = await client.get(
                MICROLINK_URL,
                params={"url": url},
                headers={"Accept": "application/json"},
                timeout=self.settings.remote_timeout,
            )
        except httpx.HTTPError as e:
            raise TransportFailure(f"Microlink request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise TransportFailure(f"Microlink returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise SchemaMismatch("Microlink returned invalid JSON") from e

        if payload.get("status") != "success":
            raise SchemaMismatch(f"Microlink status {payload.get('status')!r}")

        data = payload.get("data") or {}
        title = data.get("title")
        description = data.get("description")

        if is_robot_text(title, description):
            raise RobotChallenge(title or "challenge page")
        if not title:
            return None

        image = absolute_url((data.get("image") or {}).get("url"), url)
        return NormalizedContent(
            platform=data.get("publisher") or display_name(url) or "Link",
            author_name=data.get("author"),
            title=title,
            body=description[:MAX_BODY_LENGTH] if description else None,
            images=[image] if image else [],
            source_url=url,
        )

    async def fetch_from_slug(self, url: str) -> Optional[NormalizedContent]:
        """Title derived from the URL path, no network."""
        title = title_from_slug(url)
        if not title:
            return None
        return NormalizedContent(
            platform=display_name(url) or "Link",
            title=title,
            source_url=url,
        )

    async def fetch_with_browser(self, url: str) -> Optional[NormalizedContent]:
        """Render locally with the shared headless browser.

        The browsing context is closed on every path. Any browser, session or
        timeout fault also tears down the shared browser.
        """
        context = None
        fault: Optional[Exception] = None
        html = None

        try:
            browser = await self.manager.get_browser()
            context = await browser.new_context(**CONTEXT_OPTIONS)
            page = await context.new_page()
            await page.route("**/*", _block_resources)

            console.print(f"[dim]Playwright navigating to {url}[/dim]")
            await page.goto(
                url,
                wait_until="networkidle",
                timeout=self.settings.playwright_timeout * 1000,
            )
            await page.wait_for_timeout(self.settings.settle_delay * 1000)
            html = await page.content()
        except Exception as e:
            fault = e
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    console.print(f"[dim]Context close failed: {e}[/dim]")

        if fault is not None:
            console.print(f"[red]Playwright fetch error for {url}: {fault}[/red]")
            await self.manager.close()
            return None

        result = extract_rendered(html, url)
        if result and is_robot_text(result.title, result.body):
            raise RobotChallenge(result.title or "rendered page is a bot check")
        return result
