"""Shared HTTP client and user-agent policy.

Every resolver issues exactly one request per attempt: there are no
in-place retries, a failed request just escalates to the next tier.
"""

from typing import Any, Optional

import httpx
from rich.console import Console

from unfurl_cleaner.config import Settings, get_settings
from unfurl_cleaner.errors import SchemaMismatch, TransportFailure
from unfurl_cleaner.extractors.urls import is_bot_friendly

console = Console()

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

# Sites on the bot-friendly list render full OpenGraph tags for link crawlers
CRAWLER_USER_AGENT = "facebookexternalhit/1.1 (+http://www.facebook.com/externalhit_uatext.php)"

HTML_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

JSON_HEADERS = {"Accept": "application/json"}

HTML_CONTENT_TYPES = ("text/html", "application/xhtml")

# Shared httpx client for connection pooling
_http_client: Optional[httpx.AsyncClient] = None


async def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared async HTTP client."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _http_client


async def close_http_client() -> None:
    """Close the shared HTTP client."""
    global _http_client
    if _http_client and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


def pick_user_agent(url: str, settings: Optional[Settings] = None) -> str:
    """Crawler UA for bot-friendly domains, a desktop browser UA otherwise."""
    if is_bot_friendly(url, settings or get_settings()):
        return CRAWLER_USER_AGENT
    return BROWSER_USER_AGENT


def _describe(error: Exception) -> str:
    if isinstance(error, httpx.TimeoutException):
        return "timeout"
    if isinstance(error, httpx.ConnectError):
        return "connection"
    return type(error).__name__.lower()


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    timeout: float,
    headers: Optional[dict[str, str]] = None,
) -> Any:
    """GET a JSON document.

    Raises:
        TransportFailure: network error, timeout or non-2xx status
        SchemaMismatch: body is not JSON
    """
    try:
        response = await client.get(url, headers=headers or JSON_HEADERS, timeout=timeout)
    except httpx.HTTPError as e:
        raise TransportFailure(f"{_describe(e)} fetching {url}") from e

    if not response.is_success:
        raise TransportFailure(f"HTTP {response.status_code} from {url}")

    try:
        return response.json()
    except ValueError as e:
        raise SchemaMismatch(f"invalid JSON from {url}") from e


async def get_html(
    client: httpx.AsyncClient,
    url: str,
    timeout: float,
    user_agent: str = BROWSER_USER_AGENT,
) -> Optional[str]:
    """GET an HTML page.

    Returns None for non-HTML content types.

    Raises:
        TransportFailure: network error, timeout or non-2xx status
    """
    headers = {"User-Agent": user_agent, **HTML_HEADERS}
    try:
        response = await client.get(url, headers=headers, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        raise TransportFailure(f"{_describe(e)} fetching {url}") from e

    if not response.is_success:
        raise TransportFailure(f"HTTP {response.status_code} from {url}")

    content_type = response.headers.get("content-type", "").lower()
    if not any(t in content_type for t in HTML_CONTENT_TYPES):
        console.print(f"[dim]Non-HTML content type for {url}: {content_type or 'none'}[/dim]")
        return None

    return response.text
