"""Tier 2: plain HTTP fetch plus OpenGraph / Twitter card / meta parsing."""

from typing import Optional
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel
from rich.console import Console

from unfurl_cleaner.config import Settings, get_settings
from unfurl_cleaner.errors import TransportFailure
from unfurl_cleaner.extractors.fetch import get_html, get_http_client, pick_user_agent
from unfurl_cleaner.extractors.urls import get_domain
from unfurl_cleaner.models import NormalizedContent

console = Console()

# Candidate tags per field, highest priority first
TITLE_TAGS = ["og:title", "twitter:title"]
DESCRIPTION_TAGS = ["og:description", "twitter:description", "description"]
IMAGE_TAGS = ["og:image", "og:image:url", "og:image:secure_url", "twitter:image", "twitter:image:src"]
SITE_NAME_TAGS = ["og:site_name"]
AUTHOR_TAGS = ["author", "article:author", "twitter:creator"]


class PageMetadata(BaseModel):
    """Preview fields found in a page's head."""

    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None  # Absolute
    site_name: Optional[str] = None
    author: Optional[str] = None

    class Config:
        extra = "ignore"


def get_meta(soup: BeautifulSoup, key: str) -> Optional[str]:
    """Content of ``<meta property=key>`` or ``<meta name=key>``, stripped."""
    for attr in ("property", "name"):
        tag = soup.find("meta", attrs={attr: key})
        if tag and tag.get("content", "").strip():
            return tag["content"].strip()
    return None


def first_meta(soup: BeautifulSoup, keys: list[str]) -> Optional[str]:
    for key in keys:
        value = get_meta(soup, key)
        if value:
            return value
    return None


def absolute_url(candidate: Optional[str], base_url: str) -> Optional[str]:
    """Resolve a possibly relative URL against the page URL; None if unusable."""
    if not candidate:
        return None
    try:
        resolved = urljoin(base_url, candidate.strip())
    except ValueError:
        return None
    if urlsplit(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def parse_metadata(html: str, url: str) -> PageMetadata:
    """Extract title, description, image, site name and author from HTML."""
    return metadata_from_soup(BeautifulSoup(html, "lxml"), url)


def metadata_from_soup(soup: BeautifulSoup, url: str) -> PageMetadata:
    title = first_meta(soup, TITLE_TAGS)
    if not title:
        title_tag = soup.find("title")
        if title_tag:
            title = title_tag.get_text().strip() or None

    return PageMetadata(
        title=title,
        description=first_meta(soup, DESCRIPTION_TAGS),
        image=absolute_url(first_meta(soup, IMAGE_TAGS), url),
        site_name=first_meta(soup, SITE_NAME_TAGS),
        author=first_meta(soup, AUTHOR_TAGS),
    )


def metadata_to_content(meta: PageMetadata, url: str) -> NormalizedContent:
    return NormalizedContent(
        platform=meta.site_name or get_domain(url) or "Link",
        author_name=meta.author,
        title=meta.title,
        body=meta.description,
        images=[meta.image] if meta.image else [],
        source_url=url,
    )


class GenericMetadataResolver:
    """One GET, then head metadata. Succeeds only when a title was found."""

    label = "OpenGraph"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self._client = client
        self.settings = settings or get_settings()

    async def fetch(self, url: str) -> Optional[NormalizedContent]:
        try:
            client = self._client or await get_http_client()
            html = await get_html(
                client,
                url,
                timeout=self.settings.tier2_timeout,
                user_agent=pick_user_agent(url, self.settings),
            )
        except TransportFailure as e:
            console.print(f"[yellow]OpenGraph fetch failed: {e}[/yellow]")
            return None
        except Exception as e:
            console.print(f"[red]OpenGraph fetch error for {url}: {e}[/red]")
            return None

        if html is None:
            return None

        meta = parse_metadata(html, url)
        if not meta.title:
            console.print(f"[dim]No title found for {url}[/dim]")
            return None

        return metadata_to_content(meta, url)
