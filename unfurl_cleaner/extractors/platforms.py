"""Tier 1: native API resolvers for known platforms.

Each resolver re-validates the URL against its own shape, makes exactly one
read-only call to the platform's public API and maps the response into a
NormalizedContent. Nothing raises past ``fetch``: transport, decoding and
schema errors are logged and turned into None.
"""

import html
import re
from typing import Any, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
from rich.console import Console

from unfurl_cleaner.config import Settings, get_settings
from unfurl_cleaner.errors import SchemaMismatch, TransportFailure
from unfurl_cleaner.extractors.fetch import (
    BROWSER_USER_AGENT,
    JSON_HEADERS,
    get_http_client,
    get_json,
)
from unfurl_cleaner.models import NormalizedContent, Platform

console = Console()

IMAGE_EXTENSION = re.compile(r"\.(jpe?g|png|gif|webp)$", re.I)


def strip_markup(text: Optional[str]) -> str:
    """Turn an HTML fragment into plain text, keeping line breaks."""
    if not text:
        return ""
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.I)
    text = re.sub(r"</p>\s*<p[^>]*>", "\n\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", "", text)
    return html.unescape(text).replace("\xa0", " ").strip()


class PlatformResolver:
    """Base class: one URL shape, one API call, one mapping."""

    platform: Platform
    label: str
    pattern: re.Pattern
    headers: dict[str, str] = JSON_HEADERS

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self._client = client
        self.settings = settings or get_settings()

    def api_url(self, url: str, match: re.Match) -> str:
        raise NotImplementedError

    def parse(self, payload: Any, url: str) -> NormalizedContent:
        """Map an API payload. Raises SchemaMismatch (or a lookup error) on bad shape."""
        raise NotImplementedError

    async def fetch(self, url: str) -> Optional[NormalizedContent]:
        match = self.pattern.search(url)
        if not match:
            return None

        api_url = self.api_url(url, match)
        try:
            client = self._client or await get_http_client()
            payload = await get_json(client, api_url, self.settings.tier1_timeout, self.headers)
            return self.parse(payload, url)
        except TransportFailure as e:
            console.print(f"[yellow]{self.label} API failed: {e}[/yellow]")
        except (SchemaMismatch, KeyError, IndexError, TypeError, AttributeError) as e:
            console.print(f"[yellow]{self.label} response had unexpected shape for {url}: {e!r}[/yellow]")
        except Exception as e:
            console.print(f"[red]{self.label} fetch error for {url}: {e}[/red]")
        return None


def _pick_image(item: dict) -> Optional[str]:
    """Prefer full-size media over thumbnails."""
    return item.get("fullsize") or item.get("thumb")


class BlueskyResolver(PlatformResolver):
    platform = Platform.BLUESKY
    label = "Bluesky"
    pattern = re.compile(r"/profile/([^/]+)/post/([a-zA-Z0-9]+)")

    API = "https://public.api.bsky.app/xrpc/app.bsky.feed.getPostThread"

    def api_url(self, url: str, match: re.Match) -> str:
        handle, rkey = match.groups()
        at_uri = f"at://{handle}/app.bsky.feed.post/{rkey}"
        return f"{self.API}?uri={quote(at_uri, safe='')}&depth=0"

    def parse(self, payload: Any, url: str) -> NormalizedContent:
        post = (payload.get("thread") or {}).get("post")
        if not post:
            raise SchemaMismatch("thread.post missing")

        author = post["author"]
        embed = post.get("embed") or {}

        images = []
        for img in embed.get("images") or []:
            if _pick_image(img):
                images.append(_pick_image(img))
        # recordWithMedia embeds keep their images one level down
        for img in (embed.get("media") or {}).get("images") or []:
            if _pick_image(img):
                images.append(_pick_image(img))

        return NormalizedContent(
            platform=self.label,
            author_name=author.get("displayName") or author["handle"],
            author_handle=f"@{author['handle']}",
            author_avatar=author.get("avatar"),
            body=strip_markup((post.get("record") or {}).get("text")) or None,
            images=images,
            source_url=url,
        )


class MastodonResolver(PlatformResolver):
    platform = Platform.MASTODON
    label = "Mastodon"
    pattern = re.compile(r"https?://([^/]+)/(?:.*/)?@([^/]+)/(\d+)")

    def api_url(self, url: str, match: re.Match) -> str:
        instance, _, status_id = match.groups()
        return f"https://{instance}/api/v1/statuses/{status_id}"

    def parse(self, payload: Any, url: str) -> NormalizedContent:
        account = payload["account"]

        images = [
            m["url"]
            for m in payload.get("media_attachments") or []
            if m.get("type") == "image" and m.get("url")
        ]

        return NormalizedContent(
            platform=self.label,
            author_name=account.get("display_name") or account["username"],
            author_handle=f"@{account['acct']}",
            author_avatar=account.get("avatar"),
            body=strip_markup(payload.get("content")) or None,
            images=images,
            source_url=url,
        )


class TwitterResolver(PlatformResolver):
    """Tweets via the fxtwitter public API."""

    platform = Platform.TWITTER
    label = "Twitter"
    pattern = re.compile(r"(?:twitter\.com|x\.com)/([^/]+)/status/(\d+)", re.I)

    def api_url(self, url: str, match: re.Match) -> str:
        username, status_id = match.groups()
        return f"https://api.fxtwitter.com/{username}/status/{status_id}"

    def parse(self, payload: Any, url: str) -> NormalizedContent:
        tweet = payload.get("tweet")
        if not tweet:
            raise SchemaMismatch("tweet missing")

        author = tweet["author"]
        media = tweet.get("media") or {}

        images = [p["url"] for p in media.get("photos") or [] if p.get("url")]
        if not images:
            # Video thumbnails only when there are no photos
            images = [v["thumbnail_url"] for v in media.get("videos") or [] if v.get("thumbnail_url")]

        return NormalizedContent(
            platform=self.label,
            author_name=author.get("name") or author["screen_name"],
            author_handle=f"@{author['screen_name']}",
            author_avatar=author.get("avatar_url"),
            body=strip_markup(tweet.get("text")) or None,
            images=images,
            source_url=url,
        )


class RedditResolver(PlatformResolver):
    """Reddit posts via the ``.json`` view of old.reddit.com."""

    platform = Platform.REDDIT
    label = "Reddit"
    pattern = re.compile(r"^https?://(?:www\.|old\.|new\.)?reddit\.com(/r/[^/]+/comments/[^?#]+)", re.I)
    headers = {"User-Agent": BROWSER_USER_AGENT, **JSON_HEADERS}

    def api_url(self, url: str, match: re.Match) -> str:
        path = match.group(1).rstrip("/")
        return urlunsplit(("https", "old.reddit.com", f"{path}.json", "", ""))

    def parse(self, payload: Any, url: str) -> NormalizedContent:
        post = payload[0]["data"]["children"][0]["data"]

        images: list[str] = []

        # Direct image posts
        link = post.get("url") or ""
        if IMAGE_EXTENSION.search(urlsplit(link).path):
            images.append(link)

        # Galleries: gallery_data carries the display order
        metadata = post.get("media_metadata") or {}
        if post.get("is_gallery") and metadata:
            order = [i["media_id"] for i in (post.get("gallery_data") or {}).get("items", [])]
            for media_id in order or list(metadata):
                source = (metadata.get(media_id) or {}).get("s") or {}
                if source.get("u"):
                    images.append(html.unescape(source["u"]))

        if not images:
            previews = (post.get("preview") or {}).get("images") or []
            preview_url = previews[0].get("source", {}).get("url") if previews else None
            if preview_url:
                images.append(html.unescape(preview_url))

        # Thumbnail as last resort ("self", "default", "nsfw" are placeholders)
        thumbnail = post.get("thumbnail") or ""
        if not images and thumbnail.startswith("http"):
            images.append(thumbnail)

        subreddit = post.get("subreddit_name_prefixed") or f"r/{post['subreddit']}"
        title = html.unescape(post.get("title") or "").strip()

        return NormalizedContent(
            platform=self.label,
            author_name=subreddit,
            author_handle=f"u/{post['author']}" if post.get("author") else None,
            title=title or None,
            body=strip_markup(post.get("selftext")) or None,
            images=images,
            source_url=url,
        )


class YouTubeResolver(PlatformResolver):
    """YouTube videos via the public oEmbed endpoint."""

    platform = Platform.YOUTUBE
    label = "YouTube"
    pattern = re.compile(r"(?:youtube\.com/(?:watch\?|shorts/|live/)|youtu\.be/)", re.I)

    def api_url(self, url: str, match: re.Match) -> str:
        return f"https://www.youtube.com/oembed?url={quote(url, safe='')}&format=json"

    def parse(self, payload: Any, url: str) -> NormalizedContent:
        if not payload.get("title"):
            raise SchemaMismatch("title missing")

        author_url = payload.get("author_url") or ""
        handle_match = re.search(r"/(@[^/?#]+)", author_url)

        thumbnail = payload.get("thumbnail_url")
        return NormalizedContent(
            platform=self.label,
            author_name=payload.get("author_name"),
            author_handle=handle_match.group(1) if handle_match else None,
            title=payload["title"],
            images=[thumbnail] if thumbnail else [],
            source_url=url,
        )


RESOLVER_CLASSES: dict[Platform, type[PlatformResolver]] = {
    Platform.BLUESKY: BlueskyResolver,
    Platform.MASTODON: MastodonResolver,
    Platform.TWITTER: TwitterResolver,
    Platform.REDDIT: RedditResolver,
    Platform.YOUTUBE: YouTubeResolver,
}


def build_platform_resolvers(
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[Settings] = None,
) -> dict[Platform, PlatformResolver]:
    """One resolver instance per known platform."""
    return {platform: cls(client, settings) for platform, cls in RESOLVER_CLASSES.items()}
