"""Message relay: turns a chat message with a link into a clean repost.

The gateway (websocket, slash commands) lives outside this package; it
hands messages to ``LinkRelay.handle_message`` and supplies a coroutine that
deletes the original message.
"""

import re
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Optional

from rich.console import Console

from unfurl_cleaner.config import Settings, get_settings
from unfurl_cleaner.delivery.embed import build_embed
from unfurl_cleaner.delivery.queue import DeliveryQueue
from unfurl_cleaner.delivery.webhook import WebhookPublisher
from unfurl_cleaner.extractors.pipeline import FetchOrchestrator, ResolutionState
from unfurl_cleaner.extractors.urls import (
    clean_tracking_params,
    extract_urls,
    has_tracking_params,
    should_defer_to_native_rendering,
)
from unfurl_cleaner.models import IncomingMessage, OutboundMessage

console = Console()

RAW_PREFIX = "!raw "


class RecentMessageCache:
    """Bounded, time-windowed set of message ids already handled.

    Entries expire after ``ttl`` seconds; past ``max_size`` the oldest go
    first.
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()

    def _evict(self) -> None:
        cutoff = self._clock() - self.ttl
        while self._seen:
            added_at = next(iter(self._seen.values()))
            if added_at > cutoff and len(self._seen) <= self.max_size:
                break
            self._seen.popitem(last=False)

    def add(self, message_id: str) -> bool:
        """Remember an id. Returns False if it was already present."""
        self._evict()
        if message_id in self._seen:
            return False
        self._seen[message_id] = self._clock()
        self._evict()
        return True

    def discard(self, message_id: str) -> None:
        self._seen.pop(message_id, None)

    def __contains__(self, message_id: str) -> bool:
        self._evict()
        return message_id in self._seen

    def __len__(self) -> int:
        self._evict()
        return len(self._seen)


def strip_urls(text: str, urls: list[str]) -> str:
    """Remove URLs from text, collapsing the gaps they leave."""
    for url in sorted(urls, key=len, reverse=True):
        text = text.replace(url, "")
    return re.sub(r"[ \t]{2,}", " ", text).strip()


def suppressed_links(urls: list[str], settings: Optional[Settings] = None) -> str:
    """Cleaned URLs wrapped in ``<>``, one per line, so they render without previews."""
    return "\n".join(f"<{clean_tracking_params(u, settings)}>" for u in urls)


def remaining_text(text: str, urls: list[str], settings: Optional[Settings] = None) -> str:
    """Message text without its URLs; all but the first come back as ``<url>``."""
    rest = strip_urls(text, urls)
    extra = suppressed_links(urls[1:], settings)
    if extra:
        rest = f"{rest}\n{extra}" if rest else extra
    return rest


class LinkRelay:
    """Resolves the first link in a message and reposts it as the author."""

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        queue: DeliveryQueue,
        publisher: WebhookPublisher,
        is_enabled: Callable[[str], bool],
        delete_message: Callable[[IncomingMessage], Awaitable[None]],
        settings: Optional[Settings] = None,
        recent: Optional[RecentMessageCache] = None,
    ):
        self.orchestrator = orchestrator
        self.queue = queue
        self.publisher = publisher
        self.is_enabled = is_enabled
        self.delete_message = delete_message
        self.settings = settings or get_settings()
        self.recent = recent or RecentMessageCache()

    async def handle_message(self, message: IncomingMessage) -> bool:
        """Process one message. Returns True if it was reposted."""
        if message.is_bot or message.id in self.recent:
            return False
        if not self.is_enabled(message.channel_id):
            return False
        if message.text.startswith(RAW_PREFIX):
            return False

        urls = extract_urls(message.text)
        if not urls:
            return False

        raw_url = urls[0]
        clean_url = clean_tracking_params(raw_url, self.settings)

        if should_defer_to_native_rendering(raw_url, self.settings):
            if not has_tracking_params(raw_url, self.settings):
                # Nothing to strip, native preview is fine
                return False

            async def action() -> bool:
                return await self._repost_native(message, urls, clean_url)
        else:
            async def action() -> bool:
                return await self._repost_preview(message, urls, clean_url)

        self.recent.add(message.id)
        try:
            reposted = await self.queue.enqueue(message.channel_id, action)
        except Exception as e:
            console.print(f"[red]Error processing message {message.id}: {e}[/red]")
            reposted = False

        if not reposted:
            self.recent.discard(message.id)
        return bool(reposted)

    async def _delete_original(self, message: IncomingMessage) -> bool:
        try:
            await self.delete_message(message)
        except Exception as e:
            console.print(f"[yellow]Could not delete message {message.id}: {e}[/yellow]")
            return False
        console.print(f"[dim]Deleted original message {message.id}[/dim]")
        return True

    async def _repost_preview(self, message: IncomingMessage, urls: list[str], url: str) -> bool:
        resolution = await self.orchestrator.resolve_with_trace(url)
        if resolution.state is ResolutionState.MINIMAL_FALLBACK:
            console.print(f"[yellow]No data fetched for {url}, leaving original[/yellow]")
            return False

        content = resolution.content
        outbound = OutboundMessage(
            text=remaining_text(message.text, urls, self.settings) or None,
            embeds=[build_embed(content)],
        )

        if not await self._delete_original(message):
            return False

        if await self.publisher.publish(message.channel_id, message.author, outbound):
            console.print(f"[green]Processed {url} via {content.platform}[/green]")
            return True
        console.print(f"[yellow]Failed to send webhook for {url}[/yellow]")
        return False

    async def _repost_native(self, message: IncomingMessage, urls: list[str], clean_url: str) -> bool:
        """Repost with tracking stripped and no embed; the destination previews it."""
        rest = strip_urls(message.text, urls)
        text = f"{rest}\n{clean_url}" if rest else clean_url
        extra = suppressed_links(urls[1:], self.settings)
        if extra:
            text = f"{text}\n{extra}"

        if not await self._delete_original(message):
            return False

        if await self.publisher.publish(message.channel_id, message.author, OutboundMessage(text=text)):
            console.print(f"[green]Processed YouTube link (stripped tracking): {clean_url}[/green]")
            return True
        console.print(f"[yellow]Failed to send webhook for YouTube: {clean_url}[/yellow]")
        return False
