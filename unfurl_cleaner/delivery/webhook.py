"""Publishing as the original poster through per-channel webhooks.

The publisher caches one webhook per destination. On first use it reuses a
webhook this application already owns in that channel before creating a new
one. When a send fails because the webhook was deleted upstream, the cache
entry is evicted and the next publish recreates it.
"""

import asyncio
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel
from rich.console import Console

from unfurl_cleaner.errors import DeliveryError, IdentityGoneError
from unfurl_cleaner.models import OutboundMessage, Poster

console = Console()

DISCORD_API = "https://discord.com/api/v10"
UNKNOWN_WEBHOOK = 10015  # Discord JSON error code

WEBHOOK_NAME = "Unfurl Cleaner"
MAX_USERNAME_LENGTH = 80


class Webhook(BaseModel):
    """A delegate identity that can post with any name and avatar."""

    id: str
    token: str
    channel_id: str
    owner_id: Optional[str] = None
    name: Optional[str] = None

    class Config:
        extra = "ignore"


class WebhookBackend(Protocol):
    """Chat-platform operations the publisher needs."""

    async def find_owned_webhook(self, channel_id: str) -> Optional[Webhook]: ...

    async def create_webhook(self, channel_id: str) -> Webhook: ...

    async def execute_webhook(self, webhook: Webhook, poster: Poster, message: OutboundMessage) -> None:
        """Send a message. Raises IdentityGoneError or DeliveryError."""
        ...


class WebhookPublisher:
    """Publishes messages on behalf of users, one cached webhook per channel."""

    def __init__(self, backend: WebhookBackend):
        self.backend = backend
        self._cache: dict[str, Webhook] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def cached(self, destination: str) -> Optional[Webhook]:
        return self._cache.get(destination)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _get_or_create(self, destination: str) -> Optional[Webhook]:
        if destination in self._cache:
            return self._cache[destination]

        lock = self._locks.setdefault(destination, asyncio.Lock())
        async with lock:
            # Another publish may have filled it while we waited
            if destination in self._cache:
                return self._cache[destination]
            try:
                webhook = await self.backend.find_owned_webhook(destination)
                if webhook is None:
                    webhook = await self.backend.create_webhook(destination)
                    console.print(f"[green]Created webhook in channel {destination}[/green]")
            except Exception as e:
                console.print(f"[red]Failed to get/create webhook in {destination}: {e}[/red]")
                return None

            self._cache[destination] = webhook
            return webhook

    async def publish(self, destination: str, on_behalf_of: Poster, content: OutboundMessage) -> bool:
        """Send ``content`` to ``destination`` looking like ``on_behalf_of``.

        Returns False on any failure. A vanished webhook is evicted from the
        cache without retrying; the next publish recreates it.
        """
        webhook = await self._get_or_create(destination)
        if webhook is None:
            return False

        try:
            await self.backend.execute_webhook(webhook, on_behalf_of, content)
        except IdentityGoneError:
            if self._cache.get(destination) is webhook:
                del self._cache[destination]
            console.print(
                f"[yellow]Webhook in {destination} was deleted, will recreate on next message[/yellow]"
            )
            return False
        except Exception as e:
            console.print(f"[red]Failed to send webhook message to {destination}: {e}[/red]")
            return False
        return True


class DiscordWebhookBackend:
    """WebhookBackend over Discord's REST API."""

    def __init__(
        self,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        api_base: str = DISCORD_API,
        timeout: float = 10.0,
    ):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._application_user_id: Optional[str] = None

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=5.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    @property
    def _auth(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self.token}"}

    async def _request(self, method: str, path: str, auth: bool = True, **kwargs) -> httpx.Response:
        client = await self._http()
        headers = self._auth if auth else {}
        try:
            response = await client.request(
                method, f"{self.api_base}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"{method} {path} failed: {type(e).__name__}") from e
        return response

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[int]:
        try:
            return response.json().get("code")
        except (ValueError, AttributeError):
            return None

    async def application_user_id(self) -> str:
        """Id of the bot user; webhooks it created carry it as owner."""
        if self._application_user_id is None:
            response = await self._request("GET", "/users/@me")
            if not response.is_success:
                raise DeliveryError(f"GET /users/@me returned {response.status_code}")
            self._application_user_id = str(response.json()["id"])
        return self._application_user_id

    async def find_owned_webhook(self, channel_id: str) -> Optional[Webhook]:
        own_id = await self.application_user_id()
        response = await self._request("GET", f"/channels/{channel_id}/webhooks")
        if not response.is_success:
            raise DeliveryError(f"Listing webhooks in {channel_id} returned {response.status_code}")

        for item in response.json():
            owner = (item.get("user") or {}).get("id")
            # Channel-follower webhooks have no token and cannot be executed
            if str(owner) == own_id and item.get("token"):
                return Webhook(
                    id=str(item["id"]),
                    token=item["token"],
                    channel_id=channel_id,
                    owner_id=str(owner),
                    name=item.get("name"),
                )
        return None

    async def create_webhook(self, channel_id: str) -> Webhook:
        response = await self._request(
            "POST",
            f"/channels/{channel_id}/webhooks",
            json={"name": WEBHOOK_NAME},
        )
        if not response.is_success:
            raise DeliveryError(f"Creating webhook in {channel_id} returned {response.status_code}")

        item = response.json()
        owner = (item.get("user") or {}).get("id")
        return Webhook(
            id=str(item["id"]),
            token=item["token"],
            channel_id=channel_id,
            owner_id=str(owner) if owner else None,
            name=item.get("name"),
        )

    async def execute_webhook(self, webhook: Webhook, poster: Poster, message: OutboundMessage) -> None:
        payload = {
            "username": poster.display_name[:MAX_USERNAME_LENGTH],
            "allowed_mentions": {"parse": []},
        }
        if poster.avatar_url:
            payload["avatar_url"] = poster.avatar_url
        if message.text:
            payload["content"] = message.text
        if message.embeds:
            payload["embeds"] = message.embeds

        response = await self._request(
            "POST",
            f"/webhooks/{webhook.id}/{webhook.token}",
            auth=False,
            params={"wait": "true"},
            json=payload,
        )
        if response.is_success:
            return

        if response.status_code == 404 and self._error_code(response) == UNKNOWN_WEBHOOK:
            raise IdentityGoneError(f"Unknown Webhook {webhook.id}")
        raise DeliveryError(f"Webhook execute returned {response.status_code}: {response.text[:200]}")
