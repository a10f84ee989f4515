"""Tests for identity-preserving publishing."""

import asyncio
import json

import httpx
import pytest

from unfurl_cleaner.delivery.webhook import DiscordWebhookBackend, Webhook, WebhookPublisher
from unfurl_cleaner.errors import DeliveryError, IdentityGoneError
from unfurl_cleaner.models import OutboundMessage, Poster

MESSAGE = OutboundMessage(text="hi", embeds=[{"title": "Link"}])


class FakeBackend:
    """In-memory webhook backend with scripted send failures."""

    def __init__(self, owned: Webhook = None, send_errors=None, find_error=None):
        self.owned = owned
        self.send_errors = list(send_errors or [])
        self.find_error = find_error
        self.finds = 0
        self.created: list[Webhook] = []
        self.sent: list[tuple[str, Poster, OutboundMessage]] = []

    async def find_owned_webhook(self, channel_id):
        self.finds += 1
        await asyncio.sleep(0)
        if self.find_error:
            raise self.find_error
        return self.owned

    async def create_webhook(self, channel_id):
        webhook = Webhook(id=f"w{len(self.created) + 1}", token="t", channel_id=channel_id)
        self.created.append(webhook)
        return webhook

    async def execute_webhook(self, webhook, poster, message):
        if self.send_errors:
            error = self.send_errors.pop(0)
            if error:
                raise error
        self.sent.append((webhook.id, poster, message))


class TestWebhookPublisher:
    """Tests for webhook caching and eviction."""

    @pytest.mark.asyncio
    async def test_webhook_is_cached(self, poster):
        backend = FakeBackend()
        publisher = WebhookPublisher(backend)

        assert await publisher.publish("c1", poster, MESSAGE)
        assert await publisher.publish("c1", poster, MESSAGE)

        assert len(backend.created) == 1
        assert backend.finds == 1
        assert [s[0] for s in backend.sent] == ["w1", "w1"]
        assert backend.sent[0][1] == poster

    @pytest.mark.asyncio
    async def test_reuses_owned_webhook(self, poster):
        owned = Webhook(id="existing", token="t", channel_id="c1")
        backend = FakeBackend(owned=owned)
        publisher = WebhookPublisher(backend)

        assert await publisher.publish("c1", poster, MESSAGE)
        assert backend.created == []
        assert publisher.cached("c1") == owned

    @pytest.mark.asyncio
    async def test_identity_gone_evicts_then_recreates(self, poster):
        """A deleted webhook fails once, then the next publish recreates it."""
        backend = FakeBackend(send_errors=[IdentityGoneError("Unknown Webhook")])
        publisher = WebhookPublisher(backend)

        assert not await publisher.publish("c1", poster, MESSAGE)
        assert publisher.cached("c1") is None

        assert await publisher.publish("c1", poster, MESSAGE)
        assert [w.id for w in backend.created] == ["w1", "w2"]
        assert publisher.cached("c1").id == "w2"

    @pytest.mark.asyncio
    async def test_other_failures_keep_cache(self, poster):
        backend = FakeBackend(send_errors=[DeliveryError("rate limited")])
        publisher = WebhookPublisher(backend)

        assert not await publisher.publish("c1", poster, MESSAGE)
        assert publisher.cached("c1").id == "w1"

        assert await publisher.publish("c1", poster, MESSAGE)
        assert len(backend.created) == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_is_not_cached(self, poster):
        backend = FakeBackend(find_error=DeliveryError("missing permission"))
        publisher = WebhookPublisher(backend)

        assert not await publisher.publish("c1", poster, MESSAGE)
        assert publisher.cached("c1") is None

        backend.find_error = None
        assert await publisher.publish("c1", poster, MESSAGE)

    @pytest.mark.asyncio
    async def test_concurrent_first_publishes_create_once(self, poster):
        backend = FakeBackend()
        publisher = WebhookPublisher(backend)

        results = await asyncio.gather(*(publisher.publish("c1", poster, MESSAGE) for _ in range(4)))

        assert all(results)
        assert len(backend.created) == 1

    @pytest.mark.asyncio
    async def test_destinations_are_separate(self, poster):
        backend = FakeBackend()
        publisher = WebhookPublisher(backend)

        await publisher.publish("c1", poster, MESSAGE)
        await publisher.publish("c2", poster, MESSAGE)

        assert [w.channel_id for w in backend.created] == ["c1", "c2"]


def discord_handler(requests: list, execute_response: httpx.Response = None):
    """Fake Discord API: bot user 999, one channel with three webhooks."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if request.method == "GET" and path.endswith("/webhooks"):
            return httpx.Response(200, json=[
                {"id": "1", "token": "other", "user": {"id": "123"}},
                {"id": "2", "user": {"id": "999"}},
                {"id": "3", "token": "mine", "name": "Unfurl Cleaner", "user": {"id": "999"}},
            ])
        if request.method == "GET":
            return httpx.Response(200, json={"id": "999", "username": "unfurl"})
        if request.method == "POST" and path.endswith("/webhooks"):
            return httpx.Response(200, json={"id": "4", "token": "new", "user": {"id": "999"}})
        return execute_response or httpx.Response(200, json={"id": "msg"})

    return handler


class TestDiscordWebhookBackend:
    """Tests for the Discord REST backend."""

    @pytest.mark.asyncio
    async def test_find_owned_webhook(self, mock_client):
        requests = []
        backend = DiscordWebhookBackend("tok", client=mock_client(discord_handler(requests)))

        webhook = await backend.find_owned_webhook("c1")

        assert webhook.id == "3"
        assert webhook.token == "mine"
        assert webhook.owner_id == "999"
        assert all(r.headers["authorization"] == "Bot tok" for r in requests)

    @pytest.mark.asyncio
    async def test_create_webhook(self, mock_client):
        requests = []
        backend = DiscordWebhookBackend("tok", client=mock_client(discord_handler(requests)))

        webhook = await backend.create_webhook("c1")

        assert webhook.id == "4"
        assert webhook.channel_id == "c1"
        assert json.loads(requests[0].content) == {"name": "Unfurl Cleaner"}

    @pytest.mark.asyncio
    async def test_execute_payload(self, mock_client):
        requests = []
        backend = DiscordWebhookBackend("tok", client=mock_client(discord_handler(requests)))
        webhook = Webhook(id="3", token="mine", channel_id="c1")
        poster = Poster(display_name="B" * 100, avatar_url="https://cdn.example.com/b.png")

        await backend.execute_webhook(webhook, poster, MESSAGE)

        request = requests[0]
        assert request.url.path.endswith("/webhooks/3/mine")
        assert request.url.params["wait"] == "true"
        assert "authorization" not in request.headers
        payload = json.loads(request.content)
        assert payload["username"] == "B" * 80
        assert payload["avatar_url"] == "https://cdn.example.com/b.png"
        assert payload["content"] == "hi"
        assert payload["embeds"] == [{"title": "Link"}]
        assert payload["allowed_mentions"] == {"parse": []}

    @pytest.mark.asyncio
    async def test_unknown_webhook(self, mock_client):
        gone = httpx.Response(404, json={"message": "Unknown Webhook", "code": 10015})
        backend = DiscordWebhookBackend("tok", client=mock_client(discord_handler([], gone)))

        with pytest.raises(IdentityGoneError):
            await backend.execute_webhook(Webhook(id="3", token="mine", channel_id="c1"), Poster(display_name="B"), MESSAGE)

    @pytest.mark.parametrize("response", [
        httpx.Response(404, json={"message": "Unknown Channel", "code": 10003}),
        httpx.Response(429, json={"message": "You are being rate limited.", "retry_after": 1.0}),
        httpx.Response(500, text="oops"),
    ])
    @pytest.mark.asyncio
    async def test_other_errors(self, response, mock_client):
        backend = DiscordWebhookBackend("tok", client=mock_client(discord_handler([], response)))

        with pytest.raises(DeliveryError) as excinfo:
            await backend.execute_webhook(Webhook(id="3", token="mine", channel_id="c1"), Poster(display_name="B"), MESSAGE)
        assert not isinstance(excinfo.value, IdentityGoneError)

    @pytest.mark.asyncio
    async def test_network_error(self, mock_client):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        backend = DiscordWebhookBackend("tok", client=mock_client(handler))
        with pytest.raises(DeliveryError):
            await backend.find_owned_webhook("c1")

    @pytest.mark.asyncio
    async def test_publisher_evicts_on_unknown_webhook(self, mock_client, poster):
        gone = httpx.Response(404, json={"message": "Unknown Webhook", "code": 10015})
        backend = DiscordWebhookBackend("tok", client=mock_client(discord_handler([], gone)))
        publisher = WebhookPublisher(backend)

        assert not await publisher.publish("c1", poster, MESSAGE)
        assert publisher.cached("c1") is None
