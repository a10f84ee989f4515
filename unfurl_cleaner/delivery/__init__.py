"""Delivery: per-destination pacing and identity-preserving publishing."""

from unfurl_cleaner.delivery.embed import build_embed
from unfurl_cleaner.delivery.queue import DeliveryQueue, enqueue_delivery, get_delivery_queue
from unfurl_cleaner.delivery.webhook import (
    DiscordWebhookBackend,
    Webhook,
    WebhookBackend,
    WebhookPublisher,
)

__all__ = [
    "build_embed",
    "DeliveryQueue",
    "enqueue_delivery",
    "get_delivery_queue",
    "DiscordWebhookBackend",
    "Webhook",
    "WebhookBackend",
    "WebhookPublisher",
]
