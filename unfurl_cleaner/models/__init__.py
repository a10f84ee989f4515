"""Data models for the unfurl cleaner."""

from unfurl_cleaner.models.content import (
    NormalizedContent,
    Platform,
    TierOutcome,
    TierStatus,
)
from unfurl_cleaner.models.message import IncomingMessage, OutboundMessage, Poster

__all__ = [
    "NormalizedContent",
    "Platform",
    "TierOutcome",
    "TierStatus",
    "IncomingMessage",
    "OutboundMessage",
    "Poster",
]
