"""Normalized content records produced by every resolver tier."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Known platforms with a native API resolver.

    Unclassified URLs are represented by ``None`` rather than a member.
    """

    BLUESKY = "bluesky"
    MASTODON = "mastodon"
    TWITTER = "twitter"
    REDDIT = "reddit"
    YOUTUBE = "youtube"


class NormalizedContent(BaseModel):
    """Platform-agnostic preview record."""

    platform: str  # Display label, e.g. "Bluesky" or "nytimes.com"
    author_name: Optional[str] = None
    author_handle: Optional[str] = None  # "@alice.bsky.social", "u/spez"
    author_avatar: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    images: list[str] = Field(default_factory=list)  # Ordered, absolute URLs
    source_url: str

    class Config:
        extra = "ignore"

    @property
    def has_text(self) -> bool:
        """True when the record carries a title or a body."""
        return bool(self.title or self.body)


class TierStatus(str, Enum):
    SUCCESS = "success"
    INSUFFICIENT = "insufficient"
    FAILED = "failed"


class TierOutcome:
    """Result of a single tier attempt, used to drive escalation."""

    def __init__(
        self,
        status: TierStatus,
        content: Optional[NormalizedContent] = None,
        tier: str = "",
    ):
        self.status = status
        self.content = content  # Set for SUCCESS, sometimes for INSUFFICIENT
        self.tier = tier

    @classmethod
    def success(cls, content: NormalizedContent, tier: str = "") -> "TierOutcome":
        return cls(TierStatus.SUCCESS, content, tier)

    @classmethod
    def insufficient(cls, content: Optional[NormalizedContent] = None, tier: str = "") -> "TierOutcome":
        return cls(TierStatus.INSUFFICIENT, content, tier)

    @classmethod
    def failed(cls, tier: str = "") -> "TierOutcome":
        return cls(TierStatus.FAILED, None, tier)

    @property
    def ok(self) -> bool:
        return self.status is TierStatus.SUCCESS

    def __repr__(self) -> str:
        return f"TierOutcome({self.tier or '?'}: {self.status.value})"
