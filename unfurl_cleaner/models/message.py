"""Chat-side message models used by the relay and the publisher."""

from typing import Optional

from pydantic import BaseModel, Field


class Poster(BaseModel):
    """The person a message is published on behalf of."""

    user_id: Optional[str] = None
    display_name: str
    avatar_url: Optional[str] = None


class OutboundMessage(BaseModel):
    """What gets sent through a delegate identity."""

    text: Optional[str] = None
    embeds: list[dict] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.text and not self.embeds


class IncomingMessage(BaseModel):
    """A message observed on the chat gateway."""

    id: str
    channel_id: str
    guild_id: Optional[str] = None
    author: Poster
    is_bot: bool = False
    text: str = ""
