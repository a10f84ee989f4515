"""Minimal Discord embed for a NormalizedContent."""

from typing import Optional

from unfurl_cleaner.models import NormalizedContent

MAX_TITLE = 256
MAX_DESCRIPTION = 4096

PLATFORM_COLORS = {
    "Bluesky": 0x0085FF,
    "Mastodon": 0x6364FF,
    "Twitter": 0x1DA1F2,
    "Reddit": 0xFF4500,
    "YouTube": 0xFF0000,
    "Bloomberg": 0x472A91,
    "Bloomberg.com": 0x472A91,
    "The New York Times": 0x000000,
    "WSJ": 0x0274B6,
    "The Washington Post": 0x000000,
    "Link": 0x808080,
}
DEFAULT_COLOR = 0x5865F2


def truncate(text: Optional[str], limit: int) -> Optional[str]:
    if not text:
        return None
    return text if len(text) <= limit else text[: limit - 3] + "..."


def platform_color(platform: str) -> int:
    return PLATFORM_COLORS.get(platform, DEFAULT_COLOR)


def build_embed(content: NormalizedContent) -> dict:
    """Render content as a Discord embed object.

    Social posts lead with the author, Reddit with subreddit and title,
    articles with the title. Only the first image is shown.
    """
    embed: dict = {
        "color": platform_color(content.platform),
        "footer": {"text": content.platform},
    }
    description = truncate(content.body, MAX_DESCRIPTION)

    if content.author_name and content.author_handle and content.platform != "Reddit":
        author = {
            "name": f"{content.author_name} ({content.author_handle})",
            "url": content.source_url,
        }
        if content.author_avatar:
            author["icon_url"] = content.author_avatar
        embed["author"] = author
        if description:
            embed["description"] = description
        elif content.title:
            embed["title"] = truncate(content.title, MAX_TITLE)
            embed["url"] = content.source_url

    elif content.platform == "Reddit" and content.title:
        if content.author_name:
            name = f"{content.author_name} • {content.author_handle or ''}".strip(" •")
            embed["author"] = {"name": name, "url": content.source_url}
        embed["title"] = truncate(content.title, MAX_TITLE)
        embed["url"] = content.source_url
        if description:
            embed["description"] = description

    elif content.title:
        embed["title"] = truncate(content.title, MAX_TITLE)
        embed["url"] = content.source_url
        if description:
            embed["description"] = description
        if content.author_name:
            embed["author"] = {"name": content.author_name}

    else:
        embed["description"] = description or content.source_url

    if content.images:
        embed["image"] = {"url": content.images[0]}

    return embed
