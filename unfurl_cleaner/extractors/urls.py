"""URL classification: extraction, platform detection, tracking cleanup."""

import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from unfurl_cleaner.config import Settings, get_settings
from unfurl_cleaner.models import Platform

URL_REGEX = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.I)
TRAILING_PUNCTUATION = re.compile(r"[.,;:!?)]+$")

# Order matters: the first matching pattern wins.
PLATFORM_PATTERNS: dict[Platform, re.Pattern] = {
    Platform.BLUESKY: re.compile(
        r"^https?://(?:bsky\.app|bsky\.social)/profile/[^/]+/post/[a-zA-Z0-9]+", re.I
    ),
    # Any host with the /@user/<digits> shape; see identify_platform()
    Platform.MASTODON: re.compile(r"^https?://([^/]+)/@([^/]+)/(\d+)", re.I),
    Platform.TWITTER: re.compile(
        r"^https?://(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/[^/]+/status/\d+", re.I
    ),
    Platform.REDDIT: re.compile(
        r"^https?://(?:www\.|old\.|new\.)?reddit\.com/r/[^/]+/comments/[^/?#]+", re.I
    ),
    Platform.YOUTUBE: re.compile(
        r"^https?://(?:(?:www\.|m\.|music\.)?youtube\.com/(?:watch\?|shorts/|live/)"
        r"|youtu\.be/[\w-]+)",
        re.I,
    ),
}


def extract_urls(text: str) -> list[str]:
    """Find URLs in free text.

    Returns URLs in left-to-right order of first occurrence, with trailing
    sentence punctuation stripped.
    """
    if not text:
        return []

    urls: list[str] = []
    for match in URL_REGEX.findall(text):
        url = TRAILING_PUNCTUATION.sub("", match)
        if url and url not in urls:
            urls.append(url)
    return urls


def get_domain(url: str) -> Optional[str]:
    """Lowercase hostname without a leading ``www.``, or None if unparseable."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname.lower().removeprefix("www.")


def identify_platform(url: str, settings: Optional[Settings] = None) -> Optional[Platform]:
    """Classify a URL by shape.

    The Mastodon pattern intentionally matches ``/@user/<digits>`` on any
    host, so a post on an unlisted instance still classifies as Mastodon.
    The instance list only matters for URLs the fixed patterns reject.
    """
    if not url:
        return None

    for platform, pattern in PLATFORM_PATTERNS.items():
        if pattern.search(url):
            return platform

    settings = settings or get_settings()
    domain = get_domain(url)
    if domain and domain in settings.mastodon_instances:
        if re.search(r"/@[^/]+/\d+", url):
            return Platform.MASTODON

    return None


def _is_tracking_key(key: str, tracking_params: list[str]) -> bool:
    return key.lower().startswith("utm_") or key in tracking_params


def clean_tracking_params(url: str, settings: Optional[Settings] = None) -> str:
    """Remove known tracking query parameters.

    Other parameters keep their order. The ``?`` is dropped when nothing is
    left. Unparseable input is returned unchanged. Idempotent.
    """
    settings = settings or get_settings()
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc or not parts.query:
        return url

    params = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(k, v) for k, v in params if not _is_tracking_key(k, settings.tracking_params)]
    if len(kept) == len(params):
        return url

    return urlunsplit(parts._replace(query=urlencode(kept)))


def has_tracking_params(url: str, settings: Optional[Settings] = None) -> bool:
    """Whether clean_tracking_params() would change the URL."""
    return clean_tracking_params(url, settings) != url


def _domain_in(domain: Optional[str], hosts: list[str]) -> bool:
    return bool(domain) and domain in hosts


def should_skip_generic_fetch(url: str, settings: Optional[Settings] = None) -> bool:
    """True for hard-to-scrape domains that go straight to the browser tier."""
    settings = settings or get_settings()
    return _domain_in(get_domain(url), settings.skip_to_browser)


def is_hard_site(url: str, settings: Optional[Settings] = None) -> bool:
    """True for domains that may use the third-party metadata API."""
    settings = settings or get_settings()
    return _domain_in(get_domain(url), settings.hard_sites)


def is_bot_friendly(url: str, settings: Optional[Settings] = None) -> bool:
    """True for domains that serve full metadata to crawler user agents."""
    settings = settings or get_settings()
    return _domain_in(get_domain(url), settings.bot_friendly)


def should_defer_to_native_rendering(url: str, settings: Optional[Settings] = None) -> bool:
    """Let the destination's own preview handle the link (YouTube only)."""
    return identify_platform(url, settings) is Platform.YOUTUBE
