"""Heuristics used when structured metadata is missing or untrustworthy.

- robot-challenge detection for pages served to bots
- a title derived from the URL slug
- ordered paragraph-extraction strategies for rendered pages
"""

import re
from typing import Callable, Optional
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup

from unfurl_cleaner.extractors.urls import get_domain

ROBOT_PHRASES = [
    "are you a robot",
    "captcha",
    "verify you are human",
    "please verify",
    "access denied",
    "blocked",
]

# Publications whose domain reads badly as a label
DISPLAY_NAMES = {
    "nytimes.com": "The New York Times",
    "wsj.com": "WSJ",
    "bloomberg.com": "Bloomberg",
    "washingtonpost.com": "The Washington Post",
    "ft.com": "Financial Times",
    "economist.com": "The Economist",
    "theatlantic.com": "The Atlantic",
    "newyorker.com": "The New Yorker",
    "businessinsider.com": "Business Insider",
    "wired.com": "WIRED",
    "reuters.com": "Reuters",
    "apnews.com": "AP News",
    "theguardian.com": "The Guardian",
    "bbc.com": "BBC",
    "bbc.co.uk": "BBC",
    "cnn.com": "CNN",
    "theverge.com": "The Verge",
    "arstechnica.com": "Ars Technica",
}

MIN_SEGMENT_LENGTH = 8
MIN_SLUG_TITLE_LENGTH = 10

# 2024-01-15-, 2024_01_15_, 20240115-
LEADING_DATE = re.compile(r"^(?:\d{4}[-_]\d{1,2}[-_]\d{1,2}|\d{8})[-_]*")
FILE_EXTENSION = re.compile(r"\.(?:html?|php|aspx?|jsp)$", re.I)
TRAILING_ID = re.compile(r"[-_](?:[0-9a-f]{8,}|\d{5,})$", re.I)
SLUG_DELIMITERS = re.compile(r"[-_+]+")

MIN_PARAGRAPH_LENGTH = 50
MAX_BODY_LENGTH = 500


def is_robot_text(*texts: Optional[str]) -> bool:
    """True when any text contains a bot-verification phrase (case-insensitive)."""
    for text in texts:
        if not text:
            continue
        lowered = text.lower()
        if any(phrase in lowered for phrase in ROBOT_PHRASES):
            return True
    return False


def display_name(url: str) -> Optional[str]:
    """Publication name for a URL, falling back to the bare domain."""
    domain = get_domain(url)
    if not domain:
        return None
    return DISPLAY_NAMES.get(domain, domain)


def title_from_slug(url: str) -> Optional[str]:
    """Guess an article title from the URL path.

    Picks the longest path segment that looks like a slug, strips a leading
    date, a file extension and a trailing id, and title-cases the words.
    Returns None if the result is shorter than 10 characters.
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        return None

    segments = [unquote(s) for s in path.split("/") if s]
    candidates = [
        s for s in segments
        if len(s) >= MIN_SEGMENT_LENGTH and SLUG_DELIMITERS.search(s)
    ]
    if not candidates:
        return None

    # Ties go to the later segment: the article slug usually comes last
    slug = max(reversed(candidates), key=len)
    slug = FILE_EXTENSION.sub("", slug)
    slug = LEADING_DATE.sub("", slug)
    slug = TRAILING_ID.sub("", slug)

    words = SLUG_DELIMITERS.sub(" ", slug).split()
    title = " ".join(word.capitalize() for word in words)
    if len(title) < MIN_SLUG_TITLE_LENGTH:
        return None
    return title


# Paragraph strategies, tried in order; first paragraph long enough wins
CONTENT_SELECTORS = [
    "article p",
    '[class*="article-body"] p',
    '[class*="story-body"] p',
    '[class*="content"] p',
    "main p",
    ".body p",
    "p",
]

Strategy = Callable[[BeautifulSoup], Optional[str]]


def selector_strategy(selector: str) -> Strategy:
    """Strategy returning the first long-enough paragraph matching selector."""

    def extract(soup: BeautifulSoup) -> Optional[str]:
        for node in soup.select(selector):
            text = " ".join(node.get_text().split())
            if len(text) > MIN_PARAGRAPH_LENGTH:
                return text[:MAX_BODY_LENGTH]
        return None

    extract.__name__ = f"select({selector})"
    return extract


PARAGRAPH_STRATEGIES: list[Strategy] = [selector_strategy(s) for s in CONTENT_SELECTORS]


def first_success(soup: BeautifulSoup, strategies: list[Strategy]) -> Optional[str]:
    """Run strategies in order and return the first non-empty result."""
    for strategy in strategies:
        result = strategy(soup)
        if result:
            return result
    return None


def first_heading(soup: BeautifulSoup) -> Optional[str]:
    h1 = soup.find("h1")
    if h1:
        text = " ".join(h1.get_text().split())
        return text or None
    return None
