"""Shared test fixtures and configuration."""

from typing import Callable

import httpx
import pytest

from unfurl_cleaner.config import Settings
from unfurl_cleaner.models import NormalizedContent, Poster


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with small site lists and fast pacing, independent of the environment."""
    return Settings(
        mastodon_instances=["mastodon.social", "fosstodon.org"],
        skip_to_browser=["bloomberg.com", "nytimes.com"],
        hard_sites=["bloomberg.com", "nytimes.com", "wired.com"],
        bot_friendly=["instagram.com"],
        pacing_interval=0.05,
        settle_delay=0,
        channel_store_path=tmp_path / "channels.json",
    )


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for an AsyncClient whose requests go to a handler function."""

    def make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)

    return make


@pytest.fixture
def sample_content() -> NormalizedContent:
    """A resolved Bluesky post."""
    return NormalizedContent(
        platform="Bluesky",
        author_name="Alice",
        author_handle="@alice.bsky.social",
        author_avatar="https://cdn.bsky.app/avatar/alice.jpg",
        body="hello world",
        images=["https://cdn.bsky.app/img/1.jpg"],
        source_url="https://bsky.app/profile/alice.bsky.social/post/3kabc",
    )


@pytest.fixture
def poster() -> Poster:
    return Poster(user_id="42", display_name="Bob", avatar_url="https://cdn.example.com/bob.png")
