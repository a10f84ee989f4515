"""Tests for tier escalation in the fetch orchestrator."""

from typing import Optional

import pytest

from unfurl_cleaner.extractors.pipeline import FetchOrchestrator, ResolutionState, minimal_content
from unfurl_cleaner.models import NormalizedContent, Platform

BSKY_URL = "https://bsky.app/profile/alice.bsky.social/post/3kabc"
ARTICLE_URL = "https://example.com/blog/some-long-article-title"
NYT_URL = "https://www.nytimes.com/2024/01/15/us/big-story-here.html"


class FakeResolver:
    """Records calls into a shared log and returns a canned answer."""

    def __init__(self, name: str, log: list, result: Optional[NormalizedContent] = None, error=None):
        self.name = name
        self.log = log
        self.result = result
        self.error = error

    async def fetch(self, url: str) -> Optional[NormalizedContent]:
        self.log.append(self.name)
        if self.error:
            raise self.error
        return self.result


def content(url: str, **fields) -> NormalizedContent:
    return NormalizedContent(platform=fields.pop("platform", "Test"), source_url=url, **fields)


def build(settings, log, tier1=None, tier2=None, tier3=None, tier1_error=None, tier2_error=None, tier3_error=None):
    return FetchOrchestrator(
        settings,
        platform_resolvers={Platform.BLUESKY: FakeResolver("tier1", log, tier1, tier1_error)},
        generic=FakeResolver("tier2", log, tier2, tier2_error),
        browser=FakeResolver("tier3", log, tier3, tier3_error),
    )


class TestEscalation:
    """Tests for the order tiers are tried in."""

    @pytest.mark.asyncio
    async def test_tier1_success_stops(self, settings):
        log = []
        post = content(BSKY_URL, platform="Bluesky", body="hello world")
        orchestrator = build(settings, log, tier1=post)

        resolution = await orchestrator.resolve_with_trace(BSKY_URL)

        assert resolution.content == post
        assert resolution.resolved_by == "tier1"
        assert resolution.state is ResolutionState.RESOLVED
        assert log == ["tier1"]

    @pytest.mark.asyncio
    async def test_tier1_failure_escalates(self, settings):
        log = []
        page = content(BSKY_URL, title="Post", body="desc")
        orchestrator = build(settings, log, tier1=None, tier2=page)

        result = await orchestrator.resolve(BSKY_URL)

        assert result == page
        assert log == ["tier1", "tier2"]

    @pytest.mark.asyncio
    async def test_tier1_without_text_is_not_enough(self, settings):
        log = []
        empty = content(BSKY_URL, images=["https://cdn.bsky.app/1.jpg"])
        page = content(BSKY_URL, title="Post", images=["https://cdn.bsky.app/1.jpg"])
        orchestrator = build(settings, log, tier1=empty, tier2=page)

        assert await orchestrator.resolve(BSKY_URL) == page
        assert log == ["tier1", "tier2"]

    @pytest.mark.asyncio
    async def test_unclassified_url_skips_tier1(self, settings):
        log = []
        page = content(ARTICLE_URL, title="Article", body="Summary")
        orchestrator = build(settings, log, tier2=page)

        assert await orchestrator.resolve(ARTICLE_URL) == page
        assert log == ["tier2"]

    @pytest.mark.parametrize("fields", [
        {"title": "Title only"},
        {"body": "Body only"},
    ])
    @pytest.mark.asyncio
    async def test_thin_tier2_escalates(self, fields, settings):
        """Tier 2 needs a title plus a body or an image."""
        log = []
        rendered = content(ARTICLE_URL, title="Rendered", body="Full text")
        orchestrator = build(settings, log, tier2=content(ARTICLE_URL, **fields), tier3=rendered)

        resolution = await orchestrator.resolve_with_trace(ARTICLE_URL)

        assert resolution.content == rendered
        assert resolution.resolved_by == "tier3"
        assert log == ["tier2", "tier3"]

    @pytest.mark.asyncio
    async def test_title_and_image_is_enough(self, settings):
        log = []
        page = content(ARTICLE_URL, title="Photo essay", images=["https://example.com/a.jpg"])
        orchestrator = build(settings, log, tier2=page)

        assert await orchestrator.resolve(ARTICLE_URL) == page
        assert log == ["tier2"]


class TestSkipList:
    """Tests for domains that go to the browser tier first."""

    @pytest.mark.asyncio
    async def test_browser_first(self, settings):
        log = []
        rendered = content(NYT_URL, title="Rendered")
        orchestrator = build(settings, log, tier2=content(NYT_URL, title="x", body="y"), tier3=rendered)

        assert await orchestrator.resolve(NYT_URL) == rendered
        assert log == ["tier3"]

    @pytest.mark.asyncio
    async def test_plain_fetch_is_backup(self, settings):
        log = []
        page = content(NYT_URL, title="Headline only")
        orchestrator = build(settings, log, tier2=page, tier3=None)

        resolution = await orchestrator.resolve_with_trace(NYT_URL)

        assert resolution.content == page
        assert resolution.resolved_by == "tier2"
        assert log == ["tier3", "tier2"]


class TestFallback:
    """Tests for fault isolation and the minimal record."""

    @pytest.mark.asyncio
    async def test_exceptions_are_isolated(self, settings):
        log = []
        rendered = content(BSKY_URL, title="Rendered")
        orchestrator = build(
            settings, log,
            tier1_error=RuntimeError("boom"),
            tier2_error=ValueError("bad"),
            tier3=rendered,
        )

        assert await orchestrator.resolve(BSKY_URL) == rendered
        assert log == ["tier1", "tier2", "tier3"]

    @pytest.mark.asyncio
    async def test_everything_fails_returns_stub(self, settings):
        log = []
        orchestrator = build(settings, log, tier3_error=RuntimeError("browser died"))

        resolution = await orchestrator.resolve_with_trace(NYT_URL)

        assert resolution.state is ResolutionState.MINIMAL_FALLBACK
        assert resolution.resolved_by is None
        assert resolution.tiers_tried == ["tier3", "tier2"]
        assert resolution.content == minimal_content(NYT_URL)

    def test_minimal_content(self):
        stub = minimal_content(NYT_URL)
        assert stub.platform == "nytimes.com"
        assert stub.title == "Big Story Here"
        assert stub.source_url == NYT_URL
        assert stub.images == []

    def test_minimal_content_without_slug(self):
        stub = minimal_content("https://www.example.com/x")
        assert stub.platform == "example.com"
        assert stub.title == "example.com"

    def test_minimal_content_unparseable(self):
        stub = minimal_content("not a url")
        assert stub.platform == "Link"
        assert stub.title == "Link"
