"""URL -> preview content resolution.

This package provides the tiered resolution pipeline:
1. Classifies URLs (platform, tracking params, skip lists)
2. Resolves content through escalating tiers:
   - Native platform APIs (Bluesky, Mastodon, Twitter, Reddit, YouTube)
   - Plain fetch + OpenGraph / Twitter card / meta tags
   - Rendering: Browserless, Microlink, URL slug, local Playwright
3. Falls back to a minimal record built from the URL itself
"""

from unfurl_cleaner.extractors.urls import (
    clean_tracking_params,
    extract_urls,
    get_domain,
    has_tracking_params,
    identify_platform,
    should_defer_to_native_rendering,
    should_skip_generic_fetch,
)
from unfurl_cleaner.extractors.pipeline import FetchOrchestrator, minimal_content, resolve, shutdown

__all__ = [
    "clean_tracking_params",
    "extract_urls",
    "get_domain",
    "has_tracking_params",
    "identify_platform",
    "should_defer_to_native_rendering",
    "should_skip_generic_fetch",
    "FetchOrchestrator",
    "minimal_content",
    "resolve",
    "shutdown",
]
