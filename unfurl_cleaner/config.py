"""Runtime configuration.

Static site lists come from ``sites.json`` (bundled with the package, or the
file named by ``UNFURL_SITES_FILE``). Scalars come from the environment; the
CLI loads ``.env`` before anything reads them.
"""

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from rich.console import Console

console = Console()

SITES_FILE = Path(__file__).parent / "sites.json"
CACHE_DIR = Path.cwd() / ".cache"

DEFAULT_TRACKING_PARAMS = [
    "si",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
    "ref",
    "ref_src",
    "ref_url",
]


class Settings(BaseModel):
    """All knobs the resolver and delivery engines read."""

    # Site lists (hostnames without "www.")
    mastodon_instances: list[str] = Field(default_factory=list)
    skip_to_browser: list[str] = Field(default_factory=list)
    hard_sites: list[str] = Field(default_factory=list)  # Metadata-API fallback
    bot_friendly: list[str] = Field(default_factory=list)  # Get a crawler UA
    tracking_params: list[str] = Field(default_factory=lambda: list(DEFAULT_TRACKING_PARAMS))

    # Delivery
    pacing_interval: float = 3.0  # Seconds between actions per destination

    # Timeouts (seconds)
    tier1_timeout: float = 10.0
    tier2_timeout: float = 10.0
    playwright_timeout: float = 15.0
    browser_launch_timeout: float = 30.0
    settle_delay: float = 1.5
    remote_timeout: float = 30.0

    # Credentials
    browserless_token: Optional[str] = None
    discord_token: Optional[str] = None

    channel_store_path: Path = CACHE_DIR / "channels.json"

    class Config:
        extra = "ignore"


def _env_float(name: str, default: float, scale: float = 1.0) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw) / scale
    except ValueError:
        console.print(f"[yellow]Ignoring invalid {name}={raw!r}[/yellow]")
        return default


def load_sites(path: Optional[Path] = None) -> dict[str, list[str]]:
    """Load the site lists file. Missing or broken files yield empty lists."""
    path = path or Path(os.environ.get("UNFURL_SITES_FILE") or SITES_FILE)
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        console.print(f"[yellow]Sites file not found: {path}[/yellow]")
        return {}
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid sites file {path}: {e}[/red]")
        return {}

    # Normalize hostnames the same way get_domain() does
    def hosts(key: str) -> list[str]:
        return [h.strip().lower().removeprefix("www.") for h in data.get(key, []) if h.strip()]

    sites = {
        "mastodon_instances": hosts("mastodonInstances"),
        "skip_to_browser": hosts("skipToPlaywright"),
        "hard_sites": hosts("hardSites"),
        "bot_friendly": hosts("botFriendly"),
    }
    if data.get("trackingParams"):
        sites["tracking_params"] = list(data["trackingParams"])
    return sites


def load_settings(sites_path: Optional[Path] = None) -> Settings:
    """Build settings from sites.json plus environment variables."""
    settings = Settings(**load_sites(sites_path))

    settings.pacing_interval = _env_float("PACING_INTERVAL_MS", settings.pacing_interval, scale=1000)
    settings.tier1_timeout = _env_float("TIER1_TIMEOUT", settings.tier1_timeout)
    settings.tier2_timeout = _env_float("TIER2_TIMEOUT", settings.tier2_timeout)
    settings.playwright_timeout = _env_float("PLAYWRIGHT_TIMEOUT", settings.playwright_timeout, scale=1000)
    settings.remote_timeout = _env_float("REMOTE_RENDER_TIMEOUT", settings.remote_timeout)

    settings.browserless_token = os.environ.get("BROWSERLESS_TOKEN") or None
    settings.discord_token = os.environ.get("DISCORD_TOKEN") or None

    store_path = os.environ.get("CHANNEL_STORE_PATH")
    if store_path:
        settings.channel_store_path = Path(store_path)

    return settings


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get (and cache) the process-wide settings."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
