"""Tests for site lists and environment settings."""

import json

import pytest

from unfurl_cleaner.config import SITES_FILE, load_settings, load_sites


class TestLoadSites:
    """Tests for the site lists file."""

    def test_bundled_file(self):
        sites = load_sites(SITES_FILE)
        assert "nytimes.com" in sites["skip_to_browser"]
        assert "mastodon.social" in sites["mastodon_instances"]
        assert "si" in sites["tracking_params"]

    def test_hostnames_are_normalized(self, tmp_path):
        path = tmp_path / "sites.json"
        path.write_text(json.dumps({"skipToPlaywright": ["www.Example.com", " "]}))

        sites = load_sites(path)
        assert sites["skip_to_browser"] == ["example.com"]
        assert sites["hard_sites"] == []
        assert "tracking_params" not in sites

    def test_missing_file(self, tmp_path):
        assert load_sites(tmp_path / "nope.json") == {}

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "sites.json"
        path.write_text("[")
        assert load_sites(path) == {}


class TestLoadSettings:
    """Tests for environment overrides."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "PACING_INTERVAL_MS", "TIER1_TIMEOUT", "TIER2_TIMEOUT", "PLAYWRIGHT_TIMEOUT",
            "REMOTE_RENDER_TIMEOUT", "BROWSERLESS_TOKEN", "DISCORD_TOKEN", "CHANNEL_STORE_PATH",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        settings = load_settings(SITES_FILE)
        assert settings.pacing_interval == 3.0
        assert settings.tier1_timeout == 10.0
        assert settings.playwright_timeout == 15.0
        assert settings.browserless_token is None

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PACING_INTERVAL_MS", "500")
        monkeypatch.setenv("PLAYWRIGHT_TIMEOUT", "20000")
        monkeypatch.setenv("TIER2_TIMEOUT", "4")
        monkeypatch.setenv("BROWSERLESS_TOKEN", "tok")
        monkeypatch.setenv("CHANNEL_STORE_PATH", str(tmp_path / "c.json"))

        settings = load_settings(SITES_FILE)

        assert settings.pacing_interval == 0.5
        assert settings.playwright_timeout == 20.0
        assert settings.tier2_timeout == 4.0
        assert settings.browserless_token == "tok"
        assert settings.channel_store_path == tmp_path / "c.json"

    def test_invalid_number_keeps_default(self, monkeypatch):
        monkeypatch.setenv("TIER1_TIMEOUT", "soon")
        assert load_settings(SITES_FILE).tier1_timeout == 10.0
