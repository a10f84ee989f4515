"""Per-channel enable/disable state, persisted as JSON."""

import json
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel
from rich.console import Console

from unfurl_cleaner.config import get_settings

console = Console()


class ChannelConfig(BaseModel):
    """Link cleaning state for one channel."""

    channel_id: str
    guild_id: str
    enabled: bool = False
    created_at: float
    updated_at: float

    class Config:
        extra = "ignore"


class ChannelStore:
    """Manages which channels have link cleaning turned on.

    Unknown channels count as disabled.
    """

    def __init__(self, store_path: Optional[Path] = None):
        self.store_path = Path(store_path or get_settings().channel_store_path)
        self._channels: dict[str, ChannelConfig] = {}
        self._load()

    def _load(self) -> None:
        """Load store from disk."""
        if self.store_path.exists():
            try:
                with open(self.store_path) as f:
                    data = json.load(f)
                for entry in data.get("channels", []):
                    config = ChannelConfig.model_validate(entry)
                    self._channels[config.channel_id] = config
                console.print(f"[dim]Loaded {len(self._channels)} channel configs[/dim]")
            except Exception as e:
                console.print(f"[yellow]Failed to load channel store: {e}[/yellow]")
                self._channels = {}

    def _save(self) -> None:
        """Save store to disk."""
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.store_path, "w") as f:
            json.dump({
                "updated_at": time.time(),
                "channels": [c.model_dump() for c in self._channels.values()],
            }, f, indent=2)

    def _set(self, channel_id: str, guild_id: str, enabled: bool) -> ChannelConfig:
        now = time.time()
        config = self._channels.get(channel_id)
        if config is None:
            config = ChannelConfig(
                channel_id=channel_id,
                guild_id=guild_id,
                enabled=enabled,
                created_at=now,
                updated_at=now,
            )
            self._channels[channel_id] = config
        else:
            config.enabled = enabled
            config.updated_at = now
        self._save()
        return config

    def enable(self, channel_id: str, guild_id: str) -> ChannelConfig:
        config = self._set(channel_id, guild_id, True)
        console.print(f"[green]Channel {channel_id} enabled in guild {guild_id}[/green]")
        return config

    def disable(self, channel_id: str, guild_id: str) -> ChannelConfig:
        config = self._set(channel_id, guild_id, False)
        console.print(f"[dim]Channel {channel_id} disabled in guild {guild_id}[/dim]")
        return config

    def get(self, channel_id: str) -> Optional[ChannelConfig]:
        return self._channels.get(channel_id)

    def is_enabled(self, channel_id: str) -> bool:
        config = self._channels.get(channel_id)
        return config is not None and config.enabled

    def enabled_for_guild(self, guild_id: str) -> list[str]:
        return [
            c.channel_id for c in self._channels.values()
            if c.guild_id == guild_id and c.enabled
        ]
