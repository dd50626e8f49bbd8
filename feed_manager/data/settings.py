"""
Persisted user settings: the feed URL and API key.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from feed_manager.domain.errors import ConfigurationError
from feed_manager.domain.models import FeedConfig

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV_VAR = "FEED_MANAGER_CONFIG_DIR"
SETTINGS_FILE_NAME = "settings.json"
_DEFAULT_CONFIG_DIR = Path.home() / ".config" / "feed-manager"


def get_config_dir() -> Path:
    env_path = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return _DEFAULT_CONFIG_DIR


class FeedSettings(BaseModel):
    """Settings as stored on disk. Keys are written as ``FeedUrl``/``ApiKey``."""

    model_config = ConfigDict(populate_by_name=True)

    feed_url: Optional[str] = Field(default=None, alias="FeedUrl", description="Feed root URL")
    api_key: Optional[str] = Field(default=None, alias="ApiKey", description="API key for push and delete")


class SettingsStore:
    """Loads and saves FeedSettings as a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_config_dir() / SETTINGS_FILE_NAME
        self._settings = self._load()

    def _load(self) -> FeedSettings:
        if not self.path.exists():
            return FeedSettings()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return FeedSettings.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Could not read settings from {self.path}, using defaults: {e}")
            return FeedSettings()

    @property
    def settings(self) -> FeedSettings:
        return self._settings

    def update(self, feed_url: Optional[str] = None, api_key: Optional[str] = None) -> FeedSettings:
        """Replace the stored values and write them to disk."""
        self._settings = FeedSettings(
            feed_url=(feed_url or "").strip() or None,
            api_key=(api_key or "").strip() or None,
        )
        self.save()
        return self._settings

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            self._settings.model_dump_json(indent=2, by_alias=True),
            encoding="utf-8",
        )
        logger.info(f"Saved settings to {self.path}")

    def feed_config(self) -> FeedConfig:
        """The configured feed, or ConfigurationError when no URL is set."""
        if not self._settings.feed_url:
            raise ConfigurationError("No feed URL configured", config_file=str(self.path))
        return FeedConfig(feed_url=self._settings.feed_url, api_key=self._settings.api_key)
