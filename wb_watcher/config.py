"""Configuration management for the price watcher.

Handles all application configuration including environment variables, YAML
data files, and default settings. Provides structured configuration classes
for different aspects of the application (pipeline, bot, storage, catalog).
"""

from pathlib import Path

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import BasketRange


class WatcherConfig(BaseSettings):
    """Price check pipeline tunables.

    Attributes:
        poll_interval: Seconds between two scheduler firings.
        staleness_threshold: Minimum age in seconds of the last successful
            check before a product is eligible for re-fetch.
        stale_batch_limit: Maximum number of stale products fetched per cycle.
        notify_batch_size: Number of deliveries run concurrently per batch.
    """

    model_config = SettingsConfigDict(populate_by_name=True)

    poll_interval: float = Field(default=300.0, gt=0, validation_alias="WATCH_INTERVAL")
    staleness_threshold: float = Field(
        default=3600.0, gt=0, validation_alias="STALENESS_THRESHOLD"
    )
    stale_batch_limit: int = Field(default=100, gt=0, validation_alias="STALE_BATCH_LIMIT")
    notify_batch_size: int = Field(default=5, gt=0, validation_alias="NOTIFY_BATCH_SIZE")


class CatalogConfig(BaseSettings):
    """Upstream catalog client settings.

    Attributes:
        timeout: HTTP request timeout in seconds.
        chunk_size: Maximum number of ids per card request, None sends the
            whole list in one request.
        image_cache_size: Maximum number of downloaded images kept in memory
            until their product is persisted.
    """

    model_config = SettingsConfigDict(populate_by_name=True)

    timeout: int = Field(default=20, validation_alias="CATALOG_TIMEOUT")
    chunk_size: int | None = Field(default=None, gt=0, validation_alias="CATALOG_CHUNK_SIZE")
    image_cache_size: int = Field(default=128, gt=0, validation_alias="IMAGE_CACHE_SIZE")


class StorageConfig(BaseSettings):
    """SQLite storage settings.

    Attributes:
        db_path: Path to the SQLite database holding products, history and users.
    """

    model_config = SettingsConfigDict(populate_by_name=True)

    db_path: str = Field(default="data/wb_watcher.db", validation_alias="DB_PATH")


class DirectoryConfig(BaseSettings):
    """Subscriber directory settings.

    Attributes:
        cache_ttl: Seconds a cached user record stays valid.
    """

    model_config = SettingsConfigDict(populate_by_name=True)

    cache_ttl: float = Field(default=600.0, gt=0, validation_alias="USER_CACHE_TTL")


class BotConfig(BaseSettings):
    """Telegram bot configuration.

    Attributes:
        bot_token: Telegram bot API token from environment.
        log_level: Root logging level name.
        tracked_messages_per_chat: Product messages remembered per chat for
            replacement by newer ones.
    """

    model_config = SettingsConfigDict(populate_by_name=True)

    bot_token: str = Field(default="", validation_alias="BOT_TOKEN")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    tracked_messages_per_chat: int = Field(
        default=50, gt=0, validation_alias="TRACKED_MESSAGES_PER_CHAT"
    )


class Config:
    """Application configuration manager.

    Centralizes loading of environment-driven settings and the YAML data
    files shipped in the package ``config`` directory.
    """

    def __init__(self, config_dir: Path | None = None):
        """Initialize configuration manager.

        Args:
            config_dir: Path to configuration directory, defaults to wb_watcher/config.
        """
        if config_dir is None:
            config_dir = Path(__file__).parent / "config"

        self.config_dir = Path(config_dir)

        self.watcher = WatcherConfig()
        self.catalog = CatalogConfig()
        self.storage = StorageConfig()
        self.directory = DirectoryConfig()
        self.bot = BotConfig()

        self.basket_ranges = self._load_basket_ranges()

    def _load_basket_ranges(self) -> list[BasketRange]:
        """Load the image shard range table from YAML configuration.

        Returns:
            Ordered list of basket ranges, empty if the file is missing.
        """
        basket_path = self.config_dir / "basket_map.yml"
        if not basket_path.exists():
            return []

        with open(basket_path) as f:
            data = yaml.safe_load(f) or {}

        return [BasketRange.model_validate(entry) for entry in data.get("ranges", [])]

    def as_dict(self) -> dict:
        """Flatten settings for the dependency-injection container."""
        return {
            "watcher": self.watcher.model_dump(),
            "catalog": self.catalog.model_dump(),
            "storage": self.storage.model_dump(),
            "directory": self.directory.model_dump(),
            "bot": self.bot.model_dump(exclude={"bot_token"}),
            "basket_ranges": self.basket_ranges,
        }


# Global configuration instance
config = Config()
