"""Dependency-injection container.

Wires the price watcher pipeline: storage, subscriber directory, catalog
fetcher, Telegram notifier, dispatcher and the scheduler. The Telegram bot is
supplied at runtime by overriding the ``bot`` dependency.
"""

from dependency_injector import containers, providers
from telegram import Bot

from wb_watcher.bot.notifier import MessageTracker, TelegramNotifier
from wb_watcher.catalog.fetcher import CatalogFetcher
from wb_watcher.catalog.images import ImageCache
from wb_watcher.services.dispatcher import NotificationDispatcher
from wb_watcher.services.scheduler import PriceWatcher
from wb_watcher.services.storage import ProductStore
from wb_watcher.services.subscribers import SqliteSubscriberDirectory


class Container(containers.DeclarativeContainer):
    """DI container for the application."""

    config = providers.Configuration()
    bot = providers.Dependency(instance_of=Bot)

    # Storage
    product_store = providers.Singleton(ProductStore, db_path=config.storage.db_path)
    subscriber_directory = providers.Singleton(
        SqliteSubscriberDirectory,
        db_path=config.storage.db_path,
        cache_ttl=config.directory.cache_ttl,
    )

    # Catalog
    image_cache = providers.Singleton(
        ImageCache, store=product_store, max_entries=config.catalog.image_cache_size
    )
    fetcher = providers.Singleton(
        CatalogFetcher,
        image_cache=image_cache,
        chunk_size=config.catalog.chunk_size,
        basket_ranges=config.basket_ranges,
    )

    # Delivery
    message_tracker = providers.Singleton(
        MessageTracker, bot=bot, max_per_chat=config.bot.tracked_messages_per_chat
    )
    notifier = providers.Singleton(TelegramNotifier, bot=bot, tracker=message_tracker)
    dispatcher = providers.Singleton(
        NotificationDispatcher,
        notifier=notifier,
        batch_size=config.watcher.notify_batch_size,
    )

    # Scheduler
    price_watcher = providers.Singleton(
        PriceWatcher,
        directory=subscriber_directory,
        store=product_store,
        fetcher=fetcher,
        dispatcher=dispatcher,
        poll_interval=config.watcher.poll_interval,
        staleness_threshold=config.watcher.staleness_threshold,
        stale_batch_limit=config.watcher.stale_batch_limit,
    )
