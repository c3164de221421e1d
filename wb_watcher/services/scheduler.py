"""Periodic price check scheduler.

Drives the pipeline on a fixed interval: subscribed products -> stale subset
(capped) -> catalog fetch -> diff -> persistence -> notification dispatch.
Only one timer exists per watcher and ticks never overlap. A failing tick is
logged and the next one fires on schedule.

Stopping the watcher disarms the timer but does not wait for a tick already
in progress; work in flight at shutdown may be lost.
"""

import asyncio
import logging
from datetime import timedelta

from ..catalog.fetcher import CatalogFetcher
from ..models import CycleReport
from .diff import diff_product
from .dispatcher import NotificationDispatcher
from .storage import ProductStore
from .subscribers import SubscriberDirectory

logger = logging.getLogger(__name__)


class PriceWatcher:
    """Single-flight periodic price checker.

    Attributes:
        directory: Source of subscribed products and subscribers.
        store: Product state persistence.
        fetcher: Catalog client.
        dispatcher: Notification fan-out.
        poll_interval: Seconds between firings.
        staleness_threshold: Minimum age before a product is re-fetched.
        stale_batch_limit: Maximum products fetched per cycle.
    """

    def __init__(
        self,
        directory: SubscriberDirectory,
        store: ProductStore,
        fetcher: CatalogFetcher,
        dispatcher: NotificationDispatcher,
        poll_interval: float = 300.0,
        staleness_threshold: float = 3600.0,
        stale_batch_limit: int = 100,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if stale_batch_limit <= 0:
            raise ValueError("stale_batch_limit must be positive")

        self.directory = directory
        self.store = store
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval
        self.staleness_threshold = timedelta(seconds=staleness_threshold)
        self.stale_batch_limit = stale_batch_limit

        self._timer: asyncio.Task[None] | None = None
        self._tick: asyncio.Task[CycleReport | None] | None = None

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        """Arm the repeating timer. Must be called from a running event loop."""
        if self._timer is not None:
            logger.warning("Price watcher already running, skipping start")
            return

        logger.info(f"Starting price watcher ({self.poll_interval}s interval)")
        self._timer = asyncio.create_task(self._run_timer())

    def stop(self) -> None:
        """Disarm the timer. An in-flight tick is left to finish on its own."""
        if self._timer is None:
            return

        self._timer.cancel()
        self._timer = None
        logger.info("Price watcher stopped")

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self._fire()

    def _fire(self) -> None:
        if self._tick is not None and not self._tick.done():
            logger.warning("Previous price check still running, skipping this tick")
            return
        self._tick = asyncio.create_task(self.check_prices())

    async def check_prices(self) -> CycleReport | None:
        """Run one cycle, logging instead of raising on any failure."""
        try:
            return await self.run_cycle()
        except Exception:
            logger.exception("Price check failed")
            return None

    async def run_cycle(self) -> CycleReport:
        """Run one check-and-notify cycle.

        Returns:
            Counters describing the cycle.
        """
        report = CycleReport()
        self.directory.cleanup_cache()

        subscribed_ids = await self.directory.list_subscribed_products()
        report.subscribed = len(subscribed_ids)
        if not subscribed_ids:
            logger.info("No subscribed products, skipping check")
            return report

        stale = self.store.select_stale(
            subscribed_ids, self.staleness_threshold, self.stale_batch_limit
        )
        report.stale = len(stale)
        if not stale:
            logger.debug("No stale products to check")
            return report

        snapshots = await self.fetcher.fetch([product.id for product in stale])
        report.fetched = len(snapshots)
        if not snapshots:
            logger.warning(f"Catalog returned nothing for {len(stale)} stale products")
            return report

        stored_by_id = {product.id: product for product in stale}
        # one snapshot per requested product, the last echo wins
        fresh_by_id = {
            snapshot.id: snapshot for snapshot in snapshots if snapshot.id in stored_by_id
        }
        diffs = [
            diff_product(snapshot, stored_by_id[product_id])
            for product_id, snapshot in fresh_by_id.items()
        ]
        report.changed = sum(1 for diff in diffs if diff.has_changes)

        written = self.store.apply_changes(diffs)
        report.persisted = len(written)

        change_sets = [
            diff.to_change_set() for diff in diffs if diff.has_changes and diff.product.id in written
        ]
        if not change_sets:
            logger.info(f"No price changes found among {len(diffs)} products")
            return report

        subscribers = await self.directory.list_subscribers()
        report.notified = await self.dispatcher.dispatch(change_sets, subscribers)

        logger.info(
            f"Price check completed: {report.changed} changed, "
            f"{report.persisted} persisted, {report.notified} notifications"
        )
        return report
