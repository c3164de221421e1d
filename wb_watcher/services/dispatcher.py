"""Price change notification fan-out.

Matches change sets against subscriptions and delivers the resulting
notifications in sequential fixed-size batches. Deliveries inside a batch run
concurrently; the next batch starts only after the whole batch has settled,
which keeps the outbound rate bounded.
"""

import asyncio
import logging
from typing import Protocol

from ..models import ChangeSet, Notification, PriceChange, ProductSnapshot, Subscriber

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Outbound channel delivering one price change notification."""

    async def notify(
        self, subscriber: Subscriber, product: ProductSnapshot, changes: list[PriceChange]
    ) -> None: ...


def build_notifications(
    change_sets: list[ChangeSet], subscribers: list[Subscriber]
) -> list[Notification]:
    """Resolve which subscribers are affected by which changes.

    A subscriber is affected by a change set when one of its subscriptions
    matches the product and one of the changed option ids. The notification
    only carries the changes of the options the subscriber follows.

    Args:
        change_sets: Detected price transitions, one per product.
        subscribers: Users with their subscriptions.

    Returns:
        Flat list of notifications, grouped by change set.
    """
    notifications = []

    for change_set in change_sets:
        for subscriber in subscribers:
            relevant = [
                change
                for change in change_set.changes
                if subscriber.follows(change_set.product_id, change.option_id)
            ]
            if relevant:
                notifications.append(
                    Notification(subscriber=subscriber, product=change_set.product, changes=relevant)
                )

    return notifications


class NotificationDispatcher:
    """Delivers notifications in bounded-concurrency batches.

    Attributes:
        notifier: Delivery channel.
        batch_size: Maximum concurrent deliveries per batch.
    """

    def __init__(self, notifier: Notifier, batch_size: int = 5):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.notifier = notifier
        self.batch_size = batch_size

    async def _deliver(self, notification: Notification) -> bool:
        try:
            await self.notifier.notify(
                notification.subscriber, notification.product, notification.changes
            )
            return True
        except Exception as e:
            logger.error(
                f"Failed to notify user {notification.subscriber.user_id} "
                f"about product {notification.product.id}: {e}"
            )
            return False

    async def dispatch(self, change_sets: list[ChangeSet], subscribers: list[Subscriber]) -> int:
        """Notify every affected subscriber about the given change sets.

        Args:
            change_sets: Detected price transitions.
            subscribers: Candidate recipients with their subscriptions.

        Returns:
            Number of notifications attempted.
        """
        notifications = build_notifications(change_sets, subscribers)
        delivered = 0

        for i in range(0, len(notifications), self.batch_size):
            batch = notifications[i : i + self.batch_size]
            results = await asyncio.gather(*(self._deliver(n) for n in batch))
            delivered += sum(results)

        failed = len(notifications) - delivered
        if failed:
            logger.warning(f"Notified {delivered} users, {failed} deliveries failed")
        else:
            logger.info(f"Notified {delivered} users")
        return len(notifications)
