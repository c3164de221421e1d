"""Global test configuration and fixtures.

Provides shared fixtures for all test levels: product snapshot builders,
temporary SQLite-backed stores and a recording notifier.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from wb_watcher.models import (
    BasketRange,
    PriceChange,
    ProductSnapshot,
    StoredProduct,
    Subscriber,
    Subscription,
    Variant,
)
from wb_watcher.services.storage import ProductStore
from wb_watcher.services.subscribers import SqliteSubscriberDirectory


def make_variant(option_id: int, price, **kwargs) -> Variant:
    """Variant with the given current price in rubles."""
    return Variant(
        option_id=option_id,
        label=kwargs.pop("label", f"size-{option_id}"),
        current_price=Decimal(str(price)),
        original_price=kwargs.pop("original_price", Decimal(str(price)) * 2),
        **kwargs,
    )


def make_snapshot(product_id: int, prices: dict[int, object], **kwargs) -> ProductSnapshot:
    """Snapshot with one variant per (option_id, price) pair."""
    return ProductSnapshot(
        id=product_id,
        name=kwargs.pop("name", f"Product {product_id}"),
        brand=kwargs.pop("brand", "Brand"),
        link=f"https://www.wildberries.ru/catalog/{product_id}/detail.aspx",
        variants=[make_variant(option_id, price) for option_id, price in prices.items()],
        **kwargs,
    )


def make_stored(product_id: int, prices: dict[int, object], **kwargs) -> StoredProduct:
    snapshot = make_snapshot(product_id, prices)
    return StoredProduct(**snapshot.model_dump(), **kwargs)


def make_subscriber(user_id: int, *pairs: tuple[int, int]) -> Subscriber:
    return Subscriber(
        user_id=user_id,
        subscriptions=[
            Subscription(user_id=user_id, product_id=product_id, option_id=option_id)
            for product_id, option_id in pairs
        ],
    )


class RecordingNotifier:
    """Notifier that records deliveries and tracks concurrency."""

    def __init__(self, delay: float = 0.0, fail_for: set[int] | None = None):
        self.delay = delay
        self.fail_for = fail_for or set()
        self.calls: list[tuple[int, int, list[PriceChange]]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def notify(
        self, subscriber: Subscriber, product: ProductSnapshot, changes: list[PriceChange]
    ) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if subscriber.user_id in self.fail_for:
                raise RuntimeError(f"delivery to {subscriber.user_id} failed")
            self.calls.append((subscriber.user_id, product.id, changes))
        finally:
            self.in_flight -= 1


@pytest.fixture
def basket_ranges():
    """Small shard table used by catalog tests."""
    return [
        BasketRange(start=0, end=143, basket=1),
        BasketRange(start=144, end=287, basket=2),
        BasketRange(start=1170, end=1313, basket=9),
        BasketRange(start=2838, end=3053, basket=18),
    ]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "test.db")


@pytest.fixture
def product_store(db_path):
    store = ProductStore(db_path=db_path)
    store.initialize()
    return store


@pytest.fixture
def subscriber_directory(db_path):
    directory = SqliteSubscriberDirectory(db_path=db_path, cache_ttl=600)
    directory.initialize()
    return directory


@pytest.fixture
def recording_notifier():
    return RecordingNotifier()


@pytest.fixture
def mock_http_session():
    """Mock aiohttp.ClientSession returning a configurable JSON/bytes response."""
    session = MagicMock()

    response = MagicMock()
    response.status = 200
    response.json = AsyncMock(return_value={"products": []})
    response.read = AsyncMock(return_value=b"image-bytes")

    session.get.return_value.__aenter__.return_value = response
    session.get.return_value.__aexit__.return_value = False
    session.response = response

    return session


@pytest.fixture
def raw_product():
    """Raw catalog entry in the upstream card list shape."""

    def _build(product_id: int = 123456789, sizes=None, **overrides):
        if sizes is None:
            sizes = [
                {
                    "name": "M",
                    "origName": "46",
                    "optionId": 1001,
                    "stock": 3,
                    "price": {"basic": 500000, "product": 199900},
                },
                {
                    "name": "L",
                    "origName": "48",
                    "optionId": 1002,
                    "stock": 0,
                    "price": {"basic": 500000, "product": 210050},
                },
            ]
        entry = {
            "id": product_id,
            "name": "Футболка",
            "brand": "Acme",
            "supplier": "ООО Ромашка",
            "entity": "футболки",
            "nmReviewRating": 4.8,
            "nmFeedbacks": 120,
            "totalQuantity": 3,
            "sizes": sizes,
        }
        entry.update(overrides)
        return entry

    return _build
