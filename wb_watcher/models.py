"""Data models for the price watcher application.

Defines Pydantic models for all data structures used throughout the application
including normalized product snapshots, stored product state, price history,
subscriptions and the change sets flowing from the diff step to persistence
and notification delivery.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class BasketRange(BaseModel):
    """One entry of the static image shard table.

    Attributes:
        start: First volume (inclusive) served by the basket.
        end: Last volume (inclusive) served by the basket.
        basket: Shard number used to build the host name.
    """

    model_config = ConfigDict(populate_by_name=True)

    start: int = Field(alias="from")
    end: int = Field(alias="to")
    basket: int

    def contains(self, volume: int) -> bool:
        return self.start <= volume <= self.end


class Variant(BaseModel):
    """Size/variant of a product with its prices in display units.

    Attributes:
        option_id: Stable upstream identifier of the size within the product.
        label: Human readable size name.
        original_label: Size name as shown by the seller.
        stock: Units available for this size.
        original_price: List price before discounts.
        current_price: Price the buyer pays now.
        derived_price: Estimated price with wallet discount applied.
        prev_current_price: Price before the last real transition.
        update_time: When the last real transition was detected.
    """

    option_id: int
    label: str = ""
    original_label: str = ""
    stock: int = 0
    original_price: Decimal = Decimal("0")
    current_price: Decimal = Decimal("0")
    derived_price: Decimal = Decimal("0")
    prev_current_price: Decimal | None = None
    update_time: datetime | None = None


class ProductSnapshot(BaseModel):
    """Normalized product card fetched from the catalog.

    Attributes:
        id: External catalog identifier (article number).
        name: Product title.
        brand: Brand name.
        supplier: Seller name.
        category: Catalog entity/category name.
        rating: Review rating (0.0-5.0 scale).
        feedback_count: Number of reviews.
        stock: Total units available across sizes.
        image_url: Resolved shard URL of the main image, None if unresolvable.
        image: Cached image bytes, None until downloaded.
        link: Public product page URL.
        variants: Sizes of the product.
    """

    id: int
    name: str = ""
    brand: str = ""
    supplier: str = ""
    category: str = ""
    rating: float = 0.0
    feedback_count: int = 0
    stock: int = 0
    image_url: str | None = None
    image: bytes | None = Field(default=None, repr=False)
    link: str = ""
    variants: list[Variant] = Field(default_factory=list)


class StoredProduct(ProductSnapshot):
    """Product state as persisted between cycles.

    Attributes:
        last_checked_at: When the product was last written successfully.
    """

    last_checked_at: datetime | None = None


class HistoryEntry(BaseModel):
    """Append-only record of one real price transition."""

    product_id: int
    option_id: int
    timestamp: datetime
    prev_price: Decimal
    current_price: Decimal


class PriceChange(BaseModel):
    """Price transition of a single variant."""

    option_id: int
    label: str = ""
    prev_price: Decimal
    current_price: Decimal


class ChangeSet(BaseModel):
    """Price transitions detected for one product in one cycle.

    Attributes:
        product: Fresh snapshot the changes were detected on.
        changes: Per-variant transitions.
    """

    product: ProductSnapshot
    changes: list[PriceChange] = Field(default_factory=list)

    @property
    def product_id(self) -> int:
        return self.product.id

    @property
    def changed_option_ids(self) -> set[int]:
        return {change.option_id for change in self.changes}


class ProductDiff(BaseModel):
    """Result of diffing a fresh snapshot against stored state.

    Attributes:
        product: Fresh snapshot.
        changes: Detected transitions, empty on a no-op cycle.
        history_entries: History rows to append, one per transition.
        merged_variants: Variant list to persist for the product.
    """

    product: ProductSnapshot
    changes: list[PriceChange] = Field(default_factory=list)
    history_entries: list[HistoryEntry] = Field(default_factory=list)
    merged_variants: list[Variant] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def to_change_set(self) -> ChangeSet:
        return ChangeSet(product=self.product, changes=self.changes)


class Subscription(BaseModel):
    """A user following one size of one product."""

    user_id: int
    product_id: int
    option_id: int


class Subscriber(BaseModel):
    """User record owned by the subscriber directory.

    Attributes:
        user_id: Telegram user id, also the private chat id.
        username: Telegram username (if available).
        first_name: First name from Telegram profile.
        last_name: Last name from Telegram profile.
        subscriptions: Followed (product, size) pairs.
        created_at: When the user first contacted the bot.
        last_active_at: Last interaction time.
    """

    user_id: int
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    subscriptions: list[Subscription] = Field(default_factory=list)
    created_at: datetime | None = None
    last_active_at: datetime | None = None

    def follows(self, product_id: int, option_id: int) -> bool:
        return any(
            s.product_id == product_id and s.option_id == option_id for s in self.subscriptions
        )


class Notification(BaseModel):
    """A single delivery: one subscriber, one product, its relevant changes."""

    subscriber: Subscriber
    product: ProductSnapshot
    changes: list[PriceChange]


class CycleReport(BaseModel):
    """Counters describing one price check cycle."""

    subscribed: int = 0
    stale: int = 0
    fetched: int = 0
    changed: int = 0
    persisted: int = 0
    notified: int = 0
