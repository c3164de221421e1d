"""Strict parsing boundary for catalog card payloads.

Raw upstream entries are validated against the ``Raw*`` models before a
``ProductSnapshot`` is built. An entry that does not match the expected shape
is rejected as a whole so undefined fields never reach the diff step.
"""

import logging
from decimal import ROUND_FLOOR, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..models import BasketRange, ProductSnapshot, Variant
from .images import build_image_url

logger = logging.getLogger(__name__)

CATALOG_URL = "https://www.wildberries.ru/catalog"

# Prices arrive in kopecks
MINOR_UNITS = Decimal("100")
WALLET_DISCOUNT = Decimal("0.94")


class RawPrice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    basic: int | None = None
    product: int | None = None


class RawSize(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    option_id: int = Field(alias="optionId")
    name: str = ""
    orig_name: str = Field(default="", alias="origName")
    stock: int | None = None
    price: RawPrice | None = None


class RawProduct(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int = Field(gt=0)
    name: str = ""
    brand: str = ""
    supplier: str = ""
    entity: str = ""
    nm_review_rating: float | None = Field(default=None, alias="nmReviewRating")
    review_rating: float | None = Field(default=None, alias="reviewRating")
    rating: float | None = None
    nm_feedbacks: int | None = Field(default=None, alias="nmFeedbacks")
    feedbacks: int | None = None
    total_quantity: int | None = Field(default=None, alias="totalQuantity")
    sizes: list[RawSize] = Field(default_factory=list)


def to_display_price(minor_units: int | None) -> Decimal:
    """Convert an integer price in minor currency units to display units."""
    if not minor_units:
        return Decimal("0")
    return Decimal(minor_units) / MINOR_UNITS


def derive_wallet_price(current_price: Decimal) -> Decimal:
    """Estimate the price with the catalog wallet discount, rounded down."""
    if not current_price:
        return Decimal("0")
    return (current_price * WALLET_DISCOUNT).to_integral_value(rounding=ROUND_FLOOR)


def _first_truthy(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return 0


def _build_variant(size: RawSize) -> Variant:
    price = size.price or RawPrice()
    current_price = to_display_price(price.product)
    return Variant(
        option_id=size.option_id,
        label=size.name,
        original_label=size.orig_name,
        stock=size.stock or 0,
        original_price=to_display_price(price.basic),
        current_price=current_price,
        derived_price=derive_wallet_price(current_price),
    )


def parse_product(raw: Any, basket_ranges: list[BasketRange]) -> ProductSnapshot | None:
    """Validate one raw catalog entry and map it to a ProductSnapshot.

    Args:
        raw: Decoded JSON object for a single product.
        basket_ranges: Shard table used to resolve the image URL.

    Returns:
        ProductSnapshot, or None if the entry has an unexpected shape.
    """
    try:
        product = RawProduct.model_validate(raw)
    except ValidationError as e:
        entry_id = raw.get("id") if isinstance(raw, dict) else None
        logger.warning(f"Skipping malformed catalog entry id={entry_id}: {e.error_count()} errors")
        return None

    return ProductSnapshot(
        id=product.id,
        name=product.name,
        brand=product.brand,
        supplier=product.supplier,
        category=product.entity,
        rating=float(
            _first_truthy(product.nm_review_rating, product.review_rating, product.rating)
        ),
        feedback_count=int(_first_truthy(product.nm_feedbacks, product.feedbacks)),
        stock=product.total_quantity or 0,
        image_url=build_image_url(product.id, basket_ranges),
        link=f"{CATALOG_URL}/{product.id}/detail.aspx",
        variants=[_build_variant(size) for size in product.sizes],
    )


def parse_products(payload: Any, basket_ranges: list[BasketRange]) -> list[ProductSnapshot]:
    """Map a card list response to snapshots, skipping bad entries individually.

    Args:
        payload: Decoded JSON response body.
        basket_ranges: Shard table used to resolve image URLs.

    Returns:
        Snapshots for every well-formed entry, in response order.
    """
    if not isinstance(payload, dict):
        logger.warning(f"Unexpected catalog response type: {type(payload).__name__}")
        return []

    entries = payload.get("products")
    if entries is None and isinstance(payload.get("data"), dict):
        entries = payload["data"].get("products")

    if not isinstance(entries, list):
        return []

    snapshots = []
    for entry in entries:
        snapshot = parse_product(entry, basket_ranges)
        if snapshot is not None:
            snapshots.append(snapshot)

    return snapshots
