"""Price diffing between a fresh snapshot and stored product state."""

from datetime import datetime, timezone

from ..models import HistoryEntry, PriceChange, ProductDiff, ProductSnapshot, StoredProduct


def diff_product(
    fresh: ProductSnapshot, stored: StoredProduct | None, now: datetime | None = None
) -> ProductDiff:
    """Compare a fresh snapshot with the stored state of the same product.

    Variants are matched by option id. A variant seen for the first time sets
    its baseline silently. A variant whose current price moved yields one
    change and one history entry, and its ``prev_current_price``/``update_time``
    advance. An unchanged variant keeps the markers of its last real
    transition. Variants missing from the fresh snapshot are dropped.

    Args:
        fresh: Snapshot just fetched from the catalog.
        stored: Previously persisted state, None on first observation.
        now: Transition timestamp, defaults to current UTC time.

    Returns:
        ProductDiff with changes, history entries and merged variants.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    stored_by_option = {v.option_id: v for v in stored.variants} if stored else {}

    changes: list[PriceChange] = []
    history_entries: list[HistoryEntry] = []
    merged_variants = []

    for variant in fresh.variants:
        previous = stored_by_option.get(variant.option_id)

        if previous is None:
            merged_variants.append(
                variant.model_copy(update={"prev_current_price": None, "update_time": None})
            )
            continue

        if variant.current_price != previous.current_price:
            changes.append(
                PriceChange(
                    option_id=variant.option_id,
                    label=variant.label,
                    prev_price=previous.current_price,
                    current_price=variant.current_price,
                )
            )
            history_entries.append(
                HistoryEntry(
                    product_id=fresh.id,
                    option_id=variant.option_id,
                    timestamp=now,
                    prev_price=previous.current_price,
                    current_price=variant.current_price,
                )
            )
            merged_variants.append(
                variant.model_copy(
                    update={"prev_current_price": previous.current_price, "update_time": now}
                )
            )
        else:
            merged_variants.append(
                variant.model_copy(
                    update={
                        "prev_current_price": previous.prev_current_price,
                        "update_time": previous.update_time,
                    }
                )
            )

    return ProductDiff(
        product=fresh,
        changes=changes,
        history_entries=history_entries,
        merged_variants=merged_variants,
    )
