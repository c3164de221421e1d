"""SQLite persistence for tracked products and their price history.

Stores the latest state of every observed product (variants, denormalized
card metadata, cached image and the ``last_checked_at`` freshness marker) and
an append-only price history log. Writes made by the price watcher are
best-effort: a product whose update fails keeps its old freshness marker and
is therefore picked up again by the next cycle.
"""

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from pydantic import TypeAdapter

from ..config import config
from ..models import HistoryEntry, ProductDiff, ProductSnapshot, StoredProduct, Variant

logger = logging.getLogger(__name__)

_VARIANTS = TypeAdapter(list[Variant])

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        brand TEXT NOT NULL DEFAULT '',
        supplier TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT '',
        rating REAL NOT NULL DEFAULT 0,
        feedback_count INTEGER NOT NULL DEFAULT 0,
        stock INTEGER NOT NULL DEFAULT 0,
        image_url TEXT,
        image BLOB,
        link TEXT NOT NULL DEFAULT '',
        variants TEXT NOT NULL DEFAULT '[]',
        last_checked_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_products_last_checked_at
    ON products(last_checked_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS price_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL,
        option_id INTEGER NOT NULL,
        timestamp TEXT NOT NULL,
        prev_price TEXT NOT NULL,
        current_price TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_price_history_product_option_ts
    ON price_history(product_id, option_id, timestamp DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_price_history_ts
    ON price_history(timestamp DESC)
    """,
)

UPSERT_PRODUCT = """
    INSERT INTO products (
        id, name, brand, supplier, category, rating, feedback_count, stock,
        image_url, image, link, variants, last_checked_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        name = excluded.name,
        brand = excluded.brand,
        supplier = excluded.supplier,
        category = excluded.category,
        rating = excluded.rating,
        feedback_count = excluded.feedback_count,
        stock = excluded.stock,
        image_url = excluded.image_url,
        image = COALESCE(excluded.image, products.image),
        link = excluded.link,
        variants = excluded.variants,
        last_checked_at = excluded.last_checked_at
"""


def to_timestamp(moment: datetime) -> str:
    """Serialize a datetime as fixed-width ISO-8601 UTC text (sortable)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class ProductStore:
    """SQLite-backed store of product state and price history.

    Attributes:
        db_path: Path to SQLite database file.
    """

    def __init__(self, db_path: str | None = None):
        """Initialize product store.

        Args:
            db_path: Path to SQLite database file. Uses config default if None.
        """
        self.db_path = db_path or config.storage.db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create tables and indexes if they don't exist.

        Raises:
            sqlite3.Error: If the database cannot be opened or migrated.
        """
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info(f"Product store initialized with database: {self.db_path}")

    @staticmethod
    def _row_to_product(row: sqlite3.Row) -> StoredProduct:
        last_checked_at = row["last_checked_at"]
        return StoredProduct(
            id=row["id"],
            name=row["name"],
            brand=row["brand"],
            supplier=row["supplier"],
            category=row["category"],
            rating=row["rating"],
            feedback_count=row["feedback_count"],
            stock=row["stock"],
            image_url=row["image_url"],
            image=row["image"],
            link=row["link"],
            variants=_VARIANTS.validate_json(row["variants"]),
            last_checked_at=datetime.fromisoformat(last_checked_at) if last_checked_at else None,
        )

    @staticmethod
    def _upsert_product(
        conn: sqlite3.Connection,
        product: ProductSnapshot,
        variants: list[Variant],
        checked_at: str,
    ) -> None:
        conn.execute(
            UPSERT_PRODUCT,
            (
                product.id,
                product.name,
                product.brand,
                product.supplier,
                product.category,
                product.rating,
                product.feedback_count,
                product.stock,
                product.image_url,
                product.image,
                product.link,
                _VARIANTS.dump_json(variants).decode(),
                checked_at,
            ),
        )

    def save_product(self, product: ProductSnapshot, checked_at: datetime | None = None) -> None:
        """Store a product on first observation, or overwrite it as fresh.

        Args:
            product: Snapshot to store as is.
            checked_at: Freshness marker, defaults to now.
        """
        checked_at = checked_at or datetime.now(timezone.utc)
        with self._connect() as conn:
            self._upsert_product(conn, product, product.variants, to_timestamp(checked_at))
        logger.info(f"Product {product.id} saved")

    def get_product(self, product_id: int) -> StoredProduct | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        return self._row_to_product(row) if row else None

    def get_products(self, product_ids: Iterable[int]) -> list[StoredProduct]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return []

        placeholders = ",".join("?" * len(ids))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM products WHERE id IN ({placeholders})", ids
            ).fetchall()
        return [self._row_to_product(row) for row in rows]

    def get_image(self, product_id: int) -> bytes | None:
        with self._connect() as conn:
            row = conn.execute("SELECT image FROM products WHERE id = ?", (product_id,)).fetchone()
        return row["image"] if row else None

    def select_stale(
        self,
        product_ids: Iterable[int],
        threshold: timedelta,
        limit: int,
        now: datetime | None = None,
    ) -> list[StoredProduct]:
        """Select stored products not checked within the staleness threshold.

        The oldest products come first, so products refreshed by a cycle move
        to the back of the queue and a capped selection still reaches every
        stale product over successive cycles.

        Args:
            product_ids: Candidate ids (the currently subscribed products).
            threshold: Minimum age of ``last_checked_at``.
            limit: Maximum number of products returned.
            now: Reference time, defaults to current UTC time.

        Returns:
            Stale stored products, oldest check first.
        """
        ids = list(dict.fromkeys(product_ids))
        if not ids or limit <= 0:
            return []

        now = now or datetime.now(timezone.utc)
        cutoff = to_timestamp(now - threshold)
        placeholders = ",".join("?" * len(ids))

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM products
                WHERE id IN ({placeholders})
                  AND (last_checked_at IS NULL OR last_checked_at < ?)
                ORDER BY last_checked_at ASC
                LIMIT ?
                """,
                [*ids, cutoff, limit],
            ).fetchall()

        return [self._row_to_product(row) for row in rows]

    def apply_changes(self, diffs: list[ProductDiff], now: datetime | None = None) -> set[int]:
        """Persist diff results for a batch of products.

        Each product is upserted independently (merged variants, card metadata
        and ``last_checked_at``), so one failing product does not block the
        others. History rows are then appended in one batch, only for products
        whose update committed. If that batch fails the products stay fresh
        without the history of this cycle.

        Args:
            diffs: Diff results of the fetched products.
            now: Freshness marker, defaults to current UTC time.

        Returns:
            Ids of the products whose update committed.
        """
        if not diffs:
            return set()

        checked_at = to_timestamp(now or datetime.now(timezone.utc))
        written: set[int] = set()

        try:
            with self._connect() as conn:
                for diff in diffs:
                    try:
                        self._upsert_product(conn, diff.product, diff.merged_variants, checked_at)
                    except sqlite3.Error as e:
                        logger.error(f"Failed to update product {diff.product.id}: {e}")
                        continue
                    written.add(diff.product.id)
        except sqlite3.Error as e:
            logger.error(f"Failed to commit product updates: {e}")
            return set()

        entries = [
            entry
            for diff in diffs
            if diff.product.id in written
            for entry in diff.history_entries
        ]
        if entries:
            try:
                with self._connect() as conn:
                    conn.executemany(
                        """
                        INSERT INTO price_history
                        (product_id, option_id, timestamp, prev_price, current_price)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                entry.product_id,
                                entry.option_id,
                                to_timestamp(entry.timestamp),
                                str(entry.prev_price),
                                str(entry.current_price),
                            )
                            for entry in entries
                        ],
                    )
            except sqlite3.Error as e:
                logger.error(f"Failed to append {len(entries)} price history entries: {e}")

        logger.info(
            f"Updated {len(written)}/{len(diffs)} products, "
            f"inserted {len(entries)} history entries"
        )
        return written

    def get_price_history(
        self, product_id: int, option_id: int | None = None, limit: int | None = None
    ) -> list[HistoryEntry]:
        """Read price transitions of a product, newest first.

        Args:
            product_id: Catalog article number.
            option_id: Restrict to one size when given.
            limit: Maximum number of entries.

        Returns:
            History entries ordered by timestamp descending.
        """
        query = "SELECT * FROM price_history WHERE product_id = ?"
        params: list = [product_id]
        if option_id is not None:
            query += " AND option_id = ?"
            params.append(option_id)
        query += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            HistoryEntry(
                product_id=row["product_id"],
                option_id=row["option_id"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                prev_price=Decimal(row["prev_price"]),
                current_price=Decimal(row["current_price"]),
            )
            for row in rows
        ]
