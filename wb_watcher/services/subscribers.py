"""Subscriber directory: users and their (product, size) subscriptions.

The price watcher only reads from the directory (distinct subscribed products
and subscriber listings); the rest of the API serves the chat front-end.
User records are cached in memory for a limited time to spare repeated
lookups during a conversation.
"""

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from ..config import config
from ..models import Subscriber, Subscription

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY,
        username TEXT NOT NULL DEFAULT '',
        first_name TEXT NOT NULL DEFAULT '',
        last_name TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        last_active_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        product_id INTEGER NOT NULL,
        option_id INTEGER NOT NULL,
        PRIMARY KEY (user_id, product_id, option_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_subscriptions_product_option
    ON subscriptions(product_id, option_id)
    """,
)


class SubscriberDirectory(Protocol):
    """Read side of the directory consumed by the price watcher."""

    async def list_subscribed_products(self) -> list[int]: ...

    async def list_subscribers(self) -> list[Subscriber]: ...

    def cleanup_cache(self) -> int: ...


class UserCache:
    """In-memory user records with time-based expiry."""

    def __init__(self, ttl: float, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[int, tuple[Subscriber, float]] = {}

    def get(self, user_id: int) -> Subscriber | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None

        user, stored_at = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[user_id]
            return None
        return user

    def set(self, user: Subscriber) -> None:
        self._entries[user.user_id] = (user, self._clock())

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        expired = [uid for uid, (_, ts) in self._entries.items() if now - ts >= self.ttl]
        for user_id in expired:
            del self._entries[user_id]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteSubscriberDirectory:
    """SQLite-backed subscriber directory with a TTL user cache.

    Attributes:
        db_path: Path to SQLite database file.
        cache: Per-user record cache.
    """

    def __init__(self, db_path: str | None = None, cache_ttl: float | None = None):
        """Initialize directory.

        Args:
            db_path: Path to SQLite database file. Uses config default if None.
            cache_ttl: User cache lifetime in seconds. Uses config default if None.
        """
        self.db_path = db_path or config.storage.db_path
        self.cache = UserCache(cache_ttl or config.directory.cache_ttl)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create directory tables if they don't exist.

        Raises:
            sqlite3.Error: If the database cannot be opened or migrated.
        """
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info(f"Subscriber directory initialized with database: {self.db_path}")

    # ---------- users ----------

    def _load_user(self, conn: sqlite3.Connection, user_id: int) -> Subscriber | None:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None

        subscriptions = conn.execute(
            "SELECT product_id, option_id FROM subscriptions WHERE user_id = ? "
            "ORDER BY rowid",
            (user_id,),
        ).fetchall()
        return Subscriber(
            user_id=row["id"],
            username=row["username"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_active_at=datetime.fromisoformat(row["last_active_at"]),
            subscriptions=[
                Subscription(user_id=user_id, product_id=s["product_id"], option_id=s["option_id"])
                for s in subscriptions
            ],
        )

    async def find_by_id(self, user_id: int) -> Subscriber | None:
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        with self._connect() as conn:
            user = self._load_user(conn, user_id)

        if user is not None:
            self.cache.set(user)
        return user

    async def ensure_user(
        self,
        user_id: int,
        username: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> tuple[Subscriber, bool]:
        """Create the user on first contact or refresh its activity time.

        Returns:
            Tuple of the user record and whether it was just created.
        """
        now = datetime.now(timezone.utc)
        existing = await self.find_by_id(user_id)

        with self._connect() as conn:
            if existing is None:
                conn.execute(
                    """
                    INSERT INTO users (id, username, first_name, last_name, created_at, last_active_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        username or "",
                        first_name or "",
                        last_name or "",
                        now.isoformat(),
                        now.isoformat(),
                    ),
                )
            else:
                conn.execute(
                    "UPDATE users SET last_active_at = ? WHERE id = ?", (now.isoformat(), user_id)
                )

        if existing is None:
            user = Subscriber(
                user_id=user_id,
                username=username or "",
                first_name=first_name or "",
                last_name=last_name or "",
                created_at=now,
                last_active_at=now,
            )
            logger.info(f"New user {user_id} ({username}) created")
        else:
            user = existing.model_copy(update={"last_active_at": now})

        self.cache.set(user)
        return user, existing is None

    # ---------- subscriptions ----------

    async def get_subscriptions(self, user_id: int) -> list[Subscription]:
        user = await self.find_by_id(user_id)
        return list(user.subscriptions) if user else []

    async def has_subscriptions(self, user_id: int) -> bool:
        return bool(await self.get_subscriptions(user_id))

    async def add_subscription(self, user_id: int, product_id: int, option_id: int) -> None:
        user = await self.find_by_id(user_id)
        if user is None or user.follows(product_id, option_id):
            return

        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO subscriptions (user_id, product_id, option_id) VALUES (?, ?, ?)",
                (user_id, product_id, option_id),
            )

        subscription = Subscription(user_id=user_id, product_id=product_id, option_id=option_id)
        self.cache.set(
            user.model_copy(update={"subscriptions": [*user.subscriptions, subscription]})
        )
        logger.info(f"User {user_id} subscribed to product {product_id} size {option_id}")

    async def remove_product_subscriptions(self, user_id: int, product_id: int) -> int:
        """Unsubscribe a user from every size of a product.

        Returns:
            Number of removed subscriptions.
        """
        user = await self.find_by_id(user_id)
        if user is None:
            return 0

        with self._connect() as conn:
            removed = conn.execute(
                "DELETE FROM subscriptions WHERE user_id = ? AND product_id = ?",
                (user_id, product_id),
            ).rowcount

        remaining = [s for s in user.subscriptions if s.product_id != product_id]
        self.cache.set(user.model_copy(update={"subscriptions": remaining}))
        logger.info(f"User {user_id} unsubscribed from product {product_id} ({removed} sizes)")
        return removed

    async def clear_subscriptions(self, user_id: int) -> None:
        user = await self.find_by_id(user_id)
        if user is None:
            return

        with self._connect() as conn:
            conn.execute("DELETE FROM subscriptions WHERE user_id = ?", (user_id,))

        self.cache.set(user.model_copy(update={"subscriptions": []}))

    # ---------- price watcher queries ----------

    async def list_subscribed_products(self) -> list[int]:
        """Distinct product ids followed by at least one user."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT product_id FROM subscriptions ORDER BY product_id"
            ).fetchall()
        return [row["product_id"] for row in rows]

    async def list_subscribers(self) -> list[Subscriber]:
        """All users with at least one subscription."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT user_id FROM subscriptions ORDER BY user_id"
            ).fetchall()
            users = [self._load_user(conn, row["user_id"]) for row in rows]
        return [user for user in users if user is not None]

    def cleanup_cache(self) -> int:
        removed = self.cache.cleanup()
        if removed:
            logger.debug(f"Evicted {removed} expired user cache entries")
        return removed
