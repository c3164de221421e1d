"""Batch fetcher for Wildberries product cards.

Turns a list of article numbers into normalized product snapshots. Transport
problems never raise: the affected batch yields no snapshots and the products
are simply retried on the next cycle.
"""

import asyncio
import logging
from collections.abc import Iterable

import aiohttp

from ..config import config
from ..models import BasketRange, ProductSnapshot
from .images import ImageCache
from .parser import parse_products

logger = logging.getLogger(__name__)

CARD_URL = "https://u-card.wb.ru/cards/v4/list"
HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "application/json",
}
DEFAULT_PARAMS = {
    "appType": "1",
    "curr": "rub",
    "dest": "-1185367",
    "spp": "30",
    "ab_testing": "false",
    "lang": "ru",
    "ignore_stocks": "true",
}


def create_session(timeout: int | None = None) -> aiohttp.ClientSession:
    """Create configured aiohttp session for catalog requests.

    Args:
        timeout: Total request timeout in seconds, defaults to catalog config.

    Returns:
        aiohttp.ClientSession: Configured HTTP session.
    """
    connector = aiohttp.TCPConnector(limit=100, limit_per_host=30)
    client_timeout = aiohttp.ClientTimeout(total=timeout or config.catalog.timeout)
    return aiohttp.ClientSession(connector=connector, timeout=client_timeout, headers=HEADERS)


def build_params(ids: list[int]) -> dict[str, str]:
    """Build query parameters for a card list request."""
    return {**DEFAULT_PARAMS, "nm": ";".join(str(product_id) for product_id in ids)}


class CatalogFetcher:
    """Fetches product cards in batches and maps them to snapshots.

    Attributes:
        image_cache: Download-once image cache, None disables image fetching.
        chunk_size: Maximum ids per upstream request, None sends one request.
        basket_ranges: Image shard table.
    """

    def __init__(
        self,
        image_cache: ImageCache | None = None,
        chunk_size: int | None = None,
        basket_ranges: list[BasketRange] | None = None,
    ):
        if chunk_size is not None and chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.image_cache = image_cache
        self.chunk_size = chunk_size
        self.basket_ranges = basket_ranges if basket_ranges is not None else config.basket_ranges

    def _chunks(self, ids: list[int]) -> list[list[int]]:
        if not self.chunk_size:
            return [ids]
        return [ids[i : i + self.chunk_size] for i in range(0, len(ids), self.chunk_size)]

    async def fetch(
        self, ids: Iterable[int], session: aiohttp.ClientSession | None = None
    ) -> list[ProductSnapshot]:
        """Fetch fresh snapshots for the given article numbers.

        Duplicate ids are requested once. An empty result means "try again
        later", never that the products disappeared.

        Args:
            ids: Article numbers, duplicates allowed.
            session: HTTP session, a temporary one is created when omitted.

        Returns:
            Snapshots of every product the catalog returned in good shape.
        """
        unique_ids = list(dict.fromkeys(int(product_id) for product_id in ids))
        if not unique_ids:
            return []

        if session is None:
            async with create_session() as own_session:
                return await self._fetch_all(unique_ids, own_session)

        return await self._fetch_all(unique_ids, session)

    async def _fetch_all(
        self, ids: list[int], session: aiohttp.ClientSession
    ) -> list[ProductSnapshot]:
        snapshots: list[ProductSnapshot] = []
        for chunk in self._chunks(ids):
            snapshots.extend(await self._fetch_chunk(chunk, session))

        if self.image_cache is not None:
            for snapshot in snapshots:
                snapshot.image = await self.image_cache.get(
                    snapshot.id, snapshot.image_url, session
                )

        logger.info(f"Fetched {len(snapshots)}/{len(ids)} products from catalog")
        return snapshots

    async def _fetch_chunk(
        self, ids: list[int], session: aiohttp.ClientSession
    ) -> list[ProductSnapshot]:
        try:
            async with session.get(CARD_URL, params=build_params(ids), headers=HEADERS) as response:
                if response.status != 200:
                    logger.warning(f"Catalog request failed: HTTP {response.status} for {len(ids)} ids")
                    return []
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Catalog request error for {len(ids)} ids: {e}")
            return []

        return parse_products(payload, self.basket_ranges)
