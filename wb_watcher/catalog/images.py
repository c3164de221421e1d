"""Product image resolution and caching.

Image hosts are sharded by article number: the volume (``id // 10**5``) is
looked up in the static basket table to get the shard host, and the part
(``id // 10**3``) partitions the asset path. Downloaded images are persisted
with the product and never refreshed; a small in-memory layer only covers
products not stored yet.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Protocol

import aiohttp

from ..models import BasketRange

logger = logging.getLogger(__name__)

IMAGE_HEADERS = {"User-Agent": "Mozilla/5.0"}


def resolve_basket_host(product_id: int, basket_ranges: list[BasketRange]) -> str | None:
    """Resolve the static asset host serving a product.

    Args:
        product_id: Catalog article number.
        basket_ranges: Ordered shard table.

    Returns:
        Host name, or None if no range covers the product volume.
    """
    volume = product_id // 100_000
    for entry in basket_ranges:
        if entry.contains(volume):
            return f"basket-{entry.basket:02d}.wbbasket.ru"

    logger.warning(f"No basket mapping for vol={volume} (product {product_id})")
    return None


def build_image_url(product_id: int, basket_ranges: list[BasketRange]) -> str | None:
    """Build the URL of the main product image.

    Args:
        product_id: Catalog article number.
        basket_ranges: Ordered shard table.

    Returns:
        Image URL, or None when the id is too small to be partitioned or no
        shard covers it.
    """
    volume = product_id // 100_000
    part = product_id // 1_000
    if not volume or not part:
        return None

    host = resolve_basket_host(product_id, basket_ranges)
    if host is None:
        return None

    return f"https://{host}/vol{volume}/part{part}/{product_id}/images/big/1.webp"


class ImageSource(Protocol):
    """Persistent lookup of already downloaded images."""

    def get_image(self, product_id: int) -> bytes | None: ...


class ImageCache:
    """Download-once cache of product images.

    Images are looked up in the backing store, then among recent downloads,
    and downloaded only when neither has them. Recent downloads bridge the
    gap until the product is persisted and are capped at ``max_entries``,
    least recently used first out. Failed downloads are not remembered so
    they are retried on the next fetch of the product.
    """

    def __init__(self, store: ImageSource | None = None, max_entries: int = 128):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.store = store
        self.max_entries = max_entries
        self._images: OrderedDict[int, bytes] = OrderedDict()

    async def get(
        self, product_id: int, url: str | None, session: aiohttp.ClientSession
    ) -> bytes | None:
        """Return image bytes for a product, downloading them at most once.

        Args:
            product_id: Catalog article number.
            url: Resolved image URL, None if the product has no image.
            session: HTTP session for the download.

        Returns:
            Image bytes, or None if unavailable.
        """
        if self.store is not None:
            stored = self.store.get_image(product_id)
            if stored:
                self._images.pop(product_id, None)
                return stored

        cached = self._images.get(product_id)
        if cached is not None:
            self._images.move_to_end(product_id)
            return cached

        if not url:
            return None

        image = await self._download(url, session)
        if image:
            self._images[product_id] = image
            if len(self._images) > self.max_entries:
                self._images.popitem(last=False)
        return image

    async def _download(self, url: str, session: aiohttp.ClientSession) -> bytes | None:
        try:
            async with session.get(url, headers=IMAGE_HEADERS) as response:
                if response.status != 200:
                    logger.warning(f"Image download failed: {url} ({response.status})")
                    return None
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Image download error: {url}: {e}")
            return None

    def __len__(self) -> int:
        return len(self._images)
