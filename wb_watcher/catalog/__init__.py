"""Catalog access package.

Contains the Wildberries card client: a strict parsing boundary for raw
payloads, deterministic image shard resolution with a download-once image
cache, and the batch fetcher used by the price watcher.
"""

from .fetcher import CatalogFetcher, create_session
from .images import ImageCache, build_image_url, resolve_basket_host
from .parser import parse_product, parse_products

__all__ = [
    "CatalogFetcher",
    "ImageCache",
    "build_image_url",
    "create_session",
    "parse_product",
    "parse_products",
    "resolve_basket_host",
]
