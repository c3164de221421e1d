"""Wildberries Price Watcher Package.

A Telegram bot backend that tracks prices of Wildberries products and notifies
subscribed users when the price of a size they follow changes.

The application follows a modular architecture with separate concerns for:
- Catalog fetching and strict parsing of upstream payloads
- Price diffing against previously stored state
- SQLite persistence of product state and append-only price history
- Bounded-concurrency notification delivery through Telegram
- A single-flight periodic scheduler driving the whole pipeline
"""
