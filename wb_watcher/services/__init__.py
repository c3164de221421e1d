"""Business logic services package.

Contains the price check pipeline: pure price diffing, SQLite persistence of
product state and history, the subscriber directory, notification dispatch
and the periodic scheduler tying them together.
"""
