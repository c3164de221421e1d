"""Telegram bot implementation package.

Contains the outbound price change notifier, chat message lifecycle tracking,
localized message templates and the minimal command handlers.
"""
