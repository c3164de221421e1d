"""Telegram delivery of price change notifications.

The notifier sends one message per (user, product) with the changes of the
sizes the user follows. To keep chats tidy the previous notification about
the same product is removed first and the new one is remembered afterwards;
this is done by wrapping the plain delivery call with
``with_message_lifecycle``.
"""

import functools
import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Message
from telegram.error import BadRequest, TelegramError

from ..models import PriceChange, ProductSnapshot, Subscriber
from .messages import (
    CAPTION_LIMIT,
    CARD_ARTICLE_LINE,
    CARD_IN_STOCK_LINE,
    CARD_LINK_LINE,
    CARD_OUT_OF_STOCK_LINE,
    CARD_PRICE_FROM_LINE,
    CARD_PRICE_LINE,
    CARD_RATING_LINE,
    CARD_SUPPLIER_LINE,
    CARD_TITLE_LINE,
    NO_LABEL,
    PRICE_CHANGE_HEADER,
    PRICE_DROP_LINE,
    PRICE_RISE_LINE,
    UNSUBSCRIBE_BUTTON,
    UNSUBSCRIBE_CALLBACK,
)

logger = logging.getLogger(__name__)

Deliver = Callable[[Subscriber, ProductSnapshot, list[PriceChange]], Awaitable[Message]]


def format_price(value: Decimal) -> str:
    """Render a price without trailing kopecks when it is a whole number."""
    if value == value.to_integral_value():
        return str(int(value))
    return f"{value:.2f}"


def format_change_line(change: PriceChange) -> str:
    template = PRICE_DROP_LINE if change.current_price < change.prev_price else PRICE_RISE_LINE
    return template.format(
        label=change.label or NO_LABEL,
        prev_price=format_price(change.prev_price),
        current_price=format_price(change.current_price),
    )


def format_notification(product: ProductSnapshot, changes: list[PriceChange]) -> str:
    """Build the notification text: changes first, then the product card.

    Args:
        product: Fresh product snapshot.
        changes: Changes relevant to the recipient.

    Returns:
        Message text trimmed to the Telegram caption limit.
    """
    lines = [PRICE_CHANGE_HEADER]
    lines.extend(format_change_line(change) for change in changes)
    lines.append("")
    lines.extend(_card_lines(product))
    return _fit_caption(lines)


def format_product_card(product: ProductSnapshot, footer: list[str] | None = None) -> str:
    """Build the product card shown on article lookup.

    Args:
        product: Fresh product snapshot.
        footer: Extra lines appended after the card.

    Returns:
        Card text trimmed to the Telegram caption limit.
    """
    lines = []
    prices = [variant.current_price for variant in product.variants if variant.current_price]
    if prices:
        template = CARD_PRICE_LINE if len(set(prices)) == 1 else CARD_PRICE_FROM_LINE
        lines.append(template.format(price=format_price(min(prices))))
    lines.append(CARD_ARTICLE_LINE.format(product_id=product.id))
    if product.stock > 0:
        lines.append(CARD_IN_STOCK_LINE.format(stock=product.stock))
    else:
        lines.append(CARD_OUT_OF_STOCK_LINE)
    lines.append("")
    lines.extend(_card_lines(product))
    if footer:
        lines.append("")
        lines.extend(footer)
    return _fit_caption(lines)


def _card_lines(product: ProductSnapshot) -> list[str]:
    lines = []
    title = CARD_TITLE_LINE.format(brand=product.brand, name=product.name).strip(" /")
    if title:
        lines.append(title)
    if product.rating or product.feedback_count:
        lines.append(CARD_RATING_LINE.format(rating=product.rating, feedbacks=product.feedback_count))
    if product.supplier:
        lines.append(CARD_SUPPLIER_LINE.format(supplier=product.supplier))
    if product.link:
        lines.append(CARD_LINK_LINE.format(link=product.link))
    return lines


def _fit_caption(lines: list[str]) -> str:
    text = "\n".join(lines)
    if len(text) > CAPTION_LIMIT:
        text = text[: CAPTION_LIMIT - 1] + "…"
    return text


class MessageTracker:
    """Remembers the last product message per chat and removes it on demand.

    At most ``max_per_chat`` products are remembered per chat; the least
    recently tracked one is forgotten (not deleted) when the limit is hit.
    """

    def __init__(self, bot: Bot, max_per_chat: int = 50):
        if max_per_chat <= 0:
            raise ValueError("max_per_chat must be positive")

        self.bot = bot
        self.max_per_chat = max_per_chat
        self._products: dict[int, dict[int, int]] = {}

    def track_product(self, chat_id: int, product_id: int, message_id: int) -> None:
        tracked = self._products.setdefault(chat_id, {})
        tracked.pop(product_id, None)
        tracked[product_id] = message_id
        while len(tracked) > self.max_per_chat:
            del tracked[next(iter(tracked))]

    def get_product_message(self, chat_id: int, product_id: int) -> int | None:
        return self._products.get(chat_id, {}).get(product_id)

    def forget_chat(self, chat_id: int) -> None:
        self._products.pop(chat_id, None)

    def __len__(self) -> int:
        return sum(len(tracked) for tracked in self._products.values())

    async def delete(self, chat_id: int, message_id: int) -> None:
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
        except BadRequest as e:
            if "message to delete not found" not in str(e).lower():
                logger.error(f"Failed to delete message {message_id} in chat {chat_id}: {e}")
        except TelegramError as e:
            logger.error(f"Failed to delete message {message_id} in chat {chat_id}: {e}")

    async def delete_product_message(self, chat_id: int, product_id: int) -> None:
        tracked = self._products.get(chat_id)
        if not tracked:
            return

        message_id = tracked.pop(product_id, None)
        if not tracked:
            del self._products[chat_id]
        if message_id is not None:
            await self.delete(chat_id, message_id)


def with_message_lifecycle(deliver: Deliver, tracker: MessageTracker) -> Deliver:
    """Wrap a delivery call with chat cleanup and message tracking.

    The returned coroutine function deletes the previous notification about
    the same product, performs the delivery, then tracks the sent message.

    Args:
        deliver: Plain delivery returning the sent message.
        tracker: Message tracker of the bot.

    Returns:
        Delivery function with the same signature.
    """

    @functools.wraps(deliver)
    async def wrapper(
        subscriber: Subscriber, product: ProductSnapshot, changes: list[PriceChange]
    ) -> Message:
        await tracker.delete_product_message(subscriber.user_id, product.id)
        message = await deliver(subscriber, product, changes)
        tracker.track_product(subscriber.user_id, product.id, message.message_id)
        return message

    return wrapper


class TelegramNotifier:
    """Notifier sending price changes to users' private chats.

    Attributes:
        bot: Telegram bot used for delivery.
        tracker: Message tracker keeping one notification per product in a chat.
    """

    def __init__(self, bot: Bot, tracker: MessageTracker):
        self.bot = bot
        self.tracker = tracker
        self._deliver = with_message_lifecycle(self.send_price_change, tracker)

    async def send_price_change(
        self, subscriber: Subscriber, product: ProductSnapshot, changes: list[PriceChange]
    ) -> Message:
        """Send the notification, as a photo when an image is available."""
        text = format_notification(product, changes)
        keyboard = InlineKeyboardMarkup(
            [
                [
                    InlineKeyboardButton(
                        UNSUBSCRIBE_BUTTON,
                        callback_data=UNSUBSCRIBE_CALLBACK.format(product_id=product.id),
                    )
                ]
            ]
        )

        photo = product.image or product.image_url
        if photo:
            return await self.bot.send_photo(
                chat_id=subscriber.user_id, photo=photo, caption=text, reply_markup=keyboard
            )
        return await self.bot.send_message(
            chat_id=subscriber.user_id, text=text, reply_markup=keyboard
        )

    async def notify(
        self, subscriber: Subscriber, product: ProductSnapshot, changes: list[PriceChange]
    ) -> None:
        """Deliver a notification, logging delivery errors instead of raising."""
        try:
            await self._deliver(subscriber, product, changes)
            logger.info(
                f"Notified user {subscriber.user_id} about price change for {product.id}"
            )
        except TelegramError as e:
            logger.error(f"Failed to notify user {subscriber.user_id}: {e}")
