"""Telegram bot command and callback handlers.

Handlers are the chat front-end of the price watcher: they register users,
show product cards looked up by article number, and manage subscriptions to
individual sizes. Collaborators (subscriber directory, product store, catalog
fetcher and message tracker) are taken from ``context.bot_data``.
"""

import logging
import re

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import ContextTypes

from ..catalog.fetcher import CatalogFetcher
from ..models import ProductSnapshot, StoredProduct
from ..services.storage import ProductStore
from ..services.subscribers import SqliteSubscriberDirectory
from .messages import (
    ALREADY_SUBSCRIBED,
    CANCEL_UNSUB_ALL_CALLBACK,
    CANCEL_UNSUB_CALLBACK,
    CARD_CHOOSE_SIZE,
    CARD_FOLLOWING,
    CARD_LAST_CHANGE,
    CONFIRM_UNSUB_CALLBACK,
    DEFAULT_NAME,
    GENERIC_ERROR,
    GREETING_BACK,
    GREETING_NEW,
    NO_BUTTON,
    NO_LABEL,
    NO_SUBSCRIPTIONS,
    NOT_UNDERSTOOD,
    PRODUCT_NOT_FOUND,
    SIZE_BUTTON,
    SIZE_FOLLOWED_BUTTON,
    SIZE_UNAVAILABLE,
    START_MESSAGE,
    SUBSCRIBE_CALLBACK,
    SUBSCRIBED,
    SUBSCRIPTION_LINE,
    SUBSCRIPTION_NAMED_LINE,
    SUBSCRIPTION_WORDS,
    SUBSCRIPTIONS_SUMMARY,
    UNSUB_ALL_BUTTON,
    UNSUB_ALL_CANCELLED,
    UNSUB_ALL_CONFIRM,
    UNSUB_ALL_CONFIRM_CALLBACK,
    UNSUB_ALL_DONE,
    UNSUB_ALL_EXECUTE_CALLBACK,
    UNSUB_ALL_NO_BUTTON,
    UNSUB_ALL_YES_BUTTON,
    UNSUB_CANCELLED,
    UNSUB_CONFIRM,
    UNSUBSCRIBE_BUTTON,
    UNSUBSCRIBE_CALLBACK,
    UNSUBSCRIBED,
    YES_BUTTON,
)
from .notifier import MessageTracker, format_price, format_product_card

logger = logging.getLogger(__name__)

DIRECTORY_KEY = "subscriber_directory"
STORE_KEY = "product_store"
FETCHER_KEY = "catalog_fetcher"
TRACKER_KEY = "message_tracker"

ARTICLE_PATTERN = re.compile(r"^\d{1,12}$")

# Callback data patterns
SUBSCRIBE_PATTERN = r"^sub:\d+:\d+$"
UNSUBSCRIBE_PATTERN = r"^unsub:\d+$"
CONFIRM_UNSUB_PATTERN = r"^confirmUnsub:\d+$"
CANCEL_UNSUB_PATTERN = rf"^{CANCEL_UNSUB_CALLBACK}$"
UNSUB_ALL_CONFIRM_PATTERN = rf"^{UNSUB_ALL_CONFIRM_CALLBACK}$"
UNSUB_ALL_EXECUTE_PATTERN = rf"^{UNSUB_ALL_EXECUTE_CALLBACK}$"
CANCEL_UNSUB_ALL_PATTERN = rf"^{CANCEL_UNSUB_ALL_CALLBACK}$"


def _callback_ids(data: str) -> list[int]:
    """Numeric arguments of callback data like ``sub:12345:1``."""
    return [int(part) for part in data.split(":")[1:]]


def format_subscriptions_count(count: int) -> str:
    """Russian plural form of the subscription count."""
    one, few, many = SUBSCRIPTION_WORDS
    if 11 <= count % 100 <= 19:
        word = many
    elif count % 10 == 1:
        word = one
    elif 2 <= count % 10 <= 4:
        word = few
    else:
        word = many
    return f"{count} {word}"


def _size_label(product: ProductSnapshot | None, option_id: int) -> str:
    if product is not None:
        for variant in product.variants:
            if variant.option_id == option_id:
                return variant.label or NO_LABEL
    return str(option_id)


def build_product_keyboard(
    product: ProductSnapshot, followed: set[int]
) -> InlineKeyboardMarkup | None:
    """Keyboard with one subscribe button per size and an unsubscribe button.

    Args:
        product: Product whose sizes are offered.
        followed: Option ids of the sizes the user already follows.

    Returns:
        Inline keyboard, or None if there is nothing to offer.
    """
    rows = []
    for variant in product.variants:
        template = SIZE_FOLLOWED_BUTTON if variant.option_id in followed else SIZE_BUTTON
        rows.append(
            [
                InlineKeyboardButton(
                    template.format(
                        label=variant.label or NO_LABEL,
                        price=format_price(variant.current_price),
                    ),
                    callback_data=SUBSCRIBE_CALLBACK.format(
                        product_id=product.id, option_id=variant.option_id
                    ),
                )
            ]
        )
    if followed:
        rows.append(
            [
                InlineKeyboardButton(
                    UNSUBSCRIBE_BUTTON,
                    callback_data=UNSUBSCRIBE_CALLBACK.format(product_id=product.id),
                )
            ]
        )
    return InlineKeyboardMarkup(rows) if rows else None


def _card_footer(store: ProductStore, product: ProductSnapshot, followed: set[int]) -> list[str]:
    footer = []

    history = store.get_price_history(product.id, limit=1)
    if history:
        entry = history[0]
        footer.append(
            CARD_LAST_CHANGE.format(
                label=_size_label(product, entry.option_id),
                prev_price=format_price(entry.prev_price),
                current_price=format_price(entry.current_price),
                date=entry.timestamp.strftime("%d.%m.%Y"),
            )
        )

    if followed:
        labels = [
            variant.label or NO_LABEL
            for variant in product.variants
            if variant.option_id in followed
        ]
        footer.append(CARD_FOLLOWING.format(labels=", ".join(labels)))
    elif product.variants:
        footer.append(CARD_CHOOSE_SIZE)

    return footer


async def _send_card(
    context: ContextTypes.DEFAULT_TYPE,
    chat_id: int,
    product: ProductSnapshot,
    footer: list[str],
    keyboard: InlineKeyboardMarkup | None,
) -> Message:
    caption = format_product_card(product, footer)
    photo = product.image or product.image_url
    if photo:
        return await context.bot.send_photo(
            chat_id=chat_id, photo=photo, caption=caption, reply_markup=keyboard
        )
    return await context.bot.send_message(chat_id=chat_id, text=caption, reply_markup=keyboard)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command.

    Registers the user in the subscriber directory on first contact and
    greets them.

    Args:
        update: Telegram update object containing message data.
        context: Bot context; the directory lives in ``bot_data``.
    """
    if not update.message or not update.effective_user:
        return

    directory: SqliteSubscriberDirectory = context.bot_data[DIRECTORY_KEY]
    tg_user = update.effective_user
    _, is_new = await directory.ensure_user(
        tg_user.id,
        username=tg_user.username,
        first_name=tg_user.first_name,
        last_name=tg_user.last_name,
    )

    name = tg_user.first_name or DEFAULT_NAME
    greeting = GREETING_NEW if is_new else GREETING_BACK
    await update.message.reply_text(greeting.format(name=name))
    if is_new:
        await update.message.reply_text(START_MESSAGE)


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text: an article number opens the product card.

    Args:
        update: Telegram update object containing message data.
        context: Bot context for accessing application services.
    """
    if not update.message or not update.effective_user or not update.effective_chat:
        return

    text = (update.message.text or "").strip()
    if not ARTICLE_PATTERN.match(text):
        await update.message.reply_text(NOT_UNDERSTOOD)
        return

    await show_product(update, context, int(text))


async def show_product(
    update: Update, context: ContextTypes.DEFAULT_TYPE, product_id: int
) -> None:
    """Fetch a product and send its card with the size keyboard.

    The first lookup of a product stores it, which makes it eligible for the
    periodic price check once somebody subscribes. The previous card or
    notification about the same product in this chat is replaced.

    Args:
        update: Telegram update of the user request.
        context: Bot context for accessing application services.
        product_id: Catalog article number.
    """
    directory: SqliteSubscriberDirectory = context.bot_data[DIRECTORY_KEY]
    store: ProductStore = context.bot_data[STORE_KEY]
    fetcher: CatalogFetcher = context.bot_data[FETCHER_KEY]
    tracker: MessageTracker = context.bot_data[TRACKER_KEY]

    tg_user = update.effective_user
    chat_id = update.effective_chat.id
    user, _ = await directory.ensure_user(
        tg_user.id,
        username=tg_user.username,
        first_name=tg_user.first_name,
        last_name=tg_user.last_name,
    )

    snapshots = await fetcher.fetch([product_id])
    product = next((snapshot for snapshot in snapshots if snapshot.id == product_id), None)
    if product is None:
        await context.bot.send_message(chat_id=chat_id, text=PRODUCT_NOT_FOUND)
        return

    if store.get_product(product_id) is None:
        store.save_product(product)

    followed = {s.option_id for s in user.subscriptions if s.product_id == product_id}

    await tracker.delete_product_message(chat_id, product_id)
    message = await _send_card(
        context,
        chat_id,
        product,
        _card_footer(store, product, followed),
        build_product_keyboard(product, followed),
    )
    tracker.track_product(chat_id, product_id, message.message_id)
    logger.info(f"Shown product {product_id} to user {tg_user.id}")


async def handle_subscribe(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Subscribe the user to one size of a product (``sub:{product}:{option}``)."""
    query = update.callback_query
    if not query or not update.effective_user:
        return

    product_id, option_id = _callback_ids(query.data)
    directory: SqliteSubscriberDirectory = context.bot_data[DIRECTORY_KEY]
    store: ProductStore = context.bot_data[STORE_KEY]

    tg_user = update.effective_user
    user, _ = await directory.ensure_user(
        tg_user.id,
        username=tg_user.username,
        first_name=tg_user.first_name,
        last_name=tg_user.last_name,
    )

    product: StoredProduct | None = store.get_product(product_id)
    if product is None or option_id not in {v.option_id for v in product.variants}:
        await query.answer(SIZE_UNAVAILABLE)
        return

    if user.follows(product_id, option_id):
        await query.answer(ALREADY_SUBSCRIBED)
        return

    await directory.add_subscription(tg_user.id, product_id, option_id)
    await query.answer(
        SUBSCRIBED.format(product_id=product_id, label=_size_label(product, option_id))
    )

    followed = {
        s.option_id
        for s in await directory.get_subscriptions(tg_user.id)
        if s.product_id == product_id
    }
    try:
        await query.edit_message_reply_markup(
            reply_markup=build_product_keyboard(product, followed)
        )
    except BadRequest as e:
        logger.debug(f"Card keyboard not updated for product {product_id}: {e}")


async def handle_unsubscribe_request(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Ask for confirmation before unsubscribing from a product (``unsub:{product}``)."""
    query = update.callback_query
    if not query or not update.effective_chat:
        return

    (product_id,) = _callback_ids(query.data)
    await query.answer()

    keyboard = InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(
                    YES_BUTTON, callback_data=CONFIRM_UNSUB_CALLBACK.format(product_id=product_id)
                )
            ],
            [InlineKeyboardButton(NO_BUTTON, callback_data=CANCEL_UNSUB_CALLBACK)],
        ]
    )
    await context.bot.send_message(
        chat_id=update.effective_chat.id,
        text=UNSUB_CONFIRM.format(product_id=product_id),
        reply_markup=keyboard,
    )


async def handle_unsubscribe_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Unsubscribe from every size of a product and remove its card."""
    query = update.callback_query
    if not query or not update.effective_user or not update.effective_chat:
        return

    (product_id,) = _callback_ids(query.data)
    directory: SqliteSubscriberDirectory = context.bot_data[DIRECTORY_KEY]
    tracker: MessageTracker = context.bot_data[TRACKER_KEY]

    await query.answer()
    await directory.remove_product_subscriptions(update.effective_user.id, product_id)
    await tracker.delete_product_message(update.effective_chat.id, product_id)
    await query.edit_message_text(UNSUBSCRIBED.format(product_id=product_id))


async def handle_unsubscribe_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return

    await query.answer()
    await query.edit_message_text(UNSUB_CANCELLED)


async def show_subscriptions(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /subs command: list followed products and their sizes.

    Args:
        update: Telegram update object containing message data.
        context: Bot context for accessing application services.
    """
    if not update.message or not update.effective_user:
        return

    directory: SqliteSubscriberDirectory = context.bot_data[DIRECTORY_KEY]
    store: ProductStore = context.bot_data[STORE_KEY]

    subscriptions = await directory.get_subscriptions(update.effective_user.id)
    if not subscriptions:
        await update.message.reply_text(NO_SUBSCRIPTIONS)
        return

    options_by_product: dict[int, list[int]] = {}
    for subscription in subscriptions:
        options_by_product.setdefault(subscription.product_id, []).append(subscription.option_id)
    stored = {product.id: product for product in store.get_products(options_by_product)}

    lines = []
    for product_id, option_ids in options_by_product.items():
        product = stored.get(product_id)
        labels = ", ".join(_size_label(product, option_id) for option_id in option_ids)
        if product is not None and product.name:
            line = SUBSCRIPTION_NAMED_LINE.format(
                product_id=product_id, name=product.name, labels=labels
            )
        else:
            line = SUBSCRIPTION_LINE.format(product_id=product_id, labels=labels)
        lines.append(line)

    keyboard = InlineKeyboardMarkup(
        [[InlineKeyboardButton(UNSUB_ALL_BUTTON, callback_data=UNSUB_ALL_CONFIRM_CALLBACK)]]
    )
    await update.message.reply_text(
        SUBSCRIPTIONS_SUMMARY.format(
            count=format_subscriptions_count(len(options_by_product)),
            articles="\n".join(lines),
        ),
        reply_markup=keyboard,
    )


async def handle_unsubscribe_all_request(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    query = update.callback_query
    if not query or not update.effective_user:
        return

    directory: SqliteSubscriberDirectory = context.bot_data[DIRECTORY_KEY]
    await query.answer()

    if not await directory.has_subscriptions(update.effective_user.id):
        await query.edit_message_text(NO_SUBSCRIPTIONS)
        return

    keyboard = InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(UNSUB_ALL_YES_BUTTON, callback_data=UNSUB_ALL_EXECUTE_CALLBACK)],
            [InlineKeyboardButton(UNSUB_ALL_NO_BUTTON, callback_data=CANCEL_UNSUB_ALL_CALLBACK)],
        ]
    )
    await query.edit_message_text(UNSUB_ALL_CONFIRM, reply_markup=keyboard)


async def handle_unsubscribe_all_confirm(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Remove all subscriptions of the user."""
    query = update.callback_query
    if not query or not update.effective_user or not update.effective_chat:
        return

    directory: SqliteSubscriberDirectory = context.bot_data[DIRECTORY_KEY]
    tracker: MessageTracker = context.bot_data[TRACKER_KEY]

    await query.answer()
    await directory.clear_subscriptions(update.effective_user.id)
    tracker.forget_chat(update.effective_chat.id)
    await query.edit_message_text(UNSUB_ALL_DONE)
    logger.info(f"User {update.effective_user.id} removed all subscriptions")


async def handle_unsubscribe_all_cancel(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    query = update.callback_query
    if not query:
        return

    await query.answer()
    await query.edit_message_text(UNSUB_ALL_CANCELLED)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log unhandled errors and tell the user to retry later."""
    logger.error("Unhandled error while processing update", exc_info=context.error)

    if isinstance(update, Update) and update.effective_chat:
        try:
            await context.bot.send_message(chat_id=update.effective_chat.id, text=GENERIC_ERROR)
        except TelegramError as e:
            logger.error(f"Failed to report error to chat {update.effective_chat.id}: {e}")
