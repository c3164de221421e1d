"""Telegram bot message templates and constants.

Contains all user-facing message templates in Russian. Centralizes message
management for easy localization and consistent notifications.
"""

START_MESSAGE = (
    "Я бот для отслеживания цен на товары Wildberries.\n"
    "Что я умею:\n"
    "— Показывать карточку товара по артикулу\n"
    "— Подписывать тебя на изменения цены\n"
    "— Уведомлять, когда цена изменилась 📉📈\n\n"
    "Пришли артикул, чтобы начать. Твои подписки: /subs"
)
GREETING_NEW = "Привет, {name}! 👋"
GREETING_BACK = "С возвращением, {name}! 👋"
DEFAULT_NAME = "друг"

# Price change notification
PRICE_CHANGE_HEADER = "💰 Цена изменилась"
PRICE_DROP_LINE = "📉 {label}: {prev_price} ₽ → {current_price} ₽"
PRICE_RISE_LINE = "📈 {label}: {prev_price} ₽ → {current_price} ₽"
NO_LABEL = "без размера"

# Product card
CARD_TITLE_LINE = "{brand} / {name}"
CARD_RATING_LINE = "⭐ {rating} ({feedbacks} отзывов)"
CARD_SUPPLIER_LINE = "Продавец: {supplier}"
CARD_LINK_LINE = "{link}"

UNSUBSCRIBE_BUTTON = "❌ Отписаться"
UNSUBSCRIBE_CALLBACK = "unsub:{product_id}"

# Telegram caption limit for photos
CAPTION_LIMIT = 1024

# Product card details
CARD_PRICE_LINE = "💰 Цена: {price} ₽"
CARD_PRICE_FROM_LINE = "💰 Цена: от {price} ₽"
CARD_ARTICLE_LINE = "🔢 Артикул: {product_id}"
CARD_IN_STOCK_LINE = "📦 В наличии: {stock} шт."
CARD_OUT_OF_STOCK_LINE = "❌ Нет в наличии"
CARD_CHOOSE_SIZE = "Выбери размер, за ценой которого следить 👇"
CARD_FOLLOWING = "✅ Ты следишь за: {labels}"
CARD_LAST_CHANGE = "🕓 Последнее изменение: {label} {prev_price} ₽ → {current_price} ₽ ({date})"

# Article lookup
NOT_UNDERSTOOD = "К сожалению, я тебя не понял. Пришли артикул товара цифрами"
PRODUCT_NOT_FOUND = "Товар не найден"

# Subscribe
SIZE_BUTTON = "{label} · {price} ₽"
SIZE_FOLLOWED_BUTTON = "✅ {label} · {price} ₽"
SUBSCRIBE_CALLBACK = "sub:{product_id}:{option_id}"
SUBSCRIBED = "Теперь я слежу за ценой товара {product_id} ({label}) 👀"
ALREADY_SUBSCRIBED = "Ты уже следишь за этим размером"
SIZE_UNAVAILABLE = "Этот размер больше не найден, пришли артикул ещё раз"

# Unsubscribe from one product
UNSUB_CONFIRM = "Ты уверен, что хочешь отписаться от товара {product_id}?"
YES_BUTTON = "✅ Да"
NO_BUTTON = "❌ Нет"
CONFIRM_UNSUB_CALLBACK = "confirmUnsub:{product_id}"
CANCEL_UNSUB_CALLBACK = "cancelUnsub"
UNSUBSCRIBED = "Ты отписался от товара {product_id} ❌"
UNSUB_CANCELLED = "Хорошо 👍 Подписка осталась без изменений"

# Subscription list
NO_SUBSCRIPTIONS = "У тебя пока нет подписок 📭"
SUBSCRIPTIONS_SUMMARY = "📋 У тебя {count}.\n\n{articles}"
SUBSCRIPTION_LINE = "• {product_id}: {labels}"
SUBSCRIPTION_NAMED_LINE = "• {product_id} ({name}): {labels}"
SUBSCRIPTION_WORDS = ("подписка", "подписки", "подписок")

# Unsubscribe from everything
UNSUB_ALL_BUTTON = "❌ Отписаться от всех"
UNSUB_ALL_CONFIRM_CALLBACK = "unsubAllConfirm"
UNSUB_ALL_CONFIRM = (
    "⚠️ Ты уверен? Это удалит все твои подписки, и я перестану присылать обновления.\n\n"
    "Выбери действие:"
)
UNSUB_ALL_YES_BUTTON = "✅ Да, я всё понимаю, удалить все"
UNSUB_ALL_EXECUTE_CALLBACK = "unsubAllExecute"
UNSUB_ALL_NO_BUTTON = "❌ Я передумал, оставить подписки"
CANCEL_UNSUB_ALL_CALLBACK = "cancelUnsubAll"
UNSUB_ALL_DONE = "Все твои подписки удалены ❌"
UNSUB_ALL_CANCELLED = "Хорошо 👍 Подписки остались без изменений"

GENERIC_ERROR = "⚠️ Ошибка, попробуй чуть позже"
