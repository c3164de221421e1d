"""Integration tests for bot handlers backed by real SQLite storage.

The catalog and the Telegram API are mocks; the subscriber directory, the
product store and the message tracker are the production components.
"""

import re
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_snapshot
from telegram import Update
from telegram.error import Forbidden
from telegram.ext import CallbackQueryHandler, CommandHandler, MessageHandler

from wb_watcher.bot import handlers
from wb_watcher.bot.handlers import (
    DIRECTORY_KEY,
    FETCHER_KEY,
    STORE_KEY,
    TRACKER_KEY,
    UNSUBSCRIBE_PATTERN,
    error_handler,
    format_subscriptions_count,
    handle_subscribe,
    handle_text,
    handle_unsubscribe_all_confirm,
    handle_unsubscribe_all_request,
    handle_unsubscribe_confirm,
    handle_unsubscribe_request,
    show_subscriptions,
    start,
)
from wb_watcher.bot.messages import (
    ALREADY_SUBSCRIBED,
    GENERIC_ERROR,
    NO_SUBSCRIPTIONS,
    NOT_UNDERSTOOD,
    PRODUCT_NOT_FOUND,
    SIZE_UNAVAILABLE,
    START_MESSAGE,
    SUBSCRIBED,
    SUBSCRIPTIONS_SUMMARY,
    UNSUB_ALL_CONFIRM,
    UNSUB_ALL_DONE,
    UNSUB_CONFIRM,
    UNSUBSCRIBE_CALLBACK,
    UNSUBSCRIBED,
)
from wb_watcher.bot.notifier import MessageTracker
from wb_watcher.config import config
from wb_watcher.core.container import Container
from wb_watcher.main import build_application
from wb_watcher.services.diff import diff_product

USER_ID = 42


def _update(user_id: int = USER_ID, first_name: str | None = "Анна", text: str = ""):
    update = AsyncMock()
    update.message.reply_text = AsyncMock()
    update.message.text = text
    update.effective_user = MagicMock(
        id=user_id, username="anna", first_name=first_name, last_name=None
    )
    update.effective_chat = MagicMock(id=user_id)
    return update


def _callback(data: str, user_id: int = USER_ID):
    update = _update(user_id)
    update.callback_query.data = data
    update.callback_query.answer = AsyncMock()
    update.callback_query.edit_message_text = AsyncMock()
    update.callback_query.edit_message_reply_markup = AsyncMock()
    return update


def _callback_data(markup) -> list[str]:
    return [button.callback_data for row in markup.inline_keyboard for button in row]


@pytest.fixture
def context(subscriber_directory, product_store):
    context = MagicMock()
    context.bot.send_photo = AsyncMock(return_value=MagicMock(message_id=700))
    context.bot.send_message = AsyncMock(return_value=MagicMock(message_id=701))
    context.bot.delete_message = AsyncMock()

    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(return_value=[])

    context.bot_data = {
        DIRECTORY_KEY: subscriber_directory,
        STORE_KEY: product_store,
        FETCHER_KEY: fetcher,
        TRACKER_KEY: MessageTracker(context.bot),
    }
    return context


class TestStartHandler:
    """Test /start registration and greeting."""

    @pytest.mark.asyncio
    async def test_new_user_is_registered_and_greeted(self, subscriber_directory):
        update = _update(42)
        context = MagicMock()
        context.bot_data = {DIRECTORY_KEY: subscriber_directory}

        await start(update, context)

        texts = [c.args[0] for c in update.message.reply_text.await_args_list]
        assert texts == ["Привет, Анна! 👋", START_MESSAGE]
        user = await subscriber_directory.find_by_id(42)
        assert user is not None
        assert user.username == "anna"

    @pytest.mark.asyncio
    async def test_returning_user_gets_short_greeting(self, subscriber_directory):
        await subscriber_directory.ensure_user(42)
        update = _update(42, first_name=None)
        context = MagicMock()
        context.bot_data = {DIRECTORY_KEY: subscriber_directory}

        await start(update, context)

        update.message.reply_text.assert_awaited_once_with("С возвращением, друг! 👋")


class TestApplicationWiring:
    """Test handler registration on the Telegram application."""

    def test_chat_handlers_are_registered(self, monkeypatch):
        monkeypatch.setattr(config.bot, "bot_token", "123:ABC")
        container = Container()
        container.config.from_dict(config.as_dict())

        app = build_application(container)

        registered = app.handlers[0]
        callbacks = {
            h.pattern.pattern: h.callback
            for h in registered
            if isinstance(h, CallbackQueryHandler)
        }
        assert callbacks[UNSUBSCRIBE_PATTERN] is handle_unsubscribe_request
        assert callbacks[handlers.SUBSCRIBE_PATTERN] is handle_subscribe
        assert callbacks[handlers.CONFIRM_UNSUB_PATTERN] is handle_unsubscribe_confirm
        assert len(callbacks) == 7

        commands = {
            command
            for h in registered
            if isinstance(h, CommandHandler)
            for command in h.commands
        }
        assert commands == {"start", "subs"}
        assert any(isinstance(h, MessageHandler) for h in registered)
        assert error_handler in app.error_handlers

    def test_unsubscribe_button_matches_registered_pattern(self):
        data = UNSUBSCRIBE_CALLBACK.format(product_id=12345)

        assert re.match(UNSUBSCRIBE_PATTERN, data)
        assert not re.match(UNSUBSCRIBE_PATTERN, "unsubAllConfirm")


class TestArticleLookup:
    """Test product cards shown for article numbers."""

    @pytest.mark.asyncio
    async def test_first_lookup_saves_product_and_offers_sizes(self, context, product_store):
        context.bot_data[FETCHER_KEY].fetch.return_value = [
            make_snapshot(12345, {1: 120, 2: 90}, image=b"img")
        ]
        update = _update(text=" 12345 ")

        await handle_text(update, context)

        context.bot_data[FETCHER_KEY].fetch.assert_awaited_once_with([12345])
        assert product_store.get_product(12345) is not None

        kwargs = context.bot.send_photo.await_args.kwargs
        assert kwargs["chat_id"] == USER_ID
        assert kwargs["photo"] == b"img"
        assert "Выбери размер" in kwargs["caption"]
        markup = kwargs["reply_markup"]
        assert _callback_data(markup) == ["sub:12345:1", "sub:12345:2"]
        assert markup.inline_keyboard[0][0].text == "size-1 · 120 ₽"
        assert context.bot_data[TRACKER_KEY].get_product_message(USER_ID, 12345) == 700

    @pytest.mark.asyncio
    async def test_followed_product_card_replaces_previous_one(
        self, context, product_store, subscriber_directory
    ):
        product_store.save_product(make_snapshot(12345, {1: 100, 2: 90}))
        fresh = make_snapshot(12345, {1: 120, 2: 90})
        diff = diff_product(
            fresh, product_store.get_product(12345), now=datetime(2026, 3, 5, tzinfo=UTC)
        )
        product_store.apply_changes([diff])
        await subscriber_directory.ensure_user(USER_ID)
        await subscriber_directory.add_subscription(USER_ID, 12345, 1)
        context.bot_data[TRACKER_KEY].track_product(USER_ID, 12345, 650)
        context.bot_data[FETCHER_KEY].fetch.return_value = [fresh]

        await handle_text(_update(text="12345"), context)

        context.bot.delete_message.assert_awaited_once_with(chat_id=USER_ID, message_id=650)
        kwargs = context.bot.send_message.await_args.kwargs
        assert "Последнее изменение: size-1 100 ₽ → 120 ₽ (05.03.2026)" in kwargs["text"]
        assert "✅ Ты следишь за: size-1" in kwargs["text"]
        assert kwargs["reply_markup"].inline_keyboard[0][0].text == "✅ size-1 · 120 ₽"
        assert _callback_data(kwargs["reply_markup"])[-1] == "unsub:12345"
        assert context.bot_data[TRACKER_KEY].get_product_message(USER_ID, 12345) == 701

    @pytest.mark.asyncio
    async def test_unknown_article(self, context, product_store):
        await handle_text(_update(text="777"), context)

        context.bot.send_message.assert_awaited_once_with(chat_id=USER_ID, text=PRODUCT_NOT_FOUND)
        assert product_store.get_product(777) is None

    @pytest.mark.asyncio
    async def test_non_numeric_text(self, context):
        update = _update(text="хочу футболку")

        await handle_text(update, context)

        update.message.reply_text.assert_awaited_once_with(NOT_UNDERSTOOD)
        context.bot_data[FETCHER_KEY].fetch.assert_not_awaited()


class TestSubscribe:
    """Test subscribing to a size from the card keyboard."""

    @pytest.mark.asyncio
    async def test_subscribe_to_size(self, context, product_store, subscriber_directory):
        product_store.save_product(make_snapshot(12345, {1: 120, 2: 90}))
        update = _callback("sub:12345:1")

        await handle_subscribe(update, context)

        subs = await subscriber_directory.get_subscriptions(USER_ID)
        assert [(s.product_id, s.option_id) for s in subs] == [(12345, 1)]
        update.callback_query.answer.assert_awaited_once_with(
            SUBSCRIBED.format(product_id=12345, label="size-1")
        )
        markup = update.callback_query.edit_message_reply_markup.await_args.kwargs["reply_markup"]
        assert _callback_data(markup)[-1] == "unsub:12345"
        assert await subscriber_directory.list_subscribed_products() == [12345]

    @pytest.mark.asyncio
    async def test_repeated_subscribe(self, context, product_store, subscriber_directory):
        product_store.save_product(make_snapshot(12345, {1: 120}))
        await subscriber_directory.ensure_user(USER_ID)
        await subscriber_directory.add_subscription(USER_ID, 12345, 1)
        update = _callback("sub:12345:1")

        await handle_subscribe(update, context)

        update.callback_query.answer.assert_awaited_once_with(ALREADY_SUBSCRIBED)
        assert len(await subscriber_directory.get_subscriptions(USER_ID)) == 1

    @pytest.mark.asyncio
    async def test_unknown_size(self, context, product_store, subscriber_directory):
        product_store.save_product(make_snapshot(12345, {1: 120}))
        update = _callback("sub:12345:9")

        await handle_subscribe(update, context)

        update.callback_query.answer.assert_awaited_once_with(SIZE_UNAVAILABLE)
        assert await subscriber_directory.get_subscriptions(USER_ID) == []


class TestUnsubscribe:
    """Test unsubscribing from a single product."""

    @pytest.mark.asyncio
    async def test_unsubscribe_button_asks_for_confirmation(self, context):
        update = _callback("unsub:12345")

        await handle_unsubscribe_request(update, context)

        update.callback_query.answer.assert_awaited_once()
        kwargs = context.bot.send_message.await_args.kwargs
        assert kwargs["text"] == UNSUB_CONFIRM.format(product_id=12345)
        assert _callback_data(kwargs["reply_markup"]) == ["confirmUnsub:12345", "cancelUnsub"]

    @pytest.mark.asyncio
    async def test_confirmed_unsubscribe(self, context, subscriber_directory):
        await subscriber_directory.ensure_user(USER_ID)
        await subscriber_directory.add_subscription(USER_ID, 12345, 1)
        await subscriber_directory.add_subscription(USER_ID, 12345, 2)
        await subscriber_directory.add_subscription(USER_ID, 999, 7)
        context.bot_data[TRACKER_KEY].track_product(USER_ID, 12345, 650)
        update = _callback("confirmUnsub:12345")

        await handle_unsubscribe_confirm(update, context)

        subs = await subscriber_directory.get_subscriptions(USER_ID)
        assert [(s.product_id, s.option_id) for s in subs] == [(999, 7)]
        context.bot.delete_message.assert_awaited_once_with(chat_id=USER_ID, message_id=650)
        update.callback_query.answer.assert_awaited_once()
        update.callback_query.edit_message_text.assert_awaited_once_with(
            UNSUBSCRIBED.format(product_id=12345)
        )


class TestSubscriptionList:
    """Test /subs listing and unsubscribing from everything."""

    @pytest.mark.asyncio
    async def test_lists_subscriptions_grouped_by_product(
        self, context, product_store, subscriber_directory
    ):
        product_store.save_product(make_snapshot(12345, {1: 120, 2: 90}))
        await subscriber_directory.ensure_user(USER_ID)
        await subscriber_directory.add_subscription(USER_ID, 12345, 1)
        await subscriber_directory.add_subscription(USER_ID, 12345, 2)
        await subscriber_directory.add_subscription(USER_ID, 999, 7)
        update = _update()

        await show_subscriptions(update, context)

        call = update.message.reply_text.await_args
        assert call.args[0] == SUBSCRIPTIONS_SUMMARY.format(
            count="2 подписки",
            articles="• 12345 (Product 12345): size-1, size-2\n• 999: 7",
        )
        assert _callback_data(call.kwargs["reply_markup"]) == ["unsubAllConfirm"]

    @pytest.mark.asyncio
    async def test_empty_list(self, context):
        update = _update()

        await show_subscriptions(update, context)

        update.message.reply_text.assert_awaited_once_with(NO_SUBSCRIPTIONS)

    @pytest.mark.asyncio
    async def test_unsubscribe_all_asks_for_confirmation(self, context, subscriber_directory):
        await subscriber_directory.ensure_user(USER_ID)
        await subscriber_directory.add_subscription(USER_ID, 12345, 1)
        update = _callback("unsubAllConfirm")

        await handle_unsubscribe_all_request(update, context)

        call = update.callback_query.edit_message_text.await_args
        assert call.args[0] == UNSUB_ALL_CONFIRM
        assert _callback_data(call.kwargs["reply_markup"]) == [
            "unsubAllExecute",
            "cancelUnsubAll",
        ]

    @pytest.mark.asyncio
    async def test_unsubscribe_all_without_subscriptions(self, context):
        update = _callback("unsubAllConfirm")

        await handle_unsubscribe_all_request(update, context)

        update.callback_query.edit_message_text.assert_awaited_once_with(NO_SUBSCRIPTIONS)

    @pytest.mark.asyncio
    async def test_unsubscribe_all(self, context, subscriber_directory):
        await subscriber_directory.ensure_user(USER_ID)
        await subscriber_directory.add_subscription(USER_ID, 12345, 1)
        await subscriber_directory.add_subscription(USER_ID, 999, 7)
        context.bot_data[TRACKER_KEY].track_product(USER_ID, 12345, 650)
        update = _callback("unsubAllExecute")

        await handle_unsubscribe_all_confirm(update, context)

        assert await subscriber_directory.list_subscribed_products() == []
        assert context.bot_data[TRACKER_KEY].get_product_message(USER_ID, 12345) is None
        update.callback_query.answer.assert_awaited_once()
        update.callback_query.edit_message_text.assert_awaited_once_with(UNSUB_ALL_DONE)


@pytest.mark.parametrize(
    "count,expected",
    [
        (1, "1 подписка"),
        (3, "3 подписки"),
        (5, "5 подписок"),
        (11, "11 подписок"),
        (21, "21 подписка"),
        (112, "112 подписок"),
    ],
)
def test_format_subscriptions_count(count, expected):
    assert format_subscriptions_count(count) == expected


class TestErrorHandler:
    """Test the application-wide error handler."""

    @pytest.mark.asyncio
    async def test_user_is_told_to_retry(self):
        update = MagicMock(spec=Update)
        update.effective_chat = MagicMock(id=USER_ID)
        context = MagicMock()
        context.error = RuntimeError("boom")
        context.bot.send_message = AsyncMock()

        await error_handler(update, context)

        context.bot.send_message.assert_awaited_once_with(chat_id=USER_ID, text=GENERIC_ERROR)

    @pytest.mark.asyncio
    async def test_failed_error_report_is_logged(self):
        update = MagicMock(spec=Update)
        update.effective_chat = MagicMock(id=USER_ID)
        context = MagicMock()
        context.error = RuntimeError("boom")
        context.bot.send_message = AsyncMock(side_effect=Forbidden("bot was blocked by the user"))

        await error_handler(update, context)

        context.bot.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_errors_without_update_are_only_logged(self):
        context = MagicMock()
        context.error = RuntimeError("boom")
        context.bot.send_message = AsyncMock()

        await error_handler(None, context)

        context.bot.send_message.assert_not_awaited()
