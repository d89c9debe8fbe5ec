import asyncio
import logging
import sys
from typing import Awaitable, Callable, Optional

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.error import TelegramError
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from spending_bot import config
from spending_bot.controller import CATEGORIES, CATEGORY_PREFIX, MAIN_MENU_ROWS, Controller
from spending_bot.db import Storage
from spending_bot.errors import StorageUnavailable, TransportDeliveryError
from spending_bot.models import ButtonClick, Keyboard, Reply, TextMessage
from spending_bot.sessions import SessionStore

logger = logging.getLogger("spending-bot")

Sender = Callable[[int, Reply], Awaitable[None]]


# =========================
# Keyboards
# =========================

def main_menu_markup() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[KeyboardButton(label) for label in row] for row in MAIN_MENU_ROWS],
        resize_keyboard=True,
    )


def categories_markup() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(label, callback_data=f"{CATEGORY_PREFIX}{category}")] for label, category in CATEGORIES]
    )


def markup_for(keyboard: Optional[Keyboard]):
    if keyboard is Keyboard.MAIN_MENU:
        return main_menu_markup()
    if keyboard is Keyboard.CATEGORIES:
        return categories_markup()
    return None


# =========================
# Dispatch
# =========================

class Dispatcher:
    """Feeds events to the controller one owner at a time.

    Events of one owner wait on that owner's lock and are handled in arrival
    order; other owners are not blocked. The controller step runs in a worker
    thread because it makes blocking database calls.
    """

    def __init__(self, controller: Controller, sessions: SessionStore, send: Sender):
        self.controller = controller
        self.sessions = sessions
        self.send = send

    async def dispatch(self, event):
        async with self.sessions.serialized(event.owner_id):
            result = await asyncio.to_thread(self.controller.handle, event)
            if result.error is not None:
                logger.error("Step failed for owner %s: %s", event.owner_id, result.error)
            for reply in result.replies:
                try:
                    await self.send(event.chat_id, reply)
                except TransportDeliveryError as e:
                    logger.error("%s", e)


def telegram_sender(application: Application) -> Sender:
    async def send(chat_id: int, reply: Reply):
        try:
            await application.bot.send_message(chat_id, reply.text, reply_markup=markup_for(reply.keyboard))
        except TelegramError as e:
            raise TransportDeliveryError(chat_id, e) from e

    return send


# =========================
# Handlers
# =========================

async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    msg = update.effective_message
    user = update.effective_user
    if not msg or not user or msg.text is None:
        return

    dispatcher: Dispatcher = context.bot_data["dispatcher"]
    await dispatcher.dispatch(TextMessage(user.id, msg.chat_id, msg.text))


async def on_button(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    if not query:
        return

    try:
        await query.answer()
    except TelegramError as e:
        logger.warning("Could not acknowledge callback %s: %s", query.id, e)

    if not query.message:
        return
    dispatcher: Dispatcher = context.bot_data["dispatcher"]
    chat_id = query.message.chat.id
    await dispatcher.dispatch(ButtonClick(query.from_user.id, chat_id, query.data or ""))


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error("Update handling failed: %s", context.error, exc_info=context.error)


async def post_init(application: Application):
    me = await application.bot.get_me()
    logger.info("Tracker active: %s (@%s)", me.first_name, me.username)


def build_application(token: str, controller: Controller, sessions: SessionStore) -> Application:
    app = (
        Application.builder()
        .token(token)
        .concurrent_updates(True)
        .post_init(post_init)
        .build()
    )
    app.bot_data["dispatcher"] = Dispatcher(controller, sessions, telegram_sender(app))

    app.add_handler(MessageHandler(filters.TEXT & filters.UpdateType.MESSAGE, on_text))
    app.add_handler(CallbackQueryHandler(on_button))
    app.add_error_handler(on_error)
    return app


# =========================
# Entry point
# =========================

def main():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not config.TELEGRAM_BOT_TOKEN or not config.DATABASE_URL:
        raise RuntimeError("Missing TELEGRAM_BOT_TOKEN or DATABASE_URL")

    storage = Storage(config.DATABASE_URL, sslmode=config.DB_SSLMODE)
    try:
        storage.init_schema()
    except StorageUnavailable as e:
        logger.critical("Database is unavailable, refusing to start: %s", e)
        sys.exit(1)

    sessions = SessionStore()
    controller = Controller(storage, sessions, currency=config.CURRENCY_LABEL)
    app = build_application(config.TELEGRAM_BOT_TOKEN, controller, sessions)

    public_url = config.normalize_url(config.PUBLIC_URL)
    if public_url:
        app.run_webhook(
            listen="0.0.0.0",
            port=config.PORT,
            url_path="telegram",
            webhook_url=f"{public_url}/telegram",
        )
    else:
        app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
