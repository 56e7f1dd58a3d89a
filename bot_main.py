"""Telegram bot: command handlers and application wiring.

Behavior:
- /start : Shows usage.
- /track <article> [size ...] : Start tracking a product. Without sizes every size is tracked.
  Tracking an article again replaces the previous subscription (sizes and baseline prices).
- /untrack <article> : Stop tracking a product.
- /list : Show tracked products with the last known prices of the tracked sizes.
- Plain text "<article> [size ...]" behaves like /track.

Storage:
- TrackingStore (persistent_state.py), saved to TRACKING_FILE after each change.

The command logic lives in plain functions (track_product, untrack_product,
render_list) that return the reply text. The async handlers only parse the
update, push the blocking parts (HTTP fetch, file write) to a worker thread
and send the reply. Shared services are kept in ``application.bot_data``.

A repeating JobQueue job runs PriceChecker.run_once every CHECK_INTERVAL seconds.
"""
from __future__ import annotations

import asyncio
import html
import logging
import re
from functools import partial
from typing import Set, Tuple

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from config import Settings, StartupFailure
from fetcher import ProductFetchError, ProductSnapshot, WildberriesClient
from notifier import TelegramNotifier, format_change, format_size_lines
from persistent_state import PersistenceError, TrackedProduct, TrackingStore
from stock_checker import PriceChecker

logger = logging.getLogger(__name__)

ARTICLE_REGEX = re.compile(r"^[0-9]+$")

HELP_TEXT = (
    "Hi! I track prices on Wildberries.\n\n"
    "Commands:\n"
    "<code>/track [article] [size1] [size2]</code> - start tracking a product. "
    "Without sizes all sizes are tracked.\n"
    "<code>/list</code> - show tracked products.\n"
    "<code>/untrack [article]</code> - stop tracking a product.\n\n"
    "You can also just send the article number."
)
TRACK_USAGE = "Specify an article. For example: /track 123456 38 39"
UNTRACK_USAGE = "Specify an article. For example: /untrack 123456"
PERSISTENCE_WARNING = "\n\n⚠️ Your change is active but could not be saved to disk; it may be lost on restart."


class InvalidArgument(ValueError):
    """Bad user input; the message is shown to the user as is."""


# ---------- Command logic ----------
def parse_track_args(text: str) -> Tuple[str, Set[str]]:
    args = (text or "").split()
    if not args:
        raise InvalidArgument(TRACK_USAGE)
    article = args[0]
    if not ARTICLE_REGEX.fullmatch(article):
        raise InvalidArgument("The article must be a number.")
    return article, set(args[1:])


def build_tracked_product(snapshot: ProductSnapshot, requested_sizes: Set[str]) -> TrackedProduct:
    """Baseline every size the catalog returned, out-of-stock sizes included."""
    return TrackedProduct(
        product_name=snapshot.name,
        requested_sizes=set(requested_sizes),
        last_prices={s.name: (s.price if s.in_stock else None) for s in snapshot.sizes},
    )


def track_product(
    store: TrackingStore,
    client: WildberriesClient,
    chat_id: int,
    article: str,
    requested_sizes: Set[str],
    currency: str = "BYN",
) -> str:
    try:
        snapshot = client.fetch(article)
    except ProductFetchError as e:
        logger.info("Track request for %s by chat %s failed: %s", article, chat_id, e)
        return f"Could not get product information: {html.escape(str(e))}"

    item = build_tracked_product(snapshot, requested_sizes)
    name = html.escape(item.product_name)
    if item.tracks_all_sizes:
        lines = [f"Tracking <b>all sizes</b> of <b>{name}</b>\n"]
    else:
        lines = [f"Tracking <b>selected sizes</b> of <b>{name}</b>\n"]
    shown = [s.name for s in snapshot.sizes if item.wants(s.name)]
    lines.extend(format_size_lines(item.last_prices, shown, currency))
    missing = sorted(requested_sizes - set(item.last_prices))
    if missing:
        lines.append("\nNot offered for this product: " + ", ".join(html.escape(s) for s in missing))
    lines.append("\nI'll let you know about changes.")
    reply = "\n".join(lines)

    try:
        store.upsert(chat_id, article, item)
    except PersistenceError as e:
        logger.error("Tracking of %s for chat %s not saved: %s", article, chat_id, e)
        reply += PERSISTENCE_WARNING
    logger.info("Chat %s tracks %s (%d sizes)", chat_id, article, len(item.last_prices))
    return reply


def untrack_product(store: TrackingStore, chat_id: int, text: str) -> str:
    article = (text or "").strip()
    if not article:
        return UNTRACK_USAGE
    try:
        removed = store.remove(chat_id, article)
    except PersistenceError as e:
        logger.error("Removal of %s for chat %s not saved: %s", article, chat_id, e)
        return f"No longer tracking article {html.escape(article)}." + PERSISTENCE_WARNING
    if removed:
        logger.info("Chat %s untracked %s", chat_id, article)
        return f"No longer tracking article {html.escape(article)}."
    return f"You were not tracking article {html.escape(article)}."


def render_list(store: TrackingStore, chat_id: int, currency: str = "BYN") -> str:
    """List tracked products from stored prices; nothing is re-fetched."""
    products = store.get(chat_id)
    if not products:
        return "You are not tracking any products yet."
    lines = ["You are tracking:\n"]
    for article, item in products.items():
        lines.append(f"✅ <b>{html.escape(item.product_name)}</b>\nArticle: <code>{html.escape(article)}</code>")
        sizes = [s for s in item.last_prices if item.wants(s)]
        lines.extend(format_size_lines(item.last_prices, sizes, currency, prefix=" - "))
        lines.append("")
    return "\n".join(lines).rstrip()


# ---------- Handlers ----------
def _settings(context: ContextTypes.DEFAULT_TYPE) -> Settings:
    return context.application.bot_data["settings"]


def _store(context: ContextTypes.DEFAULT_TYPE) -> TrackingStore:
    return context.application.bot_data["store"]


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.effective_message.reply_text(HELP_TEXT, parse_mode=ParseMode.HTML)


async def _handle_track(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str) -> None:
    chat_id = update.effective_chat.id
    try:
        article, sizes = parse_track_args(text)
    except InvalidArgument as e:
        await update.effective_message.reply_text(str(e))
        return
    await update.effective_message.reply_text(f"Checking article {article}…")
    reply = await asyncio.to_thread(
        track_product,
        _store(context),
        context.application.bot_data["client"],
        chat_id,
        article,
        sizes,
        _settings(context).currency_label,
    )
    await update.effective_message.reply_text(reply, parse_mode=ParseMode.HTML)


async def track_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _handle_track(update, context, " ".join(context.args or []))


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.effective_message:
        return
    await _handle_track(update, context, update.effective_message.text or "")


async def untrack_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    reply = await asyncio.to_thread(untrack_product, _store(context), update.effective_chat.id, " ".join(context.args or []))
    await update.effective_message.reply_text(reply, parse_mode=ParseMode.HTML)


async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    reply = render_list(_store(context), update.effective_chat.id, _settings(context).currency_label)
    await update.effective_message.reply_text(reply, parse_mode=ParseMode.HTML)


async def unknown_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.effective_message.reply_text("Unknown command. Use /start for help.")


async def price_check_job(context: ContextTypes.DEFAULT_TYPE) -> None:  # pragma: no cover (time-based)
    checker: PriceChecker = context.application.bot_data["checker"]
    await checker.run_once()


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing update %s", update, exc_info=context.error)


# ---------- App wiring ----------
async def on_startup(app: Application) -> None:  # pragma: no cover
    me = await app.bot.get_me()
    logger.info("Authorized as @%s; %d tracked products loaded", me.username, app.bot_data["store"].count())


def build_application(settings: Settings, store: TrackingStore, client: WildberriesClient) -> Application:
    app = (
        ApplicationBuilder()
        .token(settings.require_token())
        .concurrent_updates(True)
        .post_init(on_startup)
        .build()
    )
    notifier = TelegramNotifier(app.bot)
    checker = PriceChecker(
        store,
        client,
        notifier.send,
        partial(format_change, currency=settings.currency_label),
        request_delay=settings.REQUEST_DELAY,
    )
    app.bot_data.update(settings=settings, store=store, client=client, checker=checker)

    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("track", track_command))
    app.add_handler(CommandHandler("untrack", untrack_command))
    app.add_handler(CommandHandler("list", list_command))
    app.add_handler(MessageHandler(filters.COMMAND, unknown_command))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_error_handler(on_error)

    if app.job_queue is None:
        raise StartupFailure('JobQueue unavailable; install "python-telegram-bot[job-queue]"')
    app.job_queue.run_repeating(
        price_check_job,
        interval=settings.CHECK_INTERVAL,
        first=settings.CHECK_INTERVAL,
        name="price-check",
    )
    return app


__all__ = [
    "InvalidArgument",
    "parse_track_args",
    "build_tracked_product",
    "track_product",
    "untrack_product",
    "render_list",
    "build_application",
]
