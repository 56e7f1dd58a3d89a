"""Telegram notification helper and message formatting.

Uses python-telegram-bot >= 20 (async based). Messages are sent with HTML
parse mode; product names are escaped before they go into markup.

Delivery is fire-and-forget: a failed send is logged and dropped.
"""
from __future__ import annotations

import html
import logging
from decimal import Decimal
from typing import Dict, Iterable

from telegram import Bot, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import TelegramError

from persistent_state import TrackedProduct
from stock_checker import ChangeKind, SizeChange

logger = logging.getLogger(__name__)


def format_price(price: Decimal | None, currency: str = "BYN") -> str:
    if price is None:
        return "out of stock"
    return f"{price:.2f} {currency}"


def _size_label(size_name: str) -> str:
    return html.escape(size_name) if size_name else "one size"


def _header(item: TrackedProduct, product_id: str, size_name: str) -> str:
    return (
        f"Product: <b>{html.escape(item.product_name)}</b>\n"
        f"Article: <code>{html.escape(product_id)}</code>\n"
        f"Size: <b>{_size_label(size_name)}</b>"
    )


def format_change(item: TrackedProduct, product_id: str, change: SizeChange, currency: str = "BYN") -> str:
    """Render a notification for a size transition."""
    header = _header(item, product_id, change.size_name)
    if change.kind is ChangeKind.STOCKOUT:
        return f"<b>Sold out</b> 😱\n\n{header}"
    if change.kind is ChangeKind.RESTOCKED:
        return (
            f"<b>Back in stock!</b> ✅\n\n{header}\n\n"
            f"New price: <code>{format_price(change.new_price, currency)}</code>"
        )
    if change.kind is ChangeKind.PRICE_DROP:
        return (
            f"❗️<b>Price drop!</b>\n\n{header}\n\n"
            f"Old price: <code>{format_price(change.old_price, currency)}</code>\n"
            f"New price: <code>{format_price(change.new_price, currency)}</code>"
        )
    raise ValueError(f"no notification for {change.kind.value} changes")


def format_size_lines(prices: Dict[str, Decimal | None], sizes: Iterable[str], currency: str = "BYN", prefix: str = "") -> list[str]:
    lines = []
    for size_name in sizes:
        price = prices.get(size_name)
        lines.append(f"{prefix}Size <b>{_size_label(size_name)}</b>: <code>{format_price(price, currency)}</code>")
    return lines


class TelegramNotifier:
    """Sends messages to individual chats through an existing Bot."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, chat_id: int, text: str) -> None:
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )
            logger.debug("Sent Telegram message to %s", chat_id)
        except TelegramError as e:  # pragma: no cover - network/telegram errors
            logger.error("Error sending Telegram message to %s: %s", chat_id, e)


__all__ = ["TelegramNotifier", "format_change", "format_price", "format_size_lines"]
