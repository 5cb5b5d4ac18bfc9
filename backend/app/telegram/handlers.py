"""
Telegram Handlers — thin shell over the Orchestrator.

================================================================================
FLOW
================================================================================

Text message:
1. Fresh catalog snapshot for the bound shop (SHOP_ID / CATALOG_API_TOKEN)
2. Orchestrator.handle_message in a worker thread, streaming into the chat
3. Result rendered with a keyboard when a choice or confirmation is pending

Buttons (callback_data):
- ai_select:<id>            pick one of the similar products
- ai_cancel                 drop the pending question ('◀️ Назад')
- bulk_prices_confirm       apply the previewed bulk price change
- bulk_prices_cancel        drop it
- confirm_bulk_delete_all   delete the whole catalog

Every chat is one session: tg_<chat_id>.
================================================================================
"""
import asyncio
import logging
from typing import List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import ContextTypes

from app.agent.orchestrator import get_orchestrator, load_command_context
from app.core.config import settings
from app.core.exceptions import CatalogAPIError
from app.schemas.command import CommandContext, CommandResult
from app.schemas.session import PendingKind
from app.telegram.transport import TelegramStreamTransport

logger = logging.getLogger(__name__)

CATALOG_UNAVAILABLE_MESSAGE = "⚠️ Каталог сейчас недоступен. Попробуйте через минуту."
NOT_CONFIGURED_MESSAGE = "❌ Магазин не настроен. Укажите SHOP_ID и CATALOG_API_TOKEN."

CALLBACK_SELECT_PREFIX = "ai_select:"
CALLBACK_CANCEL = "ai_cancel"
CALLBACK_BULK_PRICES_CONFIRM = "bulk_prices_confirm"
CALLBACK_BULK_PRICES_CANCEL = "bulk_prices_cancel"
CALLBACK_DELETE_ALL_CONFIRM = "confirm_bulk_delete_all"


def session_id_for_chat(chat_id: int) -> str:
    return f"tg_{chat_id}"


# ==============================================================================
# KEYBOARDS
# ==============================================================================

def clarification_keyboard(result: CommandResult) -> InlineKeyboardMarkup:
    rows: List[List[InlineKeyboardButton]] = [
        [InlineKeyboardButton(f"{option.name} (${option.price:.2f})", callback_data=f"{CALLBACK_SELECT_PREFIX}{option.id}")]
        for option in result.options
    ]
    rows.append([InlineKeyboardButton("◀️ Назад", callback_data=CALLBACK_CANCEL)])
    return InlineKeyboardMarkup(rows)


def confirmation_keyboard(result: CommandResult) -> InlineKeyboardMarkup:
    kind = (result.data or {}).get("kind") or result.operation
    if kind == PendingKind.BULK_DELETE_ALL.value:
        return InlineKeyboardMarkup([[
            InlineKeyboardButton("🗑 Да, удалить всё", callback_data=CALLBACK_DELETE_ALL_CONFIRM),
            InlineKeyboardButton("❌ Отмена", callback_data=CALLBACK_CANCEL),
        ]])
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ Применить", callback_data=CALLBACK_BULK_PRICES_CONFIRM),
        InlineKeyboardButton("❌ Отмена", callback_data=CALLBACK_BULK_PRICES_CANCEL),
    ]])


def keyboard_for(result: CommandResult) -> Optional[InlineKeyboardMarkup]:
    if result.needs_clarification and result.options:
        return clarification_keyboard(result)
    if result.needs_confirmation:
        return confirmation_keyboard(result)
    return None


# ==============================================================================
# HELPERS
# ==============================================================================

def _shop_configured() -> bool:
    return bool(settings.SHOP_ID and settings.CATALOG_API_TOKEN)


async def _load_context() -> Optional[CommandContext]:
    """Catalog snapshot for the bound shop, or None when the service failed."""
    try:
        return await asyncio.to_thread(
            load_command_context, settings.SHOP_ID, settings.SHOP_NAME, settings.CATALOG_API_TOKEN
        )
    except CatalogAPIError as e:
        logger.error(f"[Telegram] Catalog snapshot failed: {e}")
        return None


# ==============================================================================
# COMMAND HANDLERS
# ==============================================================================

async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start: short usage guide."""
    await update.message.reply_text(
        f"👋 Я помощник магазина {settings.SHOP_NAME}.\n\n"
        "Пишите команды обычным текстом:\n"
        "• 'добавь хлеб за 2.5$'\n"
        "• 'скидка 20% на молоко на неделю'\n"
        "• 'остаток сыра 50 шт'\n"
        "• 'покажи все товары'\n\n"
        "/reset — начать разговор заново"
    )


async def handle_reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reset: forget history and pending operations for this chat."""
    chat_id = update.effective_chat.id
    result = await asyncio.to_thread(get_orchestrator().reset_session, session_id_for_chat(chat_id))
    await update.message.reply_text(result.message)


# ==============================================================================
# MAIN MESSAGE HANDLER
# ==============================================================================

async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.text:
        return

    chat_id = update.effective_chat.id if update.effective_chat else None
    if chat_id is None:
        return

    if not _shop_configured():
        await update.message.reply_text(NOT_CONFIGURED_MESSAGE)
        return

    session_id = session_id_for_chat(chat_id)
    logger.info(f"[Telegram] Message in session {session_id} ({len(update.message.text)} chars)")

    command_context = await _load_context()
    if command_context is None:
        await update.message.reply_text(CATALOG_UNAVAILABLE_MESSAGE)
        return

    transport = TelegramStreamTransport(context.bot, chat_id, asyncio.get_running_loop())
    result = await asyncio.to_thread(
        get_orchestrator().handle_message, session_id, update.message.text, command_context, transport
    )

    if result.ignored or result.streamed:
        return
    await update.message.reply_text(result.message, reply_markup=keyboard_for(result))


# ==============================================================================
# CALLBACK HANDLER
# ==============================================================================

async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None or not query.data:
        return
    await query.answer()

    chat_id = query.message.chat_id
    session_id = session_id_for_chat(chat_id)
    data = query.data
    orchestrator = get_orchestrator()
    logger.info(f"[Telegram] Button {data} in session {session_id}")

    if data in (CALLBACK_CANCEL, CALLBACK_BULK_PRICES_CANCEL):
        result = await asyncio.to_thread(orchestrator.handle_cancel, session_id)
        await query.edit_message_text(result.message)
        return

    if not _shop_configured():
        await query.edit_message_text(NOT_CONFIGURED_MESSAGE)
        return

    command_context = await _load_context()
    if command_context is None:
        await query.edit_message_text(CATALOG_UNAVAILABLE_MESSAGE)
        return

    if data.startswith(CALLBACK_SELECT_PREFIX):
        try:
            product_id = int(data[len(CALLBACK_SELECT_PREFIX):])
        except ValueError:
            logger.warning(f"[Telegram] Malformed selection callback: {data}")
            return
        result = await asyncio.to_thread(orchestrator.handle_selection, session_id, product_id, command_context)
    elif data == CALLBACK_BULK_PRICES_CONFIRM:
        result = await asyncio.to_thread(orchestrator.execute_bulk_price_update, session_id, command_context)
    elif data == CALLBACK_DELETE_ALL_CONFIRM:
        result = await asyncio.to_thread(
            orchestrator.handle_confirmation, session_id, command_context, PendingKind.BULK_DELETE_ALL
        )
    else:
        logger.warning(f"[Telegram] Unknown callback: {data}")
        return

    await query.edit_message_text(result.message, reply_markup=keyboard_for(result))
