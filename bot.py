import asyncio
import html
import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, MessageOrigin, Update
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from card_pipeline import build_card_async, extract_palette
from card_style import FONT_FAMILIES, MODELS
from config import settings
from errors import CardError
from sessions import CONFIGURING as STEP_CONFIGURING
from sessions import GENERATING, WAITING_PROMPT, SessionStore

logger = logging.getLogger(__name__)

# Conversation states
WAITING_FOR_IMAGE = 1
WAITING_FOR_PROMPT = 2
CONFIGURING = 3

CARD_FILENAME = "promthubs-card.png"
PROMPT_PREVIEW_CHARS = 50
SESSION_CLEANUP_INTERVAL = 5 * 60

FONT_LABELS = {"mono": "Mono", "sans": "Sans", "serif": "Serif"}
MODEL_LABELS = {"Gemini": "Gemini", "GPT-4": "GPT-4", "None": "Yok"}

WELCOME_MESSAGE = """🎨 <b>PromtHubs Card Creator</b>'a hoş geldiniz!

Bu bot ile görsellerinizden profesyonel prompt kartları oluşturabilirsiniz.

<b>Nasıl Kullanılır:</b>
1️⃣ Bana bir görsel gönderin
2️⃣ Prompt metninizi yazın
3️⃣ Stilleri ayarlayın
4️⃣ Kartınızı indirin!

📷 <b>Hemen bir görsel göndererek başlayın!</b>"""

HELP_MESSAGE = """📖 <b>Yardım Menüsü</b>

<b>Komutlar:</b>
/start - Botu başlat
/yeni - Yeni kart oluştur
/cancel - İşlemi iptal et
/help - Bu menü

<b>Kullanım:</b>
• Görsel gönderin (fotoğraf veya dosya olarak)
• Prompt metninizi yazın
• Renk, font ve model seçin
• "✨ Kartı Oluştur" butonuna basın

<b>Stiller:</b>
• 🎨 Renk: Görselinizden çıkarılan 5 renk
• 🔤 Font: Mono, Sans, Serif
• 🤖 Model: Gemini, GPT-4, Yok
• 🖼 Çerçeve: Açık/Kapalı"""

GENERATION_FAILED_MESSAGE = "❌ Kart oluşturulurken hata oluştu.\n\n/yeni ile tekrar deneyin."

sessions = SessionStore(ttl=settings.SESSION_TTL)


class _ChannelForwardFilter(filters.MessageFilter):
    """Messages forwarded from a channel."""

    def filter(self, message):
        origin = message.forward_origin
        return origin is not None and origin.type == MessageOrigin.CHANNEL


CHANNEL_FORWARD = _ChannelForwardFilter(name="channel_forward")


def _mark(selected: bool, label: str) -> str:
    return f"✓ {label}" if selected else label


def build_config_keyboard(session) -> InlineKeyboardMarkup:
    """Inline settings menu with the current choice of each group ticked."""
    current = session.settings
    colors = [
        InlineKeyboardButton(_mark(current.get("themeColor") == s.color, s.label), callback_data=f"color:{s.color}")
        for s in session.palette
    ]
    fonts = [
        InlineKeyboardButton(_mark(current.get("fontFamily") == f, FONT_LABELS[f]), callback_data=f"font:{f}")
        for f in FONT_FAMILIES
    ]
    models = [
        InlineKeyboardButton(_mark(current.get("model") == m, MODEL_LABELS[m]), callback_data=f"model:{m}")
        for m in MODELS
    ]
    border_on = bool(current.get("showBorder"))
    rows = [
        colors[:3],
        colors[3:],
        fonts,
        models,
        [
            InlineKeyboardButton(_mark(border_on, "Çerçeve Açık"), callback_data="border:on"),
            InlineKeyboardButton(_mark(not border_on, "Çerçeve Kapalı"), callback_data="border:off"),
        ],
        [
            InlineKeyboardButton("❌ İptal", callback_data="cancel"),
            InlineKeyboardButton("✨ Kartı Oluştur", callback_data="generate"),
        ],
    ]
    return InlineKeyboardMarkup([row for row in rows if row])


def build_config_text(session) -> str:
    current = session.settings
    prompt = session.prompt_text
    preview = prompt[:PROMPT_PREVIEW_CHARS] + ("..." if len(prompt) > PROMPT_PREVIEW_CHARS else "")
    return (
        "⚙️ <b>Kart Ayarları</b>\n\n"
        f"📝 <b>Prompt:</b> {html.escape(preview)}\n\n"
        f"🎨 <b>Renk:</b> {current.get('themeColor')}\n"
        f"🔤 <b>Font:</b> {current.get('fontFamily')}\n"
        f"🤖 <b>Model:</b> {MODEL_LABELS.get(current.get('model'), current.get('model'))}\n"
        f"🖼 <b>Çerçeve:</b> {'Açık' if current.get('showBorder') else 'Kapalı'}\n\n"
        "Ayarları değiştirmek için aşağıdaki butonları kullanın:"
    )


# Telegram bot handlers
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start command"""
    logger.info(f"Received /start command from user {update.effective_user.id}")
    sessions.reset(update.effective_chat.id)
    await update.message.reply_text(WELCOME_MESSAGE, parse_mode=ParseMode.HTML)
    return WAITING_FOR_IMAGE


async def new_card(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /yeni command: drop the current card and start over"""
    logger.info(f"Received /yeni command from user {update.effective_user.id}")
    sessions.reset(update.effective_chat.id)
    await update.message.reply_text("🆕 Yeni kart için hazırım!\n\n📷 Lütfen bir görsel gönderin.")
    return WAITING_FOR_IMAGE


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help command"""
    await update.message.reply_text(HELP_MESSAGE, parse_mode=ParseMode.HTML)


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Cancel the conversation"""
    sessions.reset(update.effective_chat.id)
    await update.message.reply_text("❌ İptal edildi. /yeni ile tekrar başlayabilirsiniz.")
    return ConversationHandler.END


async def handle_image(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle image upload (both photos and image documents)"""
    message = update.message
    chat_id = update.effective_chat.id
    if message.photo:
        file = await context.bot.get_file(message.photo[-1].file_id)
    elif message.document and (message.document.mime_type or "").startswith("image/"):
        file = await context.bot.get_file(message.document.file_id)
    else:
        await message.reply_text("❌ Lütfen bir görsel gönderin.")
        return WAITING_FOR_IMAGE

    await message.reply_text("⏳ Görsel işleniyor...")
    image_bytes = bytes(await file.download_as_bytearray())
    palette = await asyncio.to_thread(extract_palette, image_bytes)
    logger.info(f"Chat {chat_id}: stored {len(image_bytes)} byte image, {len(palette)} colors")

    session = sessions.reset(chat_id)
    session.image_bytes = image_bytes
    session.palette = palette
    session.step = WAITING_PROMPT

    color_info = "\n".join(f"{i}. {s.label}: {s.color}" for i, s in enumerate(palette, start=1))
    await message.reply_text(
        f"✅ Görsel kaydedildi!\n\n🎨 <b>Bulunan Renkler:</b>\n{color_info}\n\n📝 Şimdi <b>prompt metnini</b> yazın:",
        parse_mode=ParseMode.HTML,
    )
    return WAITING_FOR_PROMPT


async def handle_prompt(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Store the prompt text and show the settings menu"""
    chat_id = update.effective_chat.id
    session = sessions.get(chat_id)
    if session.image_bytes is None:
        await update.message.reply_text("📷 Lütfen önce bir görsel gönderin!")
        return WAITING_FOR_IMAGE

    session.prompt_text = update.message.text
    session.step = STEP_CONFIGURING
    await update.message.reply_text(
        build_config_text(session), parse_mode=ParseMode.HTML, reply_markup=build_config_keyboard(session)
    )
    return CONFIGURING


async def _refresh_menu(query, session):
    try:
        await query.edit_message_text(
            build_config_text(session), parse_mode=ParseMode.HTML, reply_markup=build_config_keyboard(session)
        )
    except BadRequest as e:
        # Re-selecting the current option leaves the message unchanged
        logger.debug(f"Menu not refreshed: {e}")


async def handle_menu(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle inline settings buttons"""
    query = update.callback_query
    chat_id = update.effective_chat.id
    session = sessions.get(chat_id)
    action, _, value = (query.data or "").partition(":")

    if session.image_bytes is None:
        await query.answer("⌛ Oturum sona erdi")
        await query.edit_message_text("⌛ Oturum sona erdi. /yeni ile tekrar başlayın.")
        return ConversationHandler.END

    if session.step == GENERATING:
        await query.answer("⏳ Kart zaten oluşturuluyor...")
        return None

    if action == "color" and value in {s.color for s in session.palette}:
        sessions.update_settings(chat_id, themeColor=value)
        await query.answer(f"🎨 Renk: {value}")
    elif action == "font" and value in FONT_FAMILIES:
        sessions.update_settings(chat_id, fontFamily=value)
        await query.answer(f"🔤 Font: {value}")
    elif action == "model" and value in MODELS:
        sessions.update_settings(chat_id, model=value)
        await query.answer(f"🤖 Model: {value}")
    elif action == "border" and value in ("on", "off"):
        sessions.update_settings(chat_id, showBorder=value == "on")
        await query.answer(f"🖼 Çerçeve: {'Açık' if value == 'on' else 'Kapalı'}")
    elif action == "generate":
        await query.answer("⏳ Kart oluşturuluyor...")
        return await generate_card(query, chat_id, session)
    elif action == "cancel":
        await query.answer("❌ İptal edildi")
        sessions.reset(chat_id)
        await query.edit_message_text("❌ İptal edildi. /yeni ile tekrar başlayabilirsiniz.")
        return ConversationHandler.END
    else:
        logger.warning(f"Chat {chat_id}: ignoring unknown callback data {query.data!r}")
        await query.answer("❌ Geçersiz seçim")
        return CONFIGURING

    await _refresh_menu(query, session)
    return CONFIGURING


async def generate_card(query, chat_id, session):
    """Render the card at export scale and send it back as a lossless document"""
    session.step = GENERATING
    width, height = settings.CARD_WIDTH * settings.EXPORT_SCALE, settings.CARD_HEIGHT * settings.EXPORT_SCALE
    try:
        await query.edit_message_text("⏳ Kartınız oluşturuluyor...")
        card = await build_card_async(session.image_bytes, session.to_style(), scale=settings.EXPORT_SCALE)
        await query.message.reply_document(
            document=card,
            filename=CARD_FILENAME,
            caption=(
                "✨ <b>Kartınız hazır!</b> (4K Kalite)\n\n"
                f"📐 Boyut: {width}x{height} piksel\n"
                "/yeni ile başka bir kart oluşturabilirsiniz."
            ),
            parse_mode=ParseMode.HTML,
        )
    except (CardError, asyncio.TimeoutError, TelegramError) as e:
        logger.error(f"Chat {chat_id}: card generation failed: {e}")
        await query.message.reply_text(GENERATION_FAILED_MESSAGE)
        return ConversationHandler.END
    finally:
        # A failed send must not leave the chat stuck in the generating step
        sessions.reset(chat_id)

    try:
        await query.message.delete()
    except BadRequest as e:
        logger.debug(f"Could not delete settings menu: {e}")
    logger.info(f"Chat {chat_id}: sent {len(card)} byte card")
    return ConversationHandler.END


async def handle_channel_forward(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Reply with the id of the channel a message was forwarded from"""
    chat = update.message.forward_origin.chat
    logger.info(f"Channel detected (forwarded): {chat.title} ({chat.id})")
    await update.message.reply_text(f"✅ Kanal Algılandı: {chat.title} (ID: {chat.id})")


async def log_channel_post(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat = update.effective_chat
    logger.info(f"Channel post in {chat.title} ({chat.id})")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error("Unhandled error while processing update", exc_info=context.error)


async def _cleanup_sessions(context: ContextTypes.DEFAULT_TYPE):
    sessions.cleanup()


def build_application(token: str) -> Application:
    """Build the bot application with every handler registered"""
    application = ApplicationBuilder().token(token).build()

    image_filter = filters.PHOTO | filters.Document.IMAGE
    text_filter = filters.TEXT & ~filters.COMMAND
    conv_handler = ConversationHandler(
        entry_points=[
            CommandHandler("start", start),
            CommandHandler("yeni", new_card),
            MessageHandler(image_filter, handle_image),
        ],
        states={
            WAITING_FOR_IMAGE: [MessageHandler(image_filter, handle_image)],
            WAITING_FOR_PROMPT: [
                MessageHandler(text_filter, handle_prompt),
                MessageHandler(image_filter, handle_image),
            ],
            CONFIGURING: [
                CallbackQueryHandler(handle_menu),
                MessageHandler(image_filter, handle_image),
            ],
        },
        fallbacks=[
            CommandHandler("cancel", cancel),
            CommandHandler("yeni", new_card),
            CommandHandler("help", help_command),
        ],
        conversation_timeout=settings.SESSION_TTL,
    )

    application.add_handler(MessageHandler(filters.UpdateType.CHANNEL_POSTS, log_channel_post))
    application.add_handler(MessageHandler(CHANNEL_FORWARD & filters.TEXT, handle_channel_forward))
    application.add_handler(conv_handler)
    application.add_handler(CommandHandler("help", help_command))
    application.add_error_handler(error_handler)

    if application.job_queue is not None:
        application.job_queue.run_repeating(_cleanup_sessions, interval=SESSION_CLEANUP_INTERVAL)
    logger.info("Telegram handlers registered successfully")
    return application


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if not settings.TELEGRAM_BOT_TOKEN:
        raise ValueError("TELEGRAM_BOT_TOKEN environment variable not set.")
    logger.info("PromtHubs bot starting in polling mode")
    build_application(settings.TELEGRAM_BOT_TOKEN).run_polling()
