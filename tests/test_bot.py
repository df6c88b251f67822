import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import NetworkError
from telegram.ext import Application, ConversationHandler

import bot
from card_style import ColorSwatch
from errors import CardGenerationError
from sessions import CONFIGURING, GENERATING, IDLE, SessionStore

CHAT_ID = 777


@pytest.fixture(autouse=True)
def store(monkeypatch):
    fresh = SessionStore(ttl=600)
    monkeypatch.setattr(bot, "sessions", fresh)
    return fresh


def _message_update(text=None):
    update = MagicMock()
    update.effective_chat.id = CHAT_ID
    update.effective_user.id = 1
    update.message.text = text
    update.message.reply_text = AsyncMock()
    return update


def _callback_update(data):
    update = MagicMock()
    update.effective_chat.id = CHAT_ID
    query = update.callback_query
    query.data = data
    query.answer = AsyncMock()
    query.edit_message_text = AsyncMock()
    query.message.reply_text = AsyncMock()
    query.message.reply_document = AsyncMock()
    query.message.delete = AsyncMock()
    return update


def _configured_session(store):
    session = store.get(CHAT_ID)
    session.image_bytes = b"image"
    session.prompt_text = "a prompt"
    session.palette = [ColorSwatch("#C81E1E", "Canlı"), ColorSwatch("#FFD700", "Marka")]
    session.step = CONFIGURING
    return session


def _buttons(markup):
    return [button for row in markup.inline_keyboard for button in row]


def test_start_resets_and_waits_for_image(store):
    store.update(CHAT_ID, prompt_text="stale")
    update = _message_update("/start")
    assert asyncio.run(bot.start(update, MagicMock())) == bot.WAITING_FOR_IMAGE
    assert store.get(CHAT_ID).prompt_text == ""
    update.message.reply_text.assert_awaited_once()


def test_image_is_stored_with_palette(store, solid_png):
    update = _message_update()
    update.message.photo = [MagicMock(file_id="small"), MagicMock(file_id="large")]
    file = MagicMock()
    file.download_as_bytearray = AsyncMock(return_value=bytearray(solid_png((200, 30, 30))))
    context = MagicMock()
    context.bot.get_file = AsyncMock(return_value=file)

    assert asyncio.run(bot.handle_image(update, context)) == bot.WAITING_FOR_PROMPT
    context.bot.get_file.assert_awaited_once_with("large")
    session = store.get(CHAT_ID)
    assert session.image_bytes
    assert [s.color for s in session.palette] == ["#C81E1E", "#FFD700"]
    assert "#C81E1E" in update.message.reply_text.await_args.args[0]


def test_non_image_document_is_refused(store):
    update = _message_update()
    update.message.photo = []
    update.message.document.mime_type = "application/pdf"
    context = MagicMock()
    context.bot.get_file = AsyncMock()
    assert asyncio.run(bot.handle_image(update, context)) == bot.WAITING_FOR_IMAGE
    context.bot.get_file.assert_not_awaited()


def test_prompt_without_image_asks_for_image():
    update = _message_update("some prompt")
    assert asyncio.run(bot.handle_prompt(update, MagicMock())) == bot.WAITING_FOR_IMAGE


def test_prompt_opens_settings_menu(store):
    store.update(CHAT_ID, image_bytes=b"image", palette=[ColorSwatch("#FFD700", "Marka")])
    update = _message_update("<script> prompt")
    assert asyncio.run(bot.handle_prompt(update, MagicMock())) == bot.CONFIGURING
    assert store.get(CHAT_ID).prompt_text == "<script> prompt"
    text = update.message.reply_text.await_args.args[0]
    assert "&lt;script&gt;" in text
    assert update.message.reply_text.await_args.kwargs["reply_markup"] is not None


def test_keyboard_marks_current_choices(store):
    session = _configured_session(store)
    session.settings.update({"themeColor": "#FFD700", "fontFamily": "serif", "model": "None", "showBorder": False})
    labels = {b.callback_data: b.text for b in _buttons(bot.build_config_keyboard(session))}
    assert labels["color:#FFD700"] == "✓ Marka"
    assert labels["color:#C81E1E"] == "Canlı"
    assert labels["font:serif"] == "✓ Serif"
    assert labels["model:None"] == "✓ Yok"
    assert labels["border:off"] == "✓ Çerçeve Kapalı"
    assert "generate" in labels and "cancel" in labels


def test_menu_updates_settings(store):
    session = _configured_session(store)
    for data in ("font:sans", "model:GPT-4", "border:off", "color:#C81E1E"):
        update = _callback_update(data)
        assert asyncio.run(bot.handle_menu(update, MagicMock())) == bot.CONFIGURING
        update.callback_query.edit_message_text.assert_awaited_once()
    assert session.settings["fontFamily"] == "sans"
    assert session.settings["model"] == "GPT-4"
    assert session.settings["showBorder"] is False
    assert session.settings["themeColor"] == "#C81E1E"


def test_menu_rejects_colour_outside_palette(store):
    session = _configured_session(store)
    update = _callback_update("color:#123456")
    asyncio.run(bot.handle_menu(update, MagicMock()))
    assert session.settings["themeColor"] == "#FFD700"


def test_generate_sends_document_and_resets(store, monkeypatch):
    _configured_session(store)
    render = AsyncMock(return_value=b"\x89PNGcard")
    monkeypatch.setattr(bot, "build_card_async", render)
    update = _callback_update("generate")

    assert asyncio.run(bot.handle_menu(update, MagicMock())) == ConversationHandler.END
    assert render.await_args.kwargs["scale"] == 4
    style = render.await_args.args[1]
    assert style.alignment == "left"
    assert style.prompt_text == "a prompt"
    kwargs = update.callback_query.message.reply_document.await_args.kwargs
    assert kwargs["document"] == b"\x89PNGcard"
    assert kwargs["filename"] == "promthubs-card.png"
    assert "4320x7680" in kwargs["caption"]
    assert store.get(CHAT_ID).image_bytes is None


def test_generate_ignores_double_click(store, monkeypatch):
    session = _configured_session(store)
    session.step = GENERATING
    render = AsyncMock()
    monkeypatch.setattr(bot, "build_card_async", render)
    update = _callback_update("generate")

    assert asyncio.run(bot.handle_menu(update, MagicMock())) is None
    render.assert_not_awaited()


def test_generate_failure_reports_and_resets(store, monkeypatch):
    _configured_session(store)
    monkeypatch.setattr(bot, "build_card_async", AsyncMock(side_effect=CardGenerationError(cause=OSError("bad"))))
    update = _callback_update("generate")

    assert asyncio.run(bot.handle_menu(update, MagicMock())) == ConversationHandler.END
    update.callback_query.message.reply_text.assert_awaited_once_with(bot.GENERATION_FAILED_MESSAGE)
    update.callback_query.message.reply_document.assert_not_awaited()
    assert store.get(CHAT_ID).image_bytes is None


def test_failed_upload_reports_and_resets(store, monkeypatch):
    _configured_session(store)
    monkeypatch.setattr(bot, "build_card_async", AsyncMock(return_value=b"\x89PNGcard"))
    update = _callback_update("generate")
    update.callback_query.message.reply_document = AsyncMock(side_effect=NetworkError("timed out"))

    assert asyncio.run(bot.handle_menu(update, MagicMock())) == ConversationHandler.END
    update.callback_query.message.reply_text.assert_awaited_once_with(bot.GENERATION_FAILED_MESSAGE)
    update.callback_query.message.delete.assert_not_awaited()
    session = store.get(CHAT_ID)
    assert session.step == IDLE
    assert session.image_bytes is None


def test_cancel_button_ends_conversation(store):
    _configured_session(store)
    update = _callback_update("cancel")
    assert asyncio.run(bot.handle_menu(update, MagicMock())) == ConversationHandler.END
    assert store.get(CHAT_ID).image_bytes is None


def test_expired_session_ends_menu():
    update = _callback_update("font:mono")
    assert asyncio.run(bot.handle_menu(update, MagicMock())) == ConversationHandler.END


def test_channel_forward_filter():
    message = MagicMock()
    message.forward_origin.type = "channel"
    assert bot.CHANNEL_FORWARD.filter(message)
    message.forward_origin.type = "user"
    assert not bot.CHANNEL_FORWARD.filter(message)
    message.forward_origin = None
    assert not bot.CHANNEL_FORWARD.filter(message)


def test_channel_forward_replies_with_id():
    update = _message_update("forwarded")
    update.message.forward_origin.chat.id = -100123
    update.message.forward_origin.chat.title = "PromtHubs"
    asyncio.run(bot.handle_channel_forward(update, MagicMock()))
    assert "-100123" in update.message.reply_text.await_args.args[0]


def test_build_application_registers_handlers():
    application = bot.build_application("123456789:" + "A" * 35)
    assert isinstance(application, Application)
    handlers = application.handlers[0]
    assert any(isinstance(h, ConversationHandler) for h in handlers)
    assert application.error_handlers
