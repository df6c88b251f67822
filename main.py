import html
import time
import base64
import asyncio
import binascii
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from telegram import Update
from telegram.constants import ParseMode
from telegram.error import TelegramError

import bot
from card_pipeline import build_card_async, extract_palette
from card_style import ALIGNMENTS, FONT_FAMILIES, FONT_SIZE_RANGE, MAX_EXPORT_SCALE, MODELS, StyleParameters
from config import settings
from errors import CardError, InputError, RenderError
from rate_limit import FixedWindowRateLimiter
from schemas import PaletteOut, RenderJsonIn, SendTelegramIn

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "2.0.0"
CARD_FILENAME = bot.CARD_FILENAME
CAPTION_PROMPT_CHARS = 100
HEALTH_PATHS = ("/api/health", "/api/health/detailed")
RATE_LIMIT_MESSAGE = "Çok fazla istek gönderdiniz. Lütfen daha sonra tekrar deneyin."

START_TIME = time.monotonic()

# Telegram bot setup
application = None
if settings.telegram_enabled:
    try:
        application = bot.build_application(settings.TELEGRAM_BOT_TOKEN)
        logger.info("Telegram application built successfully")
    except Exception as e:
        logger.error(f"Failed to build Telegram application: {e}")
else:
    logger.warning("TELEGRAM_BOT_TOKEN not set - Telegram bot and channel sending disabled")

rate_limiter = FixedWindowRateLimiter(settings.RATE_LIMIT_MAX, settings.RATE_LIMIT_WINDOW)

# FastAPI app setup
app = FastAPI(title="PromtHubs Card API", version=VERSION)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    path = request.url.path
    if path.startswith("/api") and path not in HEALTH_PATHS:
        client = request.client.host if request.client else "unknown"
        if not rate_limiter.hit(client):
            retry_after = rate_limiter.retry_after(client)
            logger.warning(f"Rate limit exceeded for {client} on {path}")
            return JSONResponse(
                {"error": RATE_LIMIT_MESSAGE, "retryAfter": retry_after},
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )
    return await call_next(request)


@app.middleware("http")
async def payload_limit_middleware(request: Request, call_next):
    length = request.headers.get("content-length")
    limit = settings.MAX_PAYLOAD_MB * 1024 * 1024
    if length and length.isdigit() and int(length) > limit:
        logger.warning(f"Rejected {length} byte payload on {request.url.path}")
        return JSONResponse({"error": f"Payload exceeds {settings.MAX_PAYLOAD_MB} MB limit"}, status_code=413)
    return await call_next(request)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f} ms)")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in exc.errors()]
    return JSONResponse({"error": "Invalid request", "details": details}, status_code=400)


@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    logger.warning(f"Rejected {request.url.path}: {exc}")
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(RenderError)
async def render_error_handler(request: Request, exc: RenderError):
    logger.error(f"Render failed on {request.url.path}: {exc}")
    return JSONResponse({"error": f"Failed to render card: {exc}"}, status_code=500)


@app.exception_handler(CardError)
async def card_error_handler(request: Request, exc: CardError):
    logger.error(f"Card error on {request.url.path}: {exc}")
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.exception_handler(asyncio.TimeoutError)
async def timeout_error_handler(request: Request, exc: asyncio.TimeoutError):
    logger.error(f"Render timed out after {settings.RENDER_TIMEOUT}s on {request.url.path}")
    return JSONResponse({"error": "Card rendering timed out"}, status_code=504)


@app.on_event("startup")
async def startup_event():
    """Start the bot application and register the webhook"""
    if not application:
        logger.warning("Telegram application not available - skipping webhook setup")
        return

    try:
        await application.initialize()
        await application.start()
        logger.info("Telegram application started")

        if not settings.SET_WEBHOOK_ON_STARTUP:
            logger.info("SET_WEBHOOK_ON_STARTUP disabled - leaving the registered webhook untouched")
            return
        if not settings.WEBHOOK_URL:
            logger.warning("WEBHOOK_URL not set - webhook will not be configured automatically")
            return

        logger.info(f"Setting up webhook to: {settings.WEBHOOK_URL}")
        await application.bot.set_webhook(url=settings.WEBHOOK_URL)
        webhook_info = await application.bot.get_webhook_info()
        logger.info(f"Webhook URL: {webhook_info.url}, pending updates: {webhook_info.pending_update_count}")
    except TelegramError as e:
        logger.error(f"Failed to set up webhook on startup: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the bot application"""
    if not application:
        return
    try:
        if application.running:
            await application.stop()
        await application.shutdown()
        logger.info("Telegram application shut down")
    except TelegramError as e:
        logger.error(f"Error shutting down Telegram application: {e}")


def decode_base64_image(data: str) -> bytes:
    """Decode a base64 string, with or without a ``data:image/...;base64,`` prefix."""
    if data.startswith("data:"):
        data = data.split(",", 1)[-1]
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputError(f"Invalid base64 image: {e}") from e
    if not decoded:
        raise InputError("imageBase64 is empty")
    return decoded


def png_response(png: bytes) -> Response:
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{CARD_FILENAME}"'},
    )


def telegram_caption(prompt: str) -> str:
    if not prompt:
        preview = "Prompt yok"
    else:
        preview = prompt[:CAPTION_PROMPT_CHARS] + ("..." if len(prompt) > CAPTION_PROMPT_CHARS else "")
    return f"🎨 <b>Yeni Kart Oluşturuldu</b>\n\n📝 <i>{html.escape(preview)}</i>"


# FastAPI routes
@app.post("/telegram-webhook")
async def telegram_webhook(request: Request):
    """Handle Telegram webhook updates"""
    if not application:
        logger.error("Telegram application not available")
        return {"ok": False, "error": "Application not initialized"}

    try:
        data = await request.json()
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return {"ok": False, "error": "Invalid JSON"}

    logger.info(f"Received webhook update: {data.get('update_id', 'unknown')}")
    update = Update.de_json(data, application.bot)
    await application.process_update(update)
    return {"ok": True}


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return PlainTextResponse("ok")


@app.get("/api/health")
def api_health():
    return {
        "status": "ok",
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "uptime": round(time.monotonic() - START_TIME, 3),
    }


@app.get("/api/health/detailed")
def api_health_detailed():
    return {
        "status": "ok",
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "uptime": round(time.monotonic() - START_TIME, 3),
        "version": VERSION,
        "render": {"workers": settings.RENDER_WORKERS, "timeoutSeconds": settings.RENDER_TIMEOUT},
        "services": {
            "telegram": "configured" if settings.telegram_enabled else "not configured",
            "telegramChannel": "configured" if settings.TELEGRAM_CHANNEL_ID else "not configured",
            "botApplication": "ready" if application else "disabled",
        },
        "botSessions": len(bot.sessions),
    }


@app.get("/api/config")
def get_config():
    """Canvas, choices and defaults for the editor"""
    return {
        "canvas": {"width": settings.CARD_WIDTH, "height": settings.CARD_HEIGHT},
        "exportScale": settings.EXPORT_SCALE,
        "maxExportScale": MAX_EXPORT_SCALE,
        "models": list(MODELS),
        "fontFamilies": list(FONT_FAMILIES),
        "alignments": list(ALIGNMENTS),
        "fontSizeRange": list(FONT_SIZE_RANGE),
        "defaults": settings.DEFAULT_STYLE,
        "endpoints": {
            "palette": "/api/palette",
            "render": "/api/render",
            "render_json": "/api/render-json",
            "send_telegram": "/api/send-telegram",
            "health": "/api/health",
            "config": "/api/config",
        },
    }


@app.post("/api/palette", response_model=PaletteOut)
async def get_palette(image: UploadFile = File(...)):
    """Theme color suggestions for an uploaded image"""
    data = await image.read()
    if not data:
        raise InputError("image file is empty")
    palette = await asyncio.to_thread(extract_palette, data)
    return {"palette": [swatch.to_dict() for swatch in palette]}


@app.post("/api/render")
async def render_card(
    image: UploadFile = File(...),
    promptText: str = Form(""),
    themeColor: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    fontFamily: Optional[str] = Form(None),
    fontSize: Optional[int] = Form(None),
    alignment: Optional[str] = Form(None),
    showBorder: Optional[bool] = Form(None),
    showText: Optional[bool] = Form(None),
    blurBackground: Optional[bool] = Form(None),
    safeZone: Optional[bool] = Form(None),
    showOriginalOnly: Optional[bool] = Form(None),
    gradientIntensity: Optional[int] = Form(None),
    safeZoneScale: Optional[int] = Form(None),
    textPosition: Optional[int] = Form(None),
    scale: int = Form(1),
):
    """Render a card from a multipart upload"""
    style = StyleParameters.from_mapping({
        "promptText": promptText,
        "themeColor": themeColor,
        "model": model,
        "fontFamily": fontFamily,
        "fontSize": fontSize,
        "alignment": alignment,
        "showBorder": showBorder,
        "showText": showText,
        "blurBackground": blurBackground,
        "safeZone": safeZone,
        "showOriginalOnly": showOriginalOnly,
        "gradientIntensity": gradientIntensity,
        "safeZoneScale": safeZoneScale,
        "textPosition": textPosition,
    })
    data = await image.read()
    png = await build_card_async(data, style, scale=scale)
    return png_response(png)


@app.post("/api/render-json")
async def render_card_json(payload: RenderJsonIn):
    """Render a card from a JSON payload with a base64 image"""
    style = payload.to_style()
    image_data = decode_base64_image(payload.imageBase64)
    png = await build_card_async(image_data, style, scale=payload.scale)

    if payload.returnFile:
        return png_response(png)

    width, height = settings.CARD_WIDTH * payload.scale, settings.CARD_HEIGHT * payload.scale
    return JSONResponse({
        "success": True,
        "image": f"data:image/png;base64,{base64.b64encode(png).decode('utf-8')}",
        "filename": CARD_FILENAME,
        "width": width,
        "height": height,
        "scale": payload.scale,
    })


@app.post("/api/send-telegram")
async def send_to_telegram(payload: SendTelegramIn):
    """Send a card to the configured Telegram channel as a lossless document"""
    if not settings.telegram_enabled or not application:
        return JSONResponse({"error": "TELEGRAM_BOT_TOKEN not configured."}, status_code=500)
    channel_id = settings.TELEGRAM_CHANNEL_ID
    if not channel_id:
        return JSONResponse({"error": "TELEGRAM_CHANNEL_ID not configured in .env"}, status_code=400)

    image_data = decode_base64_image(payload.imageBase64)
    prompt = payload.promptText or ""
    if payload.render:
        image_data = await build_card_async(image_data, payload.to_style(), scale=payload.scale)

    try:
        await application.bot.send_document(
            chat_id=channel_id,
            document=image_data,
            filename=CARD_FILENAME,
            caption=telegram_caption(prompt),
            parse_mode=ParseMode.HTML,
        )
    except TelegramError as e:
        logger.error(f"Failed to send card to channel {channel_id}: {e}")
        return JSONResponse({"error": f"Telegram send failed: {e}"}, status_code=502)

    logger.info(f"Sent {len(image_data)} byte card to channel {channel_id}")
    return {"success": True, "message": "Sent to Telegram"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
