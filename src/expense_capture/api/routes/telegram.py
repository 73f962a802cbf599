import os
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from expense_capture.api.dependencies import get_orchestrator
from expense_capture.api.routes.webhook import read_json_object, validation_details
from expense_capture.api.schemas import TelegramMessage, TelegramUpdate
from expense_capture.domain.payloads import normalize_screenshot_payload
from expense_capture.logger import get_logger
from expense_capture.models import ScreenshotMetadata, ScreenshotPayload
from expense_capture.services.conversation import ConversationOrchestrator
from expense_capture.services.keyboards import PARSE_MODE

logger = get_logger(__name__)

router = APIRouter()

WELCOME_TEXT = (
    "👋 *Welcome to the Expense Capture bot!*\n\n"
    "Send me a screenshot of your transaction and I'll help you track it.\n\n"
    "*How to use:*\n"
    "1. Take a screenshot of your transaction notification\n"
    "2. Send it to me through the screenshot webhook\n"
    "3. I'll extract the details and ask you to confirm\n"
    "4. Done! The transaction is saved to Lunch Money"
)
NO_DRAFT_HINT = (
    "⚠️ There is nothing to edit right now.\n\n"
    "Send a screenshot to record a new transaction."
)
PHOTO_UNSUPPORTED = (
    "⚠️ Direct photo uploads are not supported yet.\n\n"
    "Please send screenshots through the screenshot webhook."
)


def _default_chat_id() -> int | None:
    raw = os.getenv("TELEGRAM_CHAT_ID")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("[TELEGRAM] Ignoring non-numeric TELEGRAM_CHAT_ID.")
        return None


async def _handle_message(orchestrator: ConversationOrchestrator, message: TelegramMessage) -> None:
    chat_id = message.chat.id
    if message.photo:
        await orchestrator.chat.send_message(chat_id, PHOTO_UNSUPPORTED)
        return
    if not message.text:
        return

    text = message.text.strip()
    if text == "/start":
        await orchestrator.chat.send_message(chat_id, WELCOME_TEXT, parse_mode=PARSE_MODE)
        return

    consumed = await orchestrator.handle_text_message(chat_id, text)
    if not consumed and not orchestrator.store.has(chat_id):
        await orchestrator.chat.send_message(chat_id, NO_DRAFT_HINT)


@router.post("/webhook/telegram")
async def telegram_webhook(
    request: Request,
    orchestrator: Annotated[ConversationOrchestrator, Depends(get_orchestrator)],
) -> Any:
    raw = await read_json_object(request)
    try:
        update = TelegramUpdate.model_validate(raw)
    except ValidationError as exc:
        logger.warning("[TELEGRAM] Malformed update: %s", exc)
        raise HTTPException(status_code=400, detail=validation_details(exc)) from exc

    logger.info(
        "[TELEGRAM] Update %s received (message=%s, callback=%s).",
        update.update_id,
        update.message is not None,
        update.callback_query is not None,
    )
    try:
        callback = update.callback_query
        if callback:
            if callback.message and callback.data:
                await orchestrator.handle_callback(callback.message.chat.id, callback.id, callback.data)
        elif update.message:
            await _handle_message(orchestrator, update.message)
    except Exception as exc:
        logger.exception("[TELEGRAM] Failed to handle update %s: %s", update.update_id, exc)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Internal error"})
    return {"ok": True}


@router.post("/webhook/telegram/screenshot")
async def screenshot_webhook(
    request: Request,
    orchestrator: Annotated[ConversationOrchestrator, Depends(get_orchestrator)],
) -> Any:
    raw = await read_json_object(request)
    try:
        normalized = normalize_screenshot_payload(raw)
        normalized["chat_id"] = normalized["chat_id"] or _default_chat_id()
        payload = ScreenshotPayload.model_validate(normalized)
    except (ValidationError, ValueError) as exc:
        logger.warning("[TELEGRAM] Screenshot payload validation failed: %s", exc)
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid screenshot payload", "details": validation_details(exc)},
        ) from exc

    if payload.chat_id is None:
        raise HTTPException(
            status_code=400,
            detail={"error": "Chat ID not provided and TELEGRAM_CHAT_ID not configured"},
        )

    logger.info(
        "[TELEGRAM] Screenshot received for chat %s (app=%s, gps=%s).",
        payload.chat_id,
        payload.app_package_name,
        bool(payload.latitude and payload.longitude),
    )
    try:
        await orchestrator.handle_screenshot(
            payload.chat_id,
            payload.image_base64,
            ScreenshotMetadata.from_payload(payload),
        )
    except Exception as exc:
        logger.exception("[TELEGRAM] Failed to process screenshot for chat %s: %s", payload.chat_id, exc)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal error"})
    return {"success": True}
