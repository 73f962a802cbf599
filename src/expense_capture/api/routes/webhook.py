from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError

from expense_capture.api.dependencies import get_pipeline
from expense_capture.domain.payloads import normalize_notification_payload
from expense_capture.logger import get_logger
from expense_capture.models import NotificationPayload
from expense_capture.services.pipeline import TransactionPipeline

logger = get_logger(__name__)

router = APIRouter()


async def read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except Exception as exc:
        logger.warning("[WEBHOOK] Received invalid JSON payload.")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc

    if not isinstance(payload, dict):
        logger.warning("[WEBHOOK] Unexpected payload type: %s.", type(payload).__name__)
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return payload


def validation_details(exc: Exception) -> list[dict[str, Any]] | str:
    if not isinstance(exc, ValidationError):
        return str(exc)
    return [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]


async def run_pipeline(pipeline: TransactionPipeline, payload: NotificationPayload) -> None:
    try:
        result = await pipeline.process(payload)
    except Exception:
        logger.exception("[WEBHOOK] Unexpected error while processing notification from %s.", payload.app_name)
        return
    if not result.success:
        logger.info("[WEBHOOK] Notification from %s not recorded: %s", payload.app_name, result.error)


@router.post("/webhook/notification")
async def notification_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    pipeline: Annotated[TransactionPipeline, Depends(get_pipeline)],
) -> dict[str, Any]:
    raw = await read_json_object(request)
    try:
        payload = NotificationPayload.model_validate(normalize_notification_payload(raw))
    except (ValidationError, ValueError) as exc:
        logger.warning("[WEBHOOK] Notification payload validation failed: %s", exc)
        details = validation_details(exc)
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid notification webhook payload", "details": details},
        ) from exc

    logger.info("[WEBHOOK] Notification received from %s (gps=%s).", payload.app_name, payload.has_gps)
    # Respond immediately; the pipeline runs after the response is sent.
    background_tasks.add_task(run_pipeline, pipeline, payload)
    return {
        "success": True,
        "message": "Notification webhook received, processing transaction",
    }
