from datetime import datetime, timezone
from time import monotonic
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from expense_capture.api.dependencies import get_pipeline, get_store_optional
from expense_capture.api.schemas import AdapterHealth, HealthResponse
from expense_capture.services.conversation_store import ConversationStore
from expense_capture.services.pipeline import TransactionPipeline

router = APIRouter()


def _adapter_status(ok: bool) -> str:
    return "connected" if ok else "error"


@router.get("/health")
async def health(
    request: Request,
    pipeline: Annotated[TransactionPipeline, Depends(get_pipeline)],
    store: Annotated[ConversationStore | None, Depends(get_store_optional)],
) -> JSONResponse:
    results = await pipeline.validate_adapters()
    healthy = all(results.values())
    started_at = getattr(request.app.state, "started_at", None)

    response = HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(monotonic() - started_at, 3) if started_at is not None else 0.0,
        adapters=AdapterHealth(
            ai=_adapter_status(results.get("ai", False)),
            budget=_adapter_status(results.get("budget", False)),
            geocoding=_adapter_status(results.get("geocoding", False)),
        ),
        conversations=len(store) if store is not None else 0,
    )
    return JSONResponse(status_code=200 if healthy else 503, content=response.model_dump())
