from fastapi import HTTPException, Request

from expense_capture.services.conversation import ConversationOrchestrator
from expense_capture.services.conversation_store import ConversationStore
from expense_capture.services.pipeline import TransactionPipeline


def get_pipeline(request: Request) -> TransactionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if not pipeline:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return pipeline


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if not orchestrator:
        raise HTTPException(status_code=500, detail="Telegram not configured")
    return orchestrator


def get_store_optional(request: Request) -> ConversationStore | None:
    return getattr(request.app.state, "store", None)
