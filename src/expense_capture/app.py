import asyncio
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from time import monotonic

from fastapi import FastAPI

from expense_capture.api.routes import health, telegram, webhook
from expense_capture.core import settings
from expense_capture.domain.accounts import AccountRegistry
from expense_capture.integration.locationiq import LocationIQClient
from expense_capture.integration.lunch_money import LunchMoneyClient
from expense_capture.integration.openai_extractor import OpenAIExtractor
from expense_capture.integration.telegram import TelegramClient
from expense_capture.logger import get_logger, setup_logging
from expense_capture.services.conversation import ConversationOrchestrator
from expense_capture.services.conversation_store import ConversationStore
from expense_capture.services.detection import AccountDetector
from expense_capture.services.pipeline import TransactionPipeline

logger = get_logger(__name__)


async def sweep_conversations(store: ConversationStore, interval: float, max_age: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            store.sweep_expired(max_age)
        except Exception:
            logger.exception("[STORE] Conversation sweep failed.")


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        registry = AccountRegistry.from_file(settings.get_accounts_path())
        max_recent = registry.preferences.max_recent_accounts or settings.get_env_int(
            "MAX_RECENT_ACCOUNTS",
            settings.DEFAULT_MAX_RECENT_ACCOUNTS,
            min_value=1,
        )

        if not os.getenv("OPENAI_API_KEY"):
            logger.warning("OPENAI_API_KEY not set. Extraction requests will fail.")
        if not os.getenv("LUNCH_MONEY_TOKEN"):
            logger.warning("LUNCH_MONEY_TOKEN not set. Transactions cannot be recorded.")

        retry = {"retry_limit": settings.API_RETRY_LIMIT, "backoff": settings.API_RETRY_BACKOFF}
        extractor = OpenAIExtractor(
            model=os.getenv("OPENAI_MODEL") or settings.DEFAULT_OPENAI_MODEL,
        )
        budget = LunchMoneyClient(
            base_url=os.getenv("LUNCH_MONEY_URL") or settings.DEFAULT_LUNCH_MONEY_URL,
            **retry,
        )
        geocoder = LocationIQClient(
            base_url=os.getenv("LOCATIONIQ_URL") or settings.DEFAULT_LOCATIONIQ_URL,
            **retry,
        )

        detector = AccountDetector(
            registry,
            auto_select_threshold=settings.AUTO_SELECT_THRESHOLD,
            max_recent=max_recent,
        )
        store = ConversationStore()
        pipeline = TransactionPipeline(
            extractor,
            budget,
            geocoder,
            registry,
            allowed_apps=settings.get_env_list("ALLOWED_APPS"),
            min_confidence=settings.MIN_EXTRACTION_CONFIDENCE,
            default_currency=settings.DEFAULT_CURRENCY,
        )
        logger.info("[PIPELINE] Accepting notifications from: %s", ", ".join(pipeline.allowed_apps) or "<none>")

        chat: TelegramClient | None = None
        orchestrator: ConversationOrchestrator | None = None
        if os.getenv("TELEGRAM_BOT_TOKEN"):
            chat = TelegramClient(**retry)
            orchestrator = ConversationOrchestrator(
                chat,
                pipeline,
                detector,
                store,
                default_currency=settings.DEFAULT_CURRENCY,
            )
        else:
            logger.warning("TELEGRAM_BOT_TOKEN not set. Telegram routes will be disabled.")

        app.state.registry = registry
        app.state.detector = detector
        app.state.store = store
        app.state.pipeline = pipeline
        app.state.orchestrator = orchestrator
        app.state.started_at = monotonic()

        adapters = await pipeline.validate_adapters()
        for name, ok in adapters.items():
            if ok:
                logger.info("Adapter '%s' validated.", name)
            else:
                logger.warning("Adapter '%s' failed validation.", name)

        sweeper = asyncio.create_task(
            sweep_conversations(
                store,
                settings.CONVERSATION_SWEEP_INTERVAL,
                settings.CONVERSATION_MAX_AGE,
            )
        )

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        for client in (budget, geocoder, chat):
            if client is not None:
                await client.aclose()

    app = FastAPI(title="Expense Capture", lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(webhook.router)
    app.include_router(telegram.router)

    return app


app = create_app()
