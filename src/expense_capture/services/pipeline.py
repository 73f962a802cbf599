from datetime import datetime
from time import perf_counter

from expense_capture.domain.accounts import AccountRegistry
from expense_capture.domain.notes import build_budget_transaction
from expense_capture.integration.base import BudgetClient, Geocoder, TransactionExtractor
from expense_capture.logger import get_logger
from expense_capture.models import (
    BudgetTransaction,
    CreatedTransaction,
    ExtractedTransaction,
    Location,
    NotificationPayload,
    PipelineResult,
    TransactionStatus,
)

logger = get_logger(__name__)

NOT_A_TRANSACTION = "Not a financial transaction"


class TransactionPipeline:
    """
    Non-interactive path: filter, extract, resolve account, enrich, persist.

    ``record`` is also the confirm step of the chat flow, so both paths build
    identical budget records.
    """

    def __init__(
        self,
        extractor: TransactionExtractor,
        budget: BudgetClient,
        geocoder: Geocoder,
        registry: AccountRegistry,
        *,
        allowed_apps: list[str] | None = None,
        min_confidence: float = 0.4,
        default_currency: str = "myr",
    ) -> None:
        self.extractor = extractor
        self.budget = budget
        self.geocoder = geocoder
        self.registry = registry
        self.allowed_apps = list(allowed_apps) if allowed_apps else registry.package_identifiers()
        self.min_confidence = min_confidence
        self.default_currency = default_currency

    def is_allowed(self, app_name: str) -> bool:
        return app_name in self.allowed_apps

    def rejection_reason(self, extracted: ExtractedTransaction) -> str | None:
        if not extracted.is_transaction:
            return NOT_A_TRANSACTION
        if extracted.confidence is not None and extracted.confidence < self.min_confidence:
            return f"Low confidence: {extracted.confidence:.2f}"
        return None

    async def describe_location(self, location: Location | None) -> str | None:
        if location is None:
            return None
        try:
            return await self.geocoder.reverse_geocode(location.latitude, location.longitude)
        except Exception as exc:
            logger.warning("[PIPELINE] Location enrichment failed, continuing without it: %s", exc)
            return None

    async def build(
        self,
        extracted: ExtractedTransaction,
        account_id: str,
        timestamp: datetime,
        *,
        source_text: str | None = None,
        location: Location | None = None,
        source_app: str | None = None,
    ) -> BudgetTransaction:
        account = self.registry.get(account_id)
        return build_budget_transaction(
            extracted,
            account_id,
            timestamp,
            source_text=source_text,
            location=await self.describe_location(location),
            source_app=source_app,
            default_currency=self.default_currency,
            default_category=account.default_category if account else None,
            status=TransactionStatus.CLEARED,
        )

    async def record(
        self,
        extracted: ExtractedTransaction,
        account_id: str,
        timestamp: datetime,
        *,
        source_text: str | None = None,
        location: Location | None = None,
        source_app: str | None = None,
    ) -> CreatedTransaction:
        """Enrich, build and persist. Raises BudgetAPIError when persistence fails."""
        transaction = await self.build(
            extracted,
            account_id,
            timestamp,
            source_text=source_text,
            location=location,
            source_app=source_app,
        )
        return await self.budget.create(transaction)

    @staticmethod
    def _payload_location(payload: NotificationPayload) -> Location | None:
        if not payload.has_gps:
            return None
        try:
            return Location.parse(payload.latitude, payload.longitude)
        except ValueError:
            logger.warning(
                "[PIPELINE] Ignoring invalid coordinates %s, %s.",
                payload.latitude,
                payload.longitude,
            )
            return None

    async def process(self, payload: NotificationPayload) -> PipelineResult:
        start = perf_counter()
        logger.info(
            "[PIPELINE] Notification from %s (gps=%s).",
            payload.app_name,
            payload.has_gps,
        )

        if not self.is_allowed(payload.app_name):
            logger.info("[PIPELINE] App '%s' is not in the allowed list; skipping.", payload.app_name)
            return PipelineResult(
                success=False,
                error=f"App '{payload.app_name}' is not in the allowed list",
            )

        try:
            extracted = await self.extractor.extract_from_text(payload.notification_text)
        except Exception as exc:
            logger.error("[PIPELINE] Extraction failed for %s: %s", payload.app_name, exc)
            return PipelineResult(success=False, error=str(exc))

        reason = self.rejection_reason(extracted)
        if reason:
            logger.info("[PIPELINE] %s (app=%s); skipping.", reason, payload.app_name)
            return PipelineResult(success=False, error=reason)

        account = self.registry.account_for_package(payload.app_name)
        if account is None:
            error = f"No account mapping found for app '{payload.app_name}'"
            logger.error("[PIPELINE] %s.", error)
            return PipelineResult(success=False, error=error)

        try:
            created = await self.record(
                extracted,
                account.id,
                payload.timestamp,
                source_text=payload.notification_text,
                location=self._payload_location(payload),
                source_app=payload.app_name,
            )
        except Exception as exc:
            logger.error("[PIPELINE] Failed to persist transaction from %s: %s", payload.app_name, exc)
            return PipelineResult(success=False, error=str(exc))

        logger.info(
            "[PIPELINE] Created transaction %s (%s %.2f) in %.2fs.",
            created.id,
            extracted.merchant,
            extracted.amount or 0.0,
            perf_counter() - start,
        )
        return PipelineResult(success=True, transaction_id=created.id)

    async def validate_adapters(self) -> dict[str, bool]:
        results = {"ai": False, "budget": False, "geocoding": False}
        checks = (("ai", self.extractor), ("budget", self.budget), ("geocoding", self.geocoder))
        for name, adapter in checks:
            try:
                results[name] = await adapter.validate()
            except Exception as exc:
                logger.error("[PIPELINE] %s adapter validation failed: %s", name, exc)
        return results
