from datetime import date, datetime

from expense_capture.models import (
    BudgetTransaction,
    ExtractedTransaction,
    TransactionStatus,
)

NOTES_SEPARATOR = " | "


def resolve_transaction_date(extracted: ExtractedTransaction, timestamp: datetime) -> date:
    if extracted.transaction_date:
        try:
            return datetime.fromisoformat(extracted.transaction_date.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    return timestamp.date()


def build_notes(
    extracted: ExtractedTransaction,
    source_text: str | None = None,
    location: str | None = None,
) -> str:
    segments = [
        extracted.notes or source_text,
        f"Ref: {extracted.reference}" if extracted.reference else None,
        f"Location: {location}" if location else None,
    ]
    return NOTES_SEPARATOR.join(segment.strip() for segment in segments if segment and segment.strip())


def build_budget_transaction(
    extracted: ExtractedTransaction,
    account_id: str,
    timestamp: datetime,
    *,
    source_text: str | None = None,
    location: str | None = None,
    source_app: str | None = None,
    default_currency: str = "myr",
    default_category: str | None = None,
    status: TransactionStatus = TransactionStatus.CLEARED,
) -> BudgetTransaction:
    """Single place where both capture paths turn an extraction into a budget record."""
    if extracted.amount is None or not extracted.merchant:
        raise ValueError("Cannot build a budget transaction without amount and merchant")

    return BudgetTransaction(
        date=resolve_transaction_date(extracted, timestamp),
        amount=round(abs(extracted.amount), 2),
        payee=extracted.merchant,
        account_id=account_id,
        category=extracted.category or default_category,
        notes=build_notes(extracted, source_text=source_text, location=location),
        status=status,
        currency=(extracted.currency or default_currency).lower(),
        tags=[source_app] if source_app else [],
    )
