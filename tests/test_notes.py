from datetime import date, datetime, timezone

from conftest import make_extracted

from expense_capture.domain.notes import (
    build_budget_transaction,
    build_notes,
    resolve_transaction_date,
)
from expense_capture.models import TransactionStatus

TIMESTAMP = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def test_extracted_date_wins_over_timestamp() -> None:
    assert resolve_transaction_date(make_extracted(transaction_date="2024-04-28"), TIMESTAMP) == date(2024, 4, 28)
    assert resolve_transaction_date(make_extracted(), TIMESTAMP) == date(2024, 5, 1)
    assert resolve_transaction_date(make_extracted(transaction_date="yesterday"), TIMESTAMP) == date(2024, 5, 1)


def test_build_notes_segments() -> None:
    extracted = make_extracted(reference="REF123")

    assert build_notes(extracted, source_text="You spent RM 12.50", location="KLCC") == (
        "You spent RM 12.50 | Ref: REF123 | Location: KLCC"
    )
    assert build_notes(make_extracted(notes="Lunch"), source_text="ignored") == "Lunch"
    assert build_notes(make_extracted()) == ""


def test_build_budget_transaction() -> None:
    extracted = make_extracted(amount=12.456, category=None, currency=None)

    transaction = build_budget_transaction(
        extracted,
        "maybank",
        TIMESTAMP,
        source_text="You spent RM 12.46",
        source_app="com.maybank2u.life",
        default_currency="myr",
        default_category="Uncategorized",
    )

    assert transaction.date == date(2024, 5, 1)
    assert transaction.amount == 12.46
    assert transaction.payee == "Kedai Runcit"
    assert transaction.account_id == "maybank"
    assert transaction.category == "Uncategorized"
    assert transaction.currency == "myr"
    assert transaction.status is TransactionStatus.CLEARED
    assert transaction.tags == ["com.maybank2u.life"]
    assert transaction.notes == "You spent RM 12.46"


def test_model_currency_is_lower_cased() -> None:
    transaction = build_budget_transaction(make_extracted(currency="SGD"), "tng", TIMESTAMP)

    assert transaction.currency == "sgd"
    assert transaction.tags == []
