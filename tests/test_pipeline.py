from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
from conftest import make_extracted

from expense_capture.domain.accounts import AccountRegistry
from expense_capture.errors import BudgetAPIError, ExtractionError
from expense_capture.models import CreatedTransaction, ExtractedTransaction, NotificationPayload
from expense_capture.services.pipeline import NOT_A_TRANSACTION, TransactionPipeline

TIMESTAMP = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def _payload(**overrides: object) -> NotificationPayload:
    data = {
        "app_name": "com.maybank2u.life",
        "notification_title": "Maybank2u",
        "notification_text": "You spent RM 12.50 at Kedai Runcit",
        "timestamp": TIMESTAMP,
    }
    data.update(overrides)
    return NotificationPayload.model_validate(data)


def _pipeline(
    registry: AccountRegistry,
    extracted: ExtractedTransaction | None = None,
    **kwargs: object,
) -> TransactionPipeline:
    extractor = AsyncMock()
    extractor.extract_from_text.return_value = extracted or make_extracted()
    budget = AsyncMock()
    budget.create.return_value = CreatedTransaction(id="99")
    geocoder = AsyncMock()
    geocoder.reverse_geocode.return_value = "Jalan Ampang, KLCC, Kuala Lumpur"
    return TransactionPipeline(extractor, budget, geocoder, registry, **kwargs)


@pytest.mark.anyio
async def test_records_allowed_notification(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry)

    result = await pipeline.process(_payload(latitude="3.1579", longitude="101.7116"))

    assert result.success
    assert result.transaction_id == "99"
    pipeline.geocoder.reverse_geocode.assert_awaited_once_with(3.1579, 101.7116)
    transaction = pipeline.budget.create.await_args.args[0]
    assert transaction.account_id == "maybank"
    assert transaction.amount == 12.5
    assert transaction.date == date(2024, 5, 1)
    assert transaction.currency == "myr"
    assert transaction.tags == ["com.maybank2u.life"]
    assert transaction.notes == (
        "You spent RM 12.50 at Kedai Runcit | Location: Jalan Ampang, KLCC, Kuala Lumpur"
    )


@pytest.mark.anyio
async def test_otp_is_not_recorded(registry: AccountRegistry) -> None:
    otp = ExtractedTransaction(is_transaction=False, confidence=0)
    pipeline = _pipeline(registry, extracted=otp)

    result = await pipeline.process(_payload(notification_text="Your OTP is 123456"))

    assert not result.success
    assert result.error == NOT_A_TRANSACTION
    pipeline.budget.create.assert_not_awaited()


@pytest.mark.anyio
async def test_low_confidence_is_not_recorded(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry, extracted=make_extracted(confidence=0.2))

    result = await pipeline.process(_payload())

    assert result.error == "Low confidence: 0.20"
    pipeline.budget.create.assert_not_awaited()


@pytest.mark.anyio
async def test_missing_confidence_passes(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry, extracted=make_extracted(confidence=None))

    result = await pipeline.process(_payload())

    assert result.success


@pytest.mark.anyio
async def test_app_outside_allow_list_is_skipped(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry)

    result = await pipeline.process(_payload(app_name="com.whatsapp"))

    assert not result.success
    assert "not in the allowed list" in result.error
    pipeline.extractor.extract_from_text.assert_not_awaited()


@pytest.mark.anyio
async def test_allowed_app_without_account_mapping(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry, allowed_apps=["com.cimb.clicks"])

    result = await pipeline.process(_payload(app_name="com.cimb.clicks"))

    assert not result.success
    assert "No account mapping" in result.error
    pipeline.budget.create.assert_not_awaited()


@pytest.mark.anyio
async def test_extraction_failure_is_reported(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry)
    pipeline.extractor.extract_from_text.side_effect = ExtractionError("model down")

    result = await pipeline.process(_payload())

    assert result.error == "model down"


@pytest.mark.anyio
async def test_geocoding_failure_does_not_block(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry)
    pipeline.geocoder.reverse_geocode.side_effect = RuntimeError("timeout")

    result = await pipeline.process(_payload(latitude="3.1579", longitude="101.7116"))

    assert result.success
    assert "Location" not in pipeline.budget.create.await_args.args[0].notes


@pytest.mark.anyio
async def test_invalid_coordinates_are_ignored(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry)

    result = await pipeline.process(_payload(latitude="999", longitude="101.7"))

    assert result.success
    pipeline.geocoder.reverse_geocode.assert_not_awaited()


@pytest.mark.anyio
async def test_persistence_failure_is_reported(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry)
    pipeline.budget.create.side_effect = BudgetAPIError("Lunch Money returned HTTP 500", status_code=500)

    result = await pipeline.process(_payload())

    assert not result.success
    assert result.error == "Lunch Money returned HTTP 500"


@pytest.mark.anyio
async def test_account_default_category_is_used(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry, extracted=make_extracted(category=None))

    await pipeline.process(_payload(app_name="my.com.tngdigital.ewallet"))

    transaction = pipeline.budget.create.await_args.args[0]
    assert transaction.account_id == "tng"
    assert transaction.category == "Transportation"


@pytest.mark.anyio
async def test_validate_adapters(registry: AccountRegistry) -> None:
    pipeline = _pipeline(registry)
    pipeline.extractor.validate.return_value = True
    pipeline.budget.validate.side_effect = RuntimeError("unreachable")
    pipeline.geocoder.validate.return_value = False

    assert await pipeline.validate_adapters() == {"ai": True, "budget": False, "geocoding": False}
