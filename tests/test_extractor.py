from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from expense_capture.errors import ExtractionError
from expense_capture.integration.openai_extractor import OpenAIExtractor, parse_extraction
from expense_capture.models import TransactionType


def _extractor(output_text: str | None = None, side_effect: Exception | None = None) -> OpenAIExtractor:
    client = MagicMock()
    client.responses.create = AsyncMock(
        return_value=SimpleNamespace(output_text=output_text),
        side_effect=side_effect,
    )
    return OpenAIExtractor(model="test-model", client=client)


def test_parse_extraction_strips_code_fences() -> None:
    raw = '```json\n{"is_transaction": true, "amount": 45.5, "merchant": "Starbucks", "type": "debit", "confidence": 0.95}\n```'

    extracted = parse_extraction(raw)

    assert extracted.amount == 45.5
    assert extracted.merchant == "Starbucks"
    assert extracted.type is TransactionType.DEBIT


def test_parse_extraction_rejects_garbage() -> None:
    with pytest.raises(ExtractionError) as exc_info:
        parse_extraction("I could not read that", source_text="blurry")
    assert exc_info.value.source_text == "blurry"

    with pytest.raises(ExtractionError):
        parse_extraction('{"is_transaction": true, "amount": 10}')


@pytest.mark.anyio
async def test_extract_from_text() -> None:
    extractor = _extractor('{"is_transaction": false, "confidence": 0}')

    extracted = await extractor.extract_from_text("Your OTP is 123456")

    assert extracted.is_transaction is False
    kwargs = extractor.client.responses.create.await_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["temperature"] == 0.0
    assert "Your OTP is 123456" in kwargs["input"]


@pytest.mark.anyio
async def test_extract_from_image_sends_image_and_hints() -> None:
    extractor = _extractor(
        '{"is_transaction": true, "amount": 20, "merchant": "Tesco", "type": "debit", "app_name": "MAE"}'
    )

    extracted = await extractor.extract_from_image(
        "aW1hZ2U=",
        {"app_package_name": "com.maybank2u.life", "user_payee": "Tesco"},
    )

    assert extracted.app_name == "MAE"
    content = extractor.client.responses.create.await_args.kwargs["input"][0]["content"]
    assert content[1] == {"type": "input_image", "image_url": "data:image/jpeg;base64,aW1hZ2U="}
    assert "com.maybank2u.life" in content[0]["text"]
    assert "'Tesco'" in content[0]["text"]


@pytest.mark.anyio
async def test_model_failure_raises_extraction_error() -> None:
    extractor = _extractor(side_effect=RuntimeError("rate limited"))

    with pytest.raises(ExtractionError):
        await extractor.extract_from_text("You spent RM 10")


@pytest.mark.anyio
async def test_output_blocks_are_joined() -> None:
    block = SimpleNamespace(type="output_text", text='{"is_transaction": false}')
    response = SimpleNamespace(output_text=None, output=[SimpleNamespace(content=[block])])
    extractor = _extractor()
    extractor.client.responses.create.return_value = response

    extracted = await extractor.extract_from_text("Promo: 50% off")

    assert extracted.is_transaction is False


@pytest.mark.anyio
async def test_validate_reports_failure() -> None:
    assert await _extractor(side_effect=RuntimeError("bad key")).validate() is False
    assert await _extractor(
        '{"is_transaction": true, "amount": 10, "merchant": "Test Store", "type": "debit"}'
    ).validate() is True
