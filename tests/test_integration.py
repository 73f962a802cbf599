from datetime import date
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from expense_capture.errors import BudgetAPIError, ChatAPIError
from expense_capture.integration.locationiq import LocationIQClient, format_address
from expense_capture.integration.lunch_money import LunchMoneyClient
from expense_capture.integration.telegram import TelegramClient
from expense_capture.models import BudgetTransaction


def _response(payload: Any = None, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.is_error = status_code >= 400
    response.json.return_value = payload if payload is not None else {}
    response.text = str(payload)
    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "error", request=MagicMock(), response=MagicMock()
        )
    else:
        response.raise_for_status.return_value = None
    return response


def _http_client(*responses: Any) -> AsyncMock:
    client = AsyncMock()
    client.is_closed = False
    client.request = AsyncMock(side_effect=list(responses))
    return client


def _transaction(**overrides: Any) -> BudgetTransaction:
    data: dict[str, Any] = {
        "date": date(2024, 5, 1),
        "amount": 12.5,
        "payee": "Kedai Runcit",
        "account_id": "123",
        "category": "Groceries",
        "notes": "You spent RM 12.50",
        "currency": "myr",
        "tags": ["com.maybank2u.life"],
    }
    data.update(overrides)
    return BudgetTransaction.model_validate(data)


def _lunch_money(client: AsyncMock, **kwargs: Any) -> LunchMoneyClient:
    return LunchMoneyClient(base_url="http://lm.test/v1", token="token", client=client, backoff=0, **kwargs)


CATEGORIES = {"categories": [{"id": 7, "name": "Groceries"}, {"id": 8, "name": "Transport"}]}


@pytest.mark.anyio
async def test_lunch_money_create() -> None:
    client = _http_client(_response(CATEGORIES), _response({"ids": [555]}))
    lunch_money = _lunch_money(client)

    created = await lunch_money.create(_transaction())

    assert created.id == "555"
    method, url = client.request.await_args.args
    assert (method, url) == ("POST", "http://lm.test/v1/transactions")
    body = client.request.await_args.kwargs["json"]
    assert body["debit_as_negative"] is False
    assert body["transactions"][0] == {
        "date": "2024-05-01",
        "amount": "12.50",
        "payee": "Kedai Runcit",
        "asset_id": 123,
        "notes": "You spent RM 12.50",
        "status": "cleared",
        "currency": "myr",
        "category_id": 7,
        "tags": ["com.maybank2u.life"],
    }


@pytest.mark.anyio
async def test_lunch_money_retries_transient_failures() -> None:
    client = _http_client(
        _response(CATEGORIES),
        _response({}, status_code=503),
        httpx.ConnectError("connection reset"),
        _response({"ids": [1]}),
    )
    lunch_money = _lunch_money(client)

    created = await lunch_money.create(_transaction())

    assert created.id == "1"
    assert client.request.await_count == 4


@pytest.mark.anyio
async def test_lunch_money_gives_up_after_retry_limit() -> None:
    client = _http_client(
        _response(CATEGORIES),
        _response({}, status_code=502),
        _response({}, status_code=502),
    )
    lunch_money = _lunch_money(client, retry_limit=1)

    with pytest.raises(BudgetAPIError) as exc_info:
        await lunch_money.create(_transaction())

    assert exc_info.value.status_code == 502
    assert client.request.await_count == 3


@pytest.mark.anyio
async def test_lunch_money_client_errors_are_not_retried() -> None:
    client = _http_client(_response(CATEGORIES), _response({"error": "bad asset"}, status_code=400))
    lunch_money = _lunch_money(client)

    with pytest.raises(BudgetAPIError) as exc_info:
        await lunch_money.create(_transaction())

    assert exc_info.value.status_code == 400
    assert client.request.await_count == 2


@pytest.mark.anyio
async def test_lunch_money_error_body_raises() -> None:
    client = _http_client(_response(CATEGORIES), _response({"error": ["Invalid date"]}))

    with pytest.raises(BudgetAPIError):
        await _lunch_money(client).create(_transaction())


@pytest.mark.anyio
async def test_lunch_money_requires_credentials() -> None:
    client = _http_client()
    lunch_money = LunchMoneyClient(base_url="http://lm.test/v1", token=None, client=client)
    lunch_money.token = None

    with pytest.raises(BudgetAPIError):
        await lunch_money.create(_transaction())
    client.request.assert_not_awaited()


@pytest.mark.anyio
async def test_lunch_money_category_cache_keeps_stale_map() -> None:
    client = _http_client(_response(CATEGORIES), httpx.ConnectError("offline"))
    lunch_money = _lunch_money(client, retry_limit=0, categories_cache_ttl=0)

    assert await lunch_money.category_id("groceries") == 7
    assert await lunch_money.category_id("Transport") == 8
    assert await lunch_money.category_id(None) is None


def test_format_address() -> None:
    assert format_address({"display_name": "Suria KLCC, Jalan Ampang, Kuala Lumpur, 50088, Malaysia"}) == (
        "Suria KLCC, Jalan Ampang, Kuala Lumpur, 50088"
    )
    assert format_address({"address": {"road": "Jalan Ampang", "city": "Kuala Lumpur"}}) == (
        "Jalan Ampang, Kuala Lumpur"
    )


@pytest.mark.anyio
async def test_locationiq_reverse_geocode() -> None:
    client = _http_client(_response({"display_name": "Suria KLCC, Jalan Ampang, Kuala Lumpur"}))
    geocoder = LocationIQClient(base_url="http://geo.test/v1", api_key="key", client=client)

    assert await geocoder.reverse_geocode(3.1579, 101.7116) == "Suria KLCC, Jalan Ampang, Kuala Lumpur"
    params = client.request.await_args.kwargs["params"]
    assert params["lat"] == "3.1579"
    assert params["lon"] == "101.7116"


@pytest.mark.anyio
async def test_locationiq_falls_back_to_coordinates() -> None:
    client = _http_client(_response({"error": "Unable to geocode"}, status_code=404))
    geocoder = LocationIQClient(base_url="http://geo.test/v1", api_key="key", client=client, backoff=0)

    assert await geocoder.reverse_geocode(3.1579, 101.7116) == "3.1579, 101.7116"


@pytest.mark.anyio
async def test_telegram_send_message() -> None:
    client = _http_client(_response({"ok": True, "result": {"message_id": 5}}))
    telegram = TelegramClient(token="123:abc", client=client)

    message = await telegram.send_message(77, "hello", reply_markup={"inline_keyboard": []}, parse_mode="Markdown")

    assert message.message_id == 5
    assert message.chat_id == 77
    assert client.request.await_args.args == ("POST", "https://api.telegram.org/bot123:abc/sendMessage")
    assert client.request.await_args.kwargs["json"] == {
        "chat_id": 77,
        "text": "hello",
        "reply_markup": {"inline_keyboard": []},
        "parse_mode": "Markdown",
    }


@pytest.mark.anyio
async def test_telegram_api_error() -> None:
    client = _http_client(_response({"ok": False, "description": "Bad Request: chat not found"}, status_code=400))
    telegram = TelegramClient(token="123:abc", client=client)

    with pytest.raises(ChatAPIError, match="chat not found"):
        await telegram.send_message(77, "hello")


@pytest.mark.anyio
async def test_telegram_unchanged_edit_is_ignored() -> None:
    client = _http_client(
        _response({"ok": False, "description": "Bad Request: message is not modified"}, status_code=400)
    )
    telegram = TelegramClient(token="123:abc", client=client)

    message = await telegram.edit_message(77, 5, "same text")

    assert message.message_id == 5


def test_telegram_redacts_token() -> None:
    telegram = TelegramClient(token="123:abc", client=_http_client())

    assert telegram._redact("https://api.telegram.org/bot123:abc/sendMessage") == "sendMessage"
