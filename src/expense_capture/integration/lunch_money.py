import asyncio
import os
from time import monotonic
from typing import Any

import httpx

from expense_capture.errors import BudgetAPIError
from expense_capture.integration.base import BudgetClient
from expense_capture.integration.http import RetryingHTTPAdapter
from expense_capture.logger import get_logger
from expense_capture.models import BudgetTransaction, CreatedTransaction

logger = get_logger(__name__)

DEFAULT_CATEGORIES_CACHE_TTL_SECONDS = 300.0


def _asset_id(account_id: str) -> int | str:
    return int(account_id) if account_id.isdigit() else account_id


class LunchMoneyClient(RetryingHTTPAdapter, BudgetClient):
    log_tag = "BUDGET"

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry_limit: int = 3,
        backoff: float = 1.0,
        categories_cache_ttl: float = DEFAULT_CATEGORIES_CACHE_TTL_SECONDS,
    ):
        super().__init__(client=client, retry_limit=retry_limit, backoff=backoff)
        self.base_url = (base_url or os.getenv("LUNCH_MONEY_URL") or "").rstrip("/")
        self.token = token or os.getenv("LUNCH_MONEY_TOKEN")
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._cache_lock = asyncio.Lock()
        self._category_ids: dict[str, int] | None = None
        self._categories_expires_at = 0.0
        self._categories_cache_ttl = max(0.0, categories_cache_ttl)

    async def _fetch_category_ids(self) -> dict[str, int]:
        response = await self._request("GET", f"{self.base_url}/categories", headers=self.headers)
        response.raise_for_status()
        categories = response.json().get("categories", [])
        return {
            str(item["name"]).strip().lower(): item["id"]
            for item in categories
            if item.get("name") and item.get("id") is not None
        }

    async def category_id(self, name: str | None) -> int | None:
        if not name:
            return None
        async with self._cache_lock:
            if self._category_ids is None or monotonic() >= self._categories_expires_at:
                try:
                    self._category_ids = await self._fetch_category_ids()
                    self._categories_expires_at = monotonic() + self._categories_cache_ttl
                except Exception as exc:
                    # Keep serving the stale map, if any
                    logger.warning("[BUDGET] Could not fetch categories: %s", exc)
                    if self._category_ids is None:
                        return None
        return self._category_ids.get(name.strip().lower())

    def _build_payload(self, transaction: BudgetTransaction, category_id: int | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "date": transaction.date.isoformat(),
            "amount": f"{transaction.amount:.2f}",
            "payee": transaction.payee,
            "asset_id": _asset_id(transaction.account_id),
            "notes": transaction.notes,
            "status": transaction.status.value,
            "currency": transaction.currency,
        }
        if category_id is not None:
            payload["category_id"] = category_id
        if transaction.tags:
            payload["tags"] = list(transaction.tags)
        return payload

    async def create(self, transaction: BudgetTransaction) -> CreatedTransaction:
        if not self.base_url or not self.token:
            raise BudgetAPIError("Lunch Money credentials missing")

        category_id = await self.category_id(transaction.category)
        body = {
            "transactions": [self._build_payload(transaction, category_id)],
            "apply_rules": True,
            "check_for_recurring": True,
            "debit_as_negative": False,
        }
        try:
            response = await self._request(
                "POST",
                f"{self.base_url}/transactions",
                headers=self.headers,
                json=body,
            )
        except httpx.HTTPError as exc:
            logger.error("[BUDGET] Create request failed for '%s': %s", transaction.payee, exc)
            raise BudgetAPIError(f"Failed to reach Lunch Money: {exc}") from exc

        if response.is_error:
            logger.error(
                "[BUDGET] Create failed for '%s' with HTTP %s.",
                transaction.payee,
                response.status_code,
            )
            raise BudgetAPIError(
                f"Lunch Money returned HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

        data = response.json()
        if data.get("error"):
            raise BudgetAPIError(
                f"Lunch Money rejected the transaction: {data['error']}",
                status_code=response.status_code,
                response_body=data,
            )
        ids = data.get("ids") or []
        if not ids:
            raise BudgetAPIError("Lunch Money returned no transaction id", response_body=data)

        logger.info(
            "[BUDGET] Created transaction %s: %s %.2f %s",
            ids[0],
            transaction.payee,
            transaction.amount,
            transaction.currency,
        )
        return CreatedTransaction(id=str(ids[0]))

    async def validate(self) -> bool:
        if not self.base_url or not self.token:
            return False
        try:
            response = await self._request("GET", f"{self.base_url}/me", headers=self.headers)
            response.raise_for_status()
            return not response.json().get("error")
        except Exception as exc:
            logger.warning("[BUDGET] Credential validation failed: %s", exc)
            return False
