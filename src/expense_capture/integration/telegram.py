import os
from typing import Any

import httpx

from expense_capture.errors import ChatAPIError
from expense_capture.integration.base import ChatClient, ChatMessage
from expense_capture.integration.http import RetryingHTTPAdapter
from expense_capture.logger import get_logger

logger = get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramClient(RetryingHTTPAdapter, ChatClient):
    log_tag = "TELEGRAM"

    def __init__(
        self,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry_limit: int = 3,
        backoff: float = 1.0,
        api_url: str = TELEGRAM_API_URL,
    ):
        super().__init__(client=client, retry_limit=retry_limit, backoff=backoff, timeout=10.0)
        self.token = token or os.getenv("TELEGRAM_BOT_TOKEN")
        self.api_url = api_url.rstrip("/")

    def _redact(self, url: str) -> str:
        # The bot token is part of the path
        return url.rsplit("/", 1)[-1]

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        if not self.token:
            raise ChatAPIError("Telegram bot token missing")
        try:
            response = await self._request(
                "POST",
                f"{self.api_url}/bot{self.token}/{method}",
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise ChatAPIError(f"Telegram {method} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error or not data.get("ok"):
            description = data.get("description") or f"HTTP {response.status_code}"
            raise ChatAPIError(f"Telegram {method} failed: {description}", response.status_code)
        return data.get("result")

    @staticmethod
    def _options(reply_markup: dict[str, Any] | None, parse_mode: str | None) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if reply_markup is not None:
            options["reply_markup"] = reply_markup
        if parse_mode:
            options["parse_mode"] = parse_mode
        return options

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict[str, Any] | None = None,
        parse_mode: str | None = None,
    ) -> ChatMessage:
        result = await self._call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, **self._options(reply_markup, parse_mode)},
        )
        logger.debug("[TELEGRAM] Sent message %s to chat %s.", result.get("message_id"), chat_id)
        return ChatMessage(message_id=result["message_id"], chat_id=chat_id)

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: dict[str, Any] | None = None,
        parse_mode: str | None = None,
    ) -> ChatMessage:
        payload = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            **self._options(reply_markup, parse_mode),
        }
        try:
            await self._call("editMessageText", payload)
        except ChatAPIError as exc:
            # Re-rendering an unchanged view is not an error for us.
            if "message is not modified" not in str(exc):
                raise
        return ChatMessage(message_id=message_id, chat_id=chat_id)

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_id}
        if text:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload)

    async def validate(self) -> bool:
        try:
            await self._call("getMe", {})
            return True
        except ChatAPIError as exc:
            logger.warning("[TELEGRAM] Bot token validation failed: %s", exc)
            return False
