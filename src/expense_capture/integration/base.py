from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from expense_capture.models import BudgetTransaction, CreatedTransaction, ExtractedTransaction


class ChatMessage(BaseModel):
    message_id: int
    chat_id: int


class TransactionExtractor(ABC):
    @abstractmethod
    async def extract_from_text(self, text: str) -> ExtractedTransaction:
        """Turn notification text into a structured transaction."""

    @abstractmethod
    async def extract_from_image(
        self, image_base64: str, metadata: dict[str, Any] | None = None
    ) -> ExtractedTransaction:
        """Turn a base64 screenshot into a structured transaction."""

    @abstractmethod
    async def validate(self) -> bool:
        pass


class BudgetClient(ABC):
    @abstractmethod
    async def create(self, transaction: BudgetTransaction) -> CreatedTransaction:
        """Create the record; raises BudgetAPIError on failure."""

    @abstractmethod
    async def validate(self) -> bool:
        pass


class Geocoder(ABC):
    @abstractmethod
    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        """Never raises; falls back to a ``"lat, lon"`` string."""

    @abstractmethod
    async def validate(self) -> bool:
        pass


class ChatClient(ABC):
    @abstractmethod
    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict[str, Any] | None = None,
        parse_mode: str | None = None,
    ) -> ChatMessage:
        pass

    @abstractmethod
    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: dict[str, Any] | None = None,
        parse_mode: str | None = None,
    ) -> ChatMessage:
        pass

    @abstractmethod
    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        pass
