from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class TransactionType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionStatus(str, Enum):
    CLEARED = "cleared"
    UNCLEARED = "uncleared"
    PENDING = "pending"


class ExtractedTransaction(BaseModel):
    """
    Structured output of the AI model.

    When ``is_transaction`` is false every transaction field is cleared; when it
    is true ``amount``, ``merchant`` and ``type`` are mandatory.
    """
    is_transaction: bool
    amount: float | None = Field(default=None, ge=0)
    merchant: str | None = None
    type: TransactionType | None = None
    currency: str | None = None
    category: str | None = None
    reference: str | None = None
    notes: str | None = None
    transaction_date: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    app_name: str | None = None  # App the model recognised on a screenshot

    @model_validator(mode="after")
    def _check_transaction_fields(self) -> "ExtractedTransaction":
        if not self.is_transaction:
            for name in (
                "amount", "merchant", "type", "currency", "category",
                "reference", "notes", "transaction_date", "app_name",
            ):
                setattr(self, name, None)
            return self

        missing = [
            name for name in ("amount", "merchant", "type")
            if getattr(self, name) in (None, "")
        ]
        if missing:
            raise ValueError(f"Transaction is missing required fields: {', '.join(missing)}")
        if self.amount is not None and self.amount <= 0:
            raise ValueError("Transaction amount must be positive")
        return self


class Location(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    @classmethod
    def parse(cls, latitude: Any, longitude: Any) -> "Location":
        return cls(latitude=float(latitude), longitude=float(longitude))


class BudgetTransaction(BaseModel):
    date: date
    amount: float = Field(ge=0)
    payee: str
    account_id: str
    category: str | None = None
    notes: str = ""
    status: TransactionStatus = TransactionStatus.CLEARED
    currency: str
    tags: list[str] = Field(default_factory=list)


class CreatedTransaction(BaseModel):
    id: str


class PipelineResult(BaseModel):
    success: bool
    transaction_id: str | None = None
    error: str | None = None


class NotificationPayload(BaseModel):
    app_name: str = Field(min_length=1)
    notification_title: str = ""
    notification_text: str = Field(min_length=1)
    timestamp: datetime
    latitude: str | None = None
    longitude: str | None = None

    @property
    def has_gps(self) -> bool:
        return bool(self.latitude and self.longitude)


class ScreenshotPayload(BaseModel):
    chat_id: int | None = None
    image_base64: str = Field(min_length=1)
    app_package_name: str | None = None
    timestamp: datetime
    latitude: str | None = None
    longitude: str | None = None
    metadata: dict[str, Any] | None = None
    user_payee: str | None = None
    user_remarks: str | None = None


class ScreenshotMetadata(BaseModel):
    app_package_name: str | None = None
    latitude: str | None = None
    longitude: str | None = None
    timestamp: datetime | None = None
    user_payee: str | None = None
    user_remarks: str | None = None

    @classmethod
    def from_payload(cls, payload: ScreenshotPayload) -> "ScreenshotMetadata":
        return cls(
            app_package_name=payload.app_package_name,
            latitude=payload.latitude,
            longitude=payload.longitude,
            timestamp=payload.timestamp,
            user_payee=payload.user_payee,
            user_remarks=payload.user_remarks,
        )
