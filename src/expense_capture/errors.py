"""Exception hierarchy shared by adapters and services."""

from typing import Any


class ExpenseCaptureError(Exception):
    """Base class for all expense-capture errors."""


class AccountConfigError(ExpenseCaptureError):
    """The account mapping file is missing or malformed."""


class ExtractionError(ExpenseCaptureError):
    """The AI model call failed or returned something unusable."""

    def __init__(self, message: str, source_text: str | None = None) -> None:
        super().__init__(message)
        self.source_text = source_text


class BudgetAPIError(ExpenseCaptureError):
    """The budgeting platform rejected or failed a request."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class GeocodingError(ExpenseCaptureError):
    def __init__(self, message: str, latitude: float, longitude: float) -> None:
        super().__init__(message)
        self.latitude = latitude
        self.longitude = longitude


class ChatAPIError(ExpenseCaptureError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
