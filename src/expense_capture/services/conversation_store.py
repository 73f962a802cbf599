from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from expense_capture.logger import get_logger
from expense_capture.models import ExtractedTransaction, Location

logger = get_logger(__name__)


class DraftState(str, Enum):
    AWAITING_ACCOUNT_SELECTION = "awaiting_account_selection"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CHOOSING_FIELD = "choosing_field"
    EDITING_AMOUNT = "editing_amount"
    EDITING_MERCHANT = "editing_merchant"
    EDITING_CATEGORY = "editing_category"
    EDITING_NOTES = "editing_notes"

    @property
    def editing_field(self) -> str | None:
        if self.value.startswith("editing_"):
            return self.value.removeprefix("editing_")
        return None

    @classmethod
    def editing(cls, field_name: str) -> "DraftState":
        return cls(f"editing_{field_name}")


EDITABLE_FIELDS = ("amount", "merchant", "category", "notes")
EDITING_STATES = frozenset(DraftState.editing(name) for name in EDITABLE_FIELDS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PendingDraft:
    conversation_id: int
    message_id: int
    state: DraftState
    data: ExtractedTransaction
    timestamp: datetime
    account_id: str | None = None
    source_image: str | None = None
    location: Location | None = None
    source_app: str | None = None
    source_text: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


class ConversationStore:
    """
    In-process map of conversation id to its single pending draft.

    A second draft for the same id replaces the first. Swap this class for a
    shared key-value store with the same methods to run several instances.
    """

    def __init__(self) -> None:
        self._drafts: dict[int, PendingDraft] = {}

    def set(self, conversation_id: int, draft: PendingDraft) -> None:
        self._drafts[conversation_id] = draft

    def get(self, conversation_id: int) -> PendingDraft | None:
        return self._drafts.get(conversation_id)

    def delete(self, conversation_id: int) -> None:
        self._drafts.pop(conversation_id, None)

    def has(self, conversation_id: int) -> bool:
        return conversation_id in self._drafts

    def all(self) -> list[PendingDraft]:
        return list(self._drafts.values())

    def __len__(self) -> int:
        return len(self._drafts)

    def sweep_expired(self, max_age: timedelta | float, now: datetime | None = None) -> int:
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)
        cutoff = (now or _utcnow()) - max_age
        expired = [
            conversation_id
            for conversation_id, draft in self._drafts.items()
            if draft.created_at < cutoff
        ]
        for conversation_id in expired:
            del self._drafts[conversation_id]
        if expired:
            logger.info("[STORE] Swept %s expired conversation(s).", len(expired))
        return len(expired)
