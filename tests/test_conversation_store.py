from datetime import datetime, timedelta, timezone

from conftest import make_extracted

from expense_capture.services.conversation_store import (
    ConversationStore,
    DraftState,
    PendingDraft,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _draft(conversation_id: int, created_at: datetime = NOW, merchant: str = "Kedai Runcit") -> PendingDraft:
    return PendingDraft(
        conversation_id=conversation_id,
        message_id=1,
        state=DraftState.AWAITING_CONFIRMATION,
        data=make_extracted(merchant=merchant),
        timestamp=created_at,
        created_at=created_at,
    )


def test_set_get_delete() -> None:
    store = ConversationStore()
    store.set(1, _draft(1))

    assert store.has(1)
    assert store.get(1).data.merchant == "Kedai Runcit"
    assert len(store) == 1

    store.delete(1)
    store.delete(1)
    assert store.get(1) is None
    assert len(store) == 0


def test_one_draft_per_conversation() -> None:
    store = ConversationStore()
    store.set(1, _draft(1, merchant="First"))
    store.set(1, _draft(1, merchant="Second"))

    assert len(store) == 1
    assert store.get(1).data.merchant == "Second"


def test_sweep_removes_only_expired() -> None:
    store = ConversationStore()
    store.set(1, _draft(1, created_at=NOW - timedelta(hours=2)))
    store.set(2, _draft(2, created_at=NOW - timedelta(minutes=5)))

    removed = store.sweep_expired(3600, now=NOW)

    assert removed == 1
    assert not store.has(1)
    assert store.has(2)
    assert store.sweep_expired(timedelta(hours=1), now=NOW) == 0


def test_editing_states() -> None:
    assert DraftState.editing("amount") is DraftState.EDITING_AMOUNT
    assert DraftState.EDITING_NOTES.editing_field == "notes"
    assert DraftState.CHOOSING_FIELD.editing_field is None
