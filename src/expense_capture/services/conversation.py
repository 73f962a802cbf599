import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from expense_capture.domain.accounts import AccountDefinition
from expense_capture.integration.base import ChatClient
from expense_capture.logger import get_logger
from expense_capture.models import ExtractedTransaction, Location, ScreenshotMetadata
from expense_capture.services import keyboards
from expense_capture.services.conversation_store import (
    EDITABLE_FIELDS,
    EDITING_STATES,
    ConversationStore,
    DraftState,
    PendingDraft,
)
from expense_capture.services.detection import AccountDetector
from expense_capture.services.pipeline import NOT_A_TRANSACTION, TransactionPipeline

logger = get_logger(__name__)

SESSION_EXPIRED = "Session expired. Please send the screenshot again."
SELECT_ACCOUNT_FIRST = "Please select an account first."
NOT_AVAILABLE = "That option is not available right now."

_AMOUNT_ADJUST = re.compile(r"^amount_(add|sub)_(\d+(?:\.\d+)?)$")
_NON_NUMERIC = re.compile(r"[^0-9.]")


class EventKind(str, Enum):
    SELECT_ACCOUNT = "select_account"
    CONFIRM = "confirm"
    EDIT = "edit"
    CANCEL = "cancel"
    BACK = "back"
    EDIT_FIELD = "edit_field"
    ADJUST_AMOUNT = "adjust_amount"


@dataclass(frozen=True)
class CallbackEvent:
    kind: EventKind
    value: str | None = None
    delta: float = 0.0


ALL_STATES = frozenset(DraftState)
_REVIEW_STATES = frozenset({DraftState.AWAITING_CONFIRMATION, DraftState.CHOOSING_FIELD}) | EDITING_STATES

# Which draft states accept which button; anything else is answered with NOT_AVAILABLE.
ALLOWED_STATES: dict[EventKind, frozenset[DraftState]] = {
    EventKind.SELECT_ACCOUNT: frozenset({DraftState.AWAITING_ACCOUNT_SELECTION}),
    EventKind.CONFIRM: frozenset({DraftState.AWAITING_CONFIRMATION, DraftState.AWAITING_ACCOUNT_SELECTION}),
    EventKind.EDIT: _REVIEW_STATES,
    EventKind.CANCEL: ALL_STATES,
    EventKind.BACK: _REVIEW_STATES,
    EventKind.EDIT_FIELD: _REVIEW_STATES,
    EventKind.ADJUST_AMOUNT: frozenset({DraftState.EDITING_AMOUNT}),
}


def parse_callback(data: str) -> CallbackEvent | None:
    if data.startswith("account:"):
        account_id = data.removeprefix("account:")
        return CallbackEvent(EventKind.SELECT_ACCOUNT, account_id) if account_id else None
    if data == "confirm":
        return CallbackEvent(EventKind.CONFIRM)
    if data == "edit":
        return CallbackEvent(EventKind.EDIT)
    if data == "cancel":
        return CallbackEvent(EventKind.CANCEL)
    if data == "back_to_confirm":
        return CallbackEvent(EventKind.BACK)
    if data.startswith("edit_"):
        field = data.removeprefix("edit_")
        return CallbackEvent(EventKind.EDIT_FIELD, field) if field in EDITABLE_FIELDS else None
    match = _AMOUNT_ADJUST.match(data)
    if match:
        operation, step = match.groups()
        delta = float(step) if operation == "add" else -float(step)
        return CallbackEvent(EventKind.ADJUST_AMOUNT, operation, delta)
    return None


def parse_amount(text: str) -> float | None:
    cleaned = _NON_NUMERIC.sub("", text)
    try:
        amount = float(cleaned)
    except ValueError:
        return None
    if amount <= 0:
        return None
    return round(amount, 2)


class ConversationOrchestrator:
    """
    Interactive capture flow: screenshot in, confirmation view out, then button
    presses and text replies drive the draft until it is confirmed or cancelled.
    """

    def __init__(
        self,
        chat: ChatClient,
        pipeline: TransactionPipeline,
        detector: AccountDetector,
        store: ConversationStore,
        default_currency: str = "myr",
    ) -> None:
        self.chat = chat
        self.pipeline = pipeline
        self.detector = detector
        self.store = store
        self.default_currency = default_currency
        self._handlers: dict[EventKind, Callable[[PendingDraft, str, CallbackEvent], Awaitable[None]]] = {
            EventKind.SELECT_ACCOUNT: self._on_select_account,
            EventKind.CONFIRM: self._on_confirm,
            EventKind.EDIT: self._on_edit,
            EventKind.CANCEL: self._on_cancel,
            EventKind.BACK: self._on_back,
            EventKind.EDIT_FIELD: self._on_edit_field,
            EventKind.ADJUST_AMOUNT: self._on_adjust_amount,
        }

    # Rendering

    def _currency(self, data: ExtractedTransaction) -> str:
        return data.currency or self.default_currency

    def _summary(self, draft: PendingDraft) -> str:
        return keyboards.format_summary(draft.data, self._currency(draft.data))

    async def _edit(self, draft: PendingDraft, text: str, reply_markup: dict | None = None) -> None:
        await self.chat.edit_message(
            draft.conversation_id,
            draft.message_id,
            text,
            reply_markup=reply_markup,
            parse_mode=keyboards.PARSE_MODE,
        )

    async def _render_confirmation(self, draft: PendingDraft, header: str | None = None) -> None:
        label = self.detector.registry.label_for(draft.account_id or "")
        text = f"{self._summary(draft)}\n{keyboards.account_line(label)}"
        if header:
            text = f"{header}\n\n{text}"
        await self._edit(draft, text, keyboards.confirmation_keyboard())

    async def _render_account_picker(
        self, draft: PendingDraft, suggested: list[AccountDefinition] | None = None
    ) -> None:
        text = f"{self._summary(draft)}\n\n📂 *Which account is this from?*"
        accounts = self.detector.picker_order(suggested)
        await self._edit(draft, text, keyboards.account_keyboard(accounts))

    async def _render_field_picker(self, draft: PendingDraft) -> None:
        text = f"*What would you like to edit?*\n\n{self._summary(draft)}"
        await self._edit(draft, text, keyboards.field_picker_keyboard())

    async def _render_field_editor(self, draft: PendingDraft, field: str) -> None:
        text = keyboards.field_prompt(field, draft.data, self._currency(draft.data))
        await self._edit(draft, text, keyboards.field_keyboard(field))

    # Screenshot

    async def handle_screenshot(
        self,
        conversation_id: int,
        image_base64: str,
        metadata: ScreenshotMetadata | None = None,
    ) -> None:
        metadata = metadata or ScreenshotMetadata()
        logger.info(
            "[CHAT] Screenshot received for chat %s (app=%s).",
            conversation_id,
            metadata.app_package_name,
        )
        processing = await self.chat.send_message(conversation_id, "🔄 Analyzing screenshot...")

        try:
            extracted = await self.pipeline.extractor.extract_from_image(
                image_base64, metadata.model_dump(mode="json", exclude_none=True)
            )
        except Exception as exc:
            logger.error("[CHAT] Extraction failed for chat %s: %s", conversation_id, exc)
            await self.chat.edit_message(
                conversation_id,
                processing.message_id,
                "❌ Failed to process screenshot. Please try again.",
            )
            return

        reason = self.pipeline.rejection_reason(extracted)
        if reason == NOT_A_TRANSACTION:
            await self.chat.edit_message(
                conversation_id,
                processing.message_id,
                "❌ This doesn't look like a financial transaction.\n\n"
                "Please send a screenshot of a transaction notification or receipt.",
            )
            return
        if reason:
            await self.chat.edit_message(
                conversation_id,
                processing.message_id,
                f"⚠️ Low confidence ({(extracted.confidence or 0) * 100:.0f}%).\n\n"
                "Please send a clearer screenshot or try again.",
            )
            return

        detection = self.detector.detect(metadata.app_package_name, extracted, extracted.app_name)
        if metadata.latitude and metadata.longitude:
            try:
                location = Location.parse(metadata.latitude, metadata.longitude)
            except ValueError:
                logger.warning("[CHAT] Ignoring invalid coordinates from chat %s.", conversation_id)
                location = None
        else:
            location = None

        draft = PendingDraft(
            conversation_id=conversation_id,
            message_id=processing.message_id,
            state=DraftState.AWAITING_ACCOUNT_SELECTION,
            data=extracted,
            timestamp=metadata.timestamp or datetime.now(timezone.utc),
            source_image=image_base64,
            location=location,
            source_app=metadata.app_package_name,
            source_text=metadata.user_remarks,
        )

        if detection.selected_account_id:
            logger.info(
                "[CHAT] Account %s auto-detected for chat %s (confidence %.2f).",
                detection.selected_account_id,
                conversation_id,
                detection.confidence,
            )
            draft.account_id = detection.selected_account_id
            draft.state = DraftState.AWAITING_CONFIRMATION
            self.store.set(conversation_id, draft)
            await self._render_confirmation(draft)
        else:
            logger.info(
                "[CHAT] Asking chat %s to pick an account (%s suggestion(s)).",
                conversation_id,
                len(detection.candidates),
            )
            self.store.set(conversation_id, draft)
            await self._render_account_picker(draft, detection.accounts)

    # Buttons

    async def handle_callback(self, conversation_id: int, callback_id: str, data: str) -> None:
        draft = self.store.get(conversation_id)
        if draft is None:
            await self.chat.answer_callback(callback_id, SESSION_EXPIRED)
            return

        event = parse_callback(data)
        if event is None:
            logger.warning("[CHAT] Unknown callback data '%s' from chat %s.", data, conversation_id)
            await self.chat.answer_callback(callback_id)
            return

        logger.info(
            "[CHAT] Callback '%s' for chat %s in state %s.",
            data,
            conversation_id,
            draft.state.value,
        )
        if draft.state not in ALLOWED_STATES[event.kind]:
            await self.chat.answer_callback(callback_id, NOT_AVAILABLE)
            return

        await self._handlers[event.kind](draft, callback_id, event)

    async def _on_select_account(self, draft: PendingDraft, callback_id: str, event: CallbackEvent) -> None:
        account_id = event.value or ""
        if self.detector.registry.get(account_id) is None:
            await self.chat.answer_callback(callback_id, "Unknown account.")
            return

        await self.chat.answer_callback(callback_id, "Account selected!")
        self.detector.record_usage(account_id)
        draft.account_id = account_id
        draft.state = DraftState.AWAITING_CONFIRMATION
        self.store.set(draft.conversation_id, draft)
        await self._render_confirmation(draft)

    async def _on_confirm(self, draft: PendingDraft, callback_id: str, event: CallbackEvent) -> None:
        if not draft.account_id:
            await self.chat.answer_callback(callback_id, SELECT_ACCOUNT_FIRST)
            return

        await self.chat.answer_callback(callback_id, "Creating transaction...")
        logger.info(
            "[CHAT] Creating transaction for chat %s (account=%s, amount=%s).",
            draft.conversation_id,
            draft.account_id,
            draft.data.amount,
        )
        try:
            created = await self.pipeline.record(
                draft.data,
                draft.account_id,
                draft.timestamp,
                source_text=draft.source_text,
                location=draft.location,
                source_app=draft.source_app,
            )
        except Exception as exc:
            # Keep the draft so the user can retry without re-sending the screenshot.
            logger.error("[CHAT] Failed to create transaction for chat %s: %s", draft.conversation_id, exc)
            await self._render_confirmation(
                draft,
                header=f"❌ *Failed to create transaction*\n{keyboards.escape_markdown(str(exc))}",
            )
            return

        self.store.delete(draft.conversation_id)
        label = self.detector.registry.label_for(draft.account_id)
        await self._edit(
            draft,
            f"✅ *Transaction Created!*\n\n{self._summary(draft)}\n"
            f"{keyboards.account_line(label)}\n\n🆔 *ID:* {created.id}",
        )
        logger.info("[CHAT] Transaction %s created for chat %s.", created.id, draft.conversation_id)

    async def _on_edit(self, draft: PendingDraft, callback_id: str, event: CallbackEvent) -> None:
        await self.chat.answer_callback(callback_id)
        draft.state = DraftState.CHOOSING_FIELD
        self.store.set(draft.conversation_id, draft)
        await self._render_field_picker(draft)

    async def _on_cancel(self, draft: PendingDraft, callback_id: str, event: CallbackEvent) -> None:
        self.store.delete(draft.conversation_id)
        await self.chat.answer_callback(callback_id, "Cancelled")
        await self._edit(draft, "❌ Transaction cancelled.\n\nSend another screenshot to start over.")
        logger.info("[CHAT] Transaction cancelled by chat %s.", draft.conversation_id)

    async def _on_back(self, draft: PendingDraft, callback_id: str, event: CallbackEvent) -> None:
        if not draft.account_id:
            await self.chat.answer_callback(callback_id, SELECT_ACCOUNT_FIRST)
            return
        await self.chat.answer_callback(callback_id)
        draft.state = DraftState.AWAITING_CONFIRMATION
        self.store.set(draft.conversation_id, draft)
        await self._render_confirmation(draft)

    async def _on_edit_field(self, draft: PendingDraft, callback_id: str, event: CallbackEvent) -> None:
        field = event.value or ""
        await self.chat.answer_callback(callback_id)
        draft.state = DraftState.editing(field)
        self.store.set(draft.conversation_id, draft)
        await self._render_field_editor(draft, field)

    async def _on_adjust_amount(self, draft: PendingDraft, callback_id: str, event: CallbackEvent) -> None:
        if draft.data.amount is None:
            await self.chat.answer_callback(callback_id, "No amount to adjust")
            return

        draft.data.amount = max(0.0, round(draft.data.amount + event.delta, 2))
        self.store.set(draft.conversation_id, draft)
        direction = "increased" if event.delta >= 0 else "decreased"
        await self.chat.answer_callback(callback_id, f"Amount {direction} by {abs(event.delta):g}")
        await self._render_field_editor(draft, "amount")

    # Text replies

    async def handle_text_message(self, conversation_id: int, text: str) -> bool:
        """Apply a free-text correction. Returns False when no field is being edited."""
        draft = self.store.get(conversation_id)
        if draft is None:
            return False
        field = draft.state.editing_field
        if field is None:
            return False

        logger.info("[CHAT] Text input for %s from chat %s.", field, conversation_id)
        if field == "amount":
            amount = parse_amount(text)
            if amount is None:
                await self.chat.send_message(conversation_id, "⚠️ Invalid amount. Please send a valid number.")
                return True
            draft.data.amount = amount
        else:
            value = text.strip()
            if not value and field == "merchant":
                await self.chat.send_message(conversation_id, "⚠️ Merchant cannot be empty. Please send a name.")
                return True
            setattr(draft.data, field, value or None)

        draft.state = DraftState.AWAITING_CONFIRMATION
        self.store.set(conversation_id, draft)
        if draft.account_id:
            await self._render_confirmation(draft)
        else:
            detection = self.detector.detect(draft.source_app, draft.data, draft.data.app_name)
            draft.state = DraftState.AWAITING_ACCOUNT_SELECTION
            await self._render_account_picker(draft, detection.accounts)

        await self.chat.send_message(conversation_id, f"✅ {field.capitalize()} updated!")
        return True
