"""Message text and inline keyboards for the chat confirmation flow."""

from typing import Any

from expense_capture.domain.accounts import AccountDefinition
from expense_capture.models import ExtractedTransaction

PARSE_MODE = "Markdown"

AMOUNT_STEPS = (10, 50, 100)

FIELD_LABELS = {
    "amount": "💰 Amount",
    "merchant": "🏪 Merchant",
    "category": "📁 Category",
    "notes": "📝 Notes",
}

_MARKDOWN_SPECIALS = ("\\", "_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    for char in _MARKDOWN_SPECIALS:
        text = text.replace(char, f"\\{char}")
    return text


def button(text: str, callback_data: str) -> dict[str, str]:
    return {"text": text, "callback_data": callback_data}


def keyboard(rows: list[list[dict[str, str]]]) -> dict[str, Any]:
    return {"inline_keyboard": rows}


def format_amount(data: ExtractedTransaction, currency: str) -> str:
    if data.amount is None:
        return "Unknown"
    return f"{currency.upper()} {data.amount:.2f}"


def confidence_marker(confidence: float) -> str:
    if confidence >= 0.8:
        return "🎯"
    if confidence >= 0.6:
        return "✅"
    return "⚠️"


def format_summary(data: ExtractedTransaction, currency: str) -> str:
    lines = [
        f"💰 *Amount:* {format_amount(data, currency)}",
        f"🏪 *Merchant:* {escape_markdown(data.merchant or 'Unknown')}",
    ]
    if data.category:
        lines.append(f"📁 *Category:* {escape_markdown(data.category)}")
    if data.notes:
        lines.append(f"📝 *Notes:* {escape_markdown(data.notes)}")
    if data.confidence:
        lines.append(
            f"{confidence_marker(data.confidence)} *Confidence:* {data.confidence * 100:.0f}%"
        )
    return "\n".join(lines)


def account_line(label: str) -> str:
    return f"📂 *Account:* {escape_markdown(label)}"


def account_keyboard(accounts: list[AccountDefinition]) -> dict[str, Any]:
    rows = []
    for index in range(0, len(accounts), 2):
        pair = accounts[index:index + 2]
        rows.append([button(account.display_name, f"account:{account.id}") for account in pair])
    return keyboard(rows)


def confirmation_keyboard() -> dict[str, Any]:
    return keyboard([
        [button("✅ Confirm", "confirm"), button("✏️ Edit", "edit")],
        [button("❌ Cancel", "cancel")],
    ])


def field_picker_keyboard() -> dict[str, Any]:
    return keyboard([
        [button(FIELD_LABELS["amount"], "edit_amount"), button(FIELD_LABELS["merchant"], "edit_merchant")],
        [button(FIELD_LABELS["category"], "edit_category"), button(FIELD_LABELS["notes"], "edit_notes")],
        [button("🔙 Back", "back_to_confirm")],
    ])


def amount_keyboard() -> dict[str, Any]:
    return keyboard([
        [button(f"+{step}", f"amount_add_{step}") for step in AMOUNT_STEPS],
        [button(f"-{step}", f"amount_sub_{step}") for step in AMOUNT_STEPS],
        [button("🔙 Back", "edit")],
    ])


def back_to_fields_keyboard() -> dict[str, Any]:
    return keyboard([[button("🔙 Back", "edit")]])


def field_prompt(field: str, data: ExtractedTransaction, currency: str) -> str:
    label = FIELD_LABELS[field]
    if field == "amount":
        current = format_amount(data, currency)
        instruction = "Choose a quick option or send the new amount as a message:"
    else:
        current = escape_markdown(getattr(data, field) or "None")
        instruction = f"Send the new {field} as a message:"
    return f"{label.split(' ', 1)[0]} *Edit {field.capitalize()}*\n\nCurrent: {current}\n\n{instruction}"


def field_keyboard(field: str) -> dict[str, Any]:
    if field == "amount":
        return amount_keyboard()
    return back_to_fields_keyboard()
