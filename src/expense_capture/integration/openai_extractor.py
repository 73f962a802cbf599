import json
import os
import re
from typing import Any

from openai import AsyncOpenAI
from pydantic import ValidationError

from expense_capture.errors import ExtractionError
from expense_capture.integration.base import TransactionExtractor
from expense_capture.logger import get_logger
from expense_capture.models import ExtractedTransaction

logger = get_logger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)

INSTRUCTIONS = "You are a financial transaction parser for Malaysian banking and e-wallet apps."

RESPONSE_FORMAT = """
Return ONLY a JSON object, no markdown and no extra text, with these fields:
- is_transaction: boolean (false for OTPs, promotions, login alerts and anything that is not money moving)
- amount: positive number, the money that moved
- merchant: string, the merchant, store or person involved
- type: "debit" (money spent or sent) or "credit" (money received)
- currency: ISO 4217 code, e.g. "MYR"
- category: string, optional, e.g. "Food & Dining", "Transportation", "Shopping", "Transfer"
- reference: string, optional reference or transaction number
- notes: string, optional short description
- transaction_date: ISO 8601 date, optional, only if shown
- app_name: string, optional, the banking or wallet app this came from
- confidence: number between 0 and 1, how sure you are about the extraction

When is_transaction is false, return {"is_transaction": false, "confidence": 0}.
"""

TEXT_EXAMPLES = """
Examples:
"You spent RM 45.50 at Starbucks" ->
{"is_transaction": true, "amount": 45.50, "merchant": "Starbucks", "type": "debit", "currency": "MYR", "category": "Food & Dining", "confidence": 0.95}
"Received RM 100.00 from John Doe" ->
{"is_transaction": true, "amount": 100.00, "merchant": "John Doe", "type": "credit", "currency": "MYR", "category": "Transfer", "confidence": 0.9}
"Your OTP is 123456" ->
{"is_transaction": false, "confidence": 0}
"""


def _strip_code_fences(text: str) -> str:
    return _CODE_FENCE.sub("", text).replace("```", "").strip()


def parse_extraction(raw_text: str, source_text: str | None = None) -> ExtractedTransaction:
    cleaned = _strip_code_fences(raw_text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("[AI] Could not parse model output as JSON: %s", cleaned[:200])
        raise ExtractionError(f"Failed to parse AI response: {cleaned[:200]}", source_text) from exc
    try:
        return ExtractedTransaction.model_validate(data)
    except ValidationError as exc:
        logger.error("[AI] Model output failed validation: %s", exc)
        raise ExtractionError(f"AI response failed validation: {exc}", source_text) from exc


class OpenAIExtractor(TransactionExtractor):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.client = client or AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model

    async def extract_from_text(self, text: str) -> ExtractedTransaction:
        prompt = f"""
        Extract the transaction from this banking notification.
        Notification: "{text}"
        {RESPONSE_FORMAT}
        {TEXT_EXAMPLES}
        """
        raw = await self._complete(prompt, source_text=text)
        extracted = parse_extraction(raw, source_text=text)
        logger.info(
            "[AI] Text extraction: is_transaction=%s merchant=%s amount=%s confidence=%s",
            extracted.is_transaction,
            extracted.merchant,
            extracted.amount,
            extracted.confidence,
        )
        return extracted

    async def extract_from_image(
        self, image_base64: str, metadata: dict[str, Any] | None = None
    ) -> ExtractedTransaction:
        hints = self._format_hints(metadata or {})
        prompt = f"""
        Extract the transaction shown in this screenshot of a banking or wallet app.
        {hints}
        {RESPONSE_FORMAT}
        """
        content = [
            {"type": "input_text", "text": prompt},
            {"type": "input_image", "image_url": f"data:image/jpeg;base64,{image_base64}"},
        ]
        raw = await self._complete([{"role": "user", "content": content}])
        extracted = parse_extraction(raw)
        logger.info(
            "[AI] Image extraction: is_transaction=%s merchant=%s amount=%s confidence=%s",
            extracted.is_transaction,
            extracted.merchant,
            extracted.amount,
            extracted.confidence,
        )
        return extracted

    async def validate(self) -> bool:
        try:
            await self.extract_from_text("You spent RM 10.00 at Test Store")
            return True
        except Exception as exc:
            logger.warning("[AI] Credential validation failed: %s", exc)
            return False

    @staticmethod
    def _format_hints(metadata: dict[str, Any]) -> str:
        lines = []
        if metadata.get("app_package_name"):
            lines.append(f"The screenshot was taken in the app '{metadata['app_package_name']}'.")
        if metadata.get("timestamp"):
            lines.append(f"It was captured at {metadata['timestamp']}.")
        if metadata.get("user_payee"):
            lines.append(f"The user says the payee is '{metadata['user_payee']}'; normalise it as the merchant.")
        if metadata.get("user_remarks"):
            lines.append(f"User remarks: {metadata['user_remarks']}")
        return "\n        ".join(lines)

    async def _complete(self, prompt: Any, source_text: str | None = None) -> str:
        try:
            response = await self.client.responses.create(
                model=self.model,
                instructions=INSTRUCTIONS,
                input=prompt,
                temperature=0.0,
            )
        except Exception as exc:
            logger.error("[AI] Model call failed: %s", exc)
            raise ExtractionError("Failed to extract transaction data", source_text) from exc

        output = self._extract_output_text(response)
        if output is None:
            raise ExtractionError("AI response contained no text", source_text)
        return output

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if output_text:
            return output_text

        output = getattr(response, "output", None)
        if not output:
            return None

        parts: list[str] = []
        for item in output:
            content = getattr(item, "content", None)
            if not content:
                continue
            for block in content:
                if getattr(block, "type", None) in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)

        if parts:
            return "".join(parts)
        return None
