from typing import Any

import pytest

from expense_capture.domain.accounts import AccountRegistry
from expense_capture.models import ExtractedTransaction

ACCOUNT_MAPPING: dict[str, Any] = {
    "accounts": [
        {
            "id": "maybank",
            "label": "Maybank",
            "icon": "🏦",
            "matchers": {
                "package_names": ["com.maybank2u.life"],
                "keywords": ["maybank", "mae"],
                "merchant_patterns": ["Kedai*"],
            },
            "default_category": "Uncategorized",
        },
        {
            "id": "tng",
            "label": "Touch n Go",
            "icon": "💙",
            "matchers": {
                "package_names": ["my.com.tngdigital.ewallet"],
                "keywords": ["tng"],
                "merchant_patterns": ["Kedai*", "Toll*"],
            },
            "default_category": "Transportation",
        },
        {
            "id": "grab",
            "label": "GrabPay",
            "icon": "💚",
            "matchers": {
                "keywords": ["grab"],
                "merchant_patterns": ["Kedai*", "Grab*"],
            },
        },
        {
            "id": "cash",
            "label": "Cash",
            "icon": "💵",
        },
    ],
    "preferences": {"show_recent_accounts_first": True},
}


def make_extracted(**overrides: Any) -> ExtractedTransaction:
    data: dict[str, Any] = {
        "is_transaction": True,
        "amount": 12.5,
        "merchant": "Kedai Runcit",
        "type": "debit",
        "currency": "MYR",
        "category": "Groceries",
        "confidence": 0.9,
    }
    data.update(overrides)
    return ExtractedTransaction.model_validate(data)


@pytest.fixture
def registry() -> AccountRegistry:
    return AccountRegistry.from_dict(ACCOUNT_MAPPING)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
