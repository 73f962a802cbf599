import json
import os
import re
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from expense_capture.errors import AccountConfigError
from expense_capture.logger import get_logger

logger = get_logger(__name__)


class AccountMatchers(BaseModel):
    model_config = ConfigDict(frozen=True)

    package_names: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    merchant_patterns: tuple[str, ...] = ()


class AccountDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    label: str
    icon: str = ""
    color: str | None = None
    tags: tuple[str, ...] = ()
    matchers: AccountMatchers = AccountMatchers()
    default_category: str | None = None
    auto_clear: bool = False
    notes: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.icon} {self.label}".strip()


class AccountPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_account_id: str | None = None
    show_recent_accounts_first: bool = True
    max_recent_accounts: int | None = Field(default=None, ge=1)


class AccountMappingFile(BaseModel):
    accounts: list[AccountDefinition]
    preferences: AccountPreferences = AccountPreferences()


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    escaped = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(escaped, re.IGNORECASE | re.DOTALL)


def match_pattern(text: str, pattern: str) -> bool:
    """Case-insensitive glob match over the whole string (``*`` and ``?`` only)."""
    return _compile_pattern(pattern).fullmatch(text) is not None


class AccountRegistry:
    """Immutable, ordered set of accounts loaded once at startup."""

    def __init__(
        self,
        accounts: list[AccountDefinition],
        preferences: AccountPreferences | None = None,
    ) -> None:
        seen: set[str] = set()
        for account in accounts:
            if account.id in seen:
                raise AccountConfigError(f"Duplicate account id '{account.id}'")
            seen.add(account.id)
        self._accounts = tuple(accounts)
        self._by_id = {account.id: account for account in accounts}
        self.preferences = preferences or AccountPreferences()

    @classmethod
    def from_dict(cls, data: object) -> "AccountRegistry":
        try:
            parsed = AccountMappingFile.model_validate(data)
        except ValidationError as exc:
            raise AccountConfigError(f"Invalid account mapping: {exc}") from exc
        return cls(parsed.accounts, parsed.preferences)

    @classmethod
    def from_file(cls, path: str) -> "AccountRegistry":
        if not os.path.exists(path):
            raise AccountConfigError(f"Account mapping file not found: {path}")
        try:
            with open(path, encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise AccountConfigError(f"Account mapping file is not valid JSON: {exc}") from exc

        registry = cls.from_dict(data)
        logger.info("[ACCOUNTS] Loaded %s account(s) from %s.", len(registry), path)
        return registry

    def __len__(self) -> int:
        return len(self._accounts)

    def get(self, account_id: str) -> AccountDefinition | None:
        return self._by_id.get(account_id)

    def all(self) -> list[AccountDefinition]:
        return list(self._accounts)

    def account_for_package(self, package_name: str) -> AccountDefinition | None:
        for account in self._accounts:
            if package_name in account.matchers.package_names:
                return account
        return None

    def package_identifiers(self) -> list[str]:
        identifiers: list[str] = []
        for account in self._accounts:
            for name in account.matchers.package_names:
                if name not in identifiers:
                    identifiers.append(name)
        return identifiers

    def label_for(self, account_id: str) -> str:
        account = self.get(account_id)
        return account.display_name if account else account_id
