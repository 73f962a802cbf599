from dataclasses import dataclass, field

from expense_capture.domain.accounts import AccountDefinition, AccountRegistry, match_pattern
from expense_capture.logger import get_logger
from expense_capture.models import ExtractedTransaction

logger = get_logger(__name__)

PACKAGE_MATCH_SCORE = 100
APP_KEYWORD_SCORE = 80
MERCHANT_PATTERN_SCORE = 50
RECENT_USAGE_SCORE = 10


@dataclass(frozen=True)
class ScoredAccount:
    account: AccountDefinition
    score: int

    @property
    def id(self) -> str:
        return self.account.id


@dataclass(frozen=True)
class DetectionResult:
    selected_account_id: str | None
    confidence: float
    candidates: tuple[ScoredAccount, ...] = field(default_factory=tuple)

    @property
    def accounts(self) -> list[AccountDefinition]:
        return [candidate.account for candidate in self.candidates]


class AccountDetector:
    """
    Scores every registered account against the available signals and owns the
    recently-used list that both scoring and the account picker read from.
    """

    def __init__(
        self,
        registry: AccountRegistry,
        auto_select_threshold: int = 80,
        max_recent: int = 5,
    ) -> None:
        self.registry = registry
        self.auto_select_threshold = auto_select_threshold
        self.max_recent = max(1, max_recent)
        self._recent: list[str] = []

    def score(
        self,
        account: AccountDefinition,
        package_name: str | None = None,
        merchant: str | None = None,
        app_name: str | None = None,
    ) -> int:
        matchers = account.matchers
        total = 0

        if package_name and package_name in matchers.package_names:
            total += PACKAGE_MATCH_SCORE

        if app_name:
            normalized_app = app_name.lower()
            if any(keyword and keyword.lower() in normalized_app for keyword in matchers.keywords):
                total += APP_KEYWORD_SCORE

        if merchant:
            if any(match_pattern(merchant, pattern) for pattern in matchers.merchant_patterns):
                total += MERCHANT_PATTERN_SCORE

        if account.id in self._recent:
            total += RECENT_USAGE_SCORE

        return total

    def detect(
        self,
        package_name: str | None = None,
        extracted: ExtractedTransaction | None = None,
        app_name: str | None = None,
    ) -> DetectionResult:
        merchant = extracted.merchant if extracted else None
        scored = []
        for account in self.registry.all():
            value = self.score(account, package_name=package_name, merchant=merchant, app_name=app_name)
            if value > 0:
                scored.append(ScoredAccount(account=account, score=value))

        # sorted() is stable: equal scores keep registry order.
        candidates = tuple(sorted(scored, key=lambda item: item.score, reverse=True))
        if not candidates:
            logger.debug("[DETECT] No account matched (package=%s).", package_name)
            return DetectionResult(selected_account_id=None, confidence=0.0)

        top = candidates[0]
        confidence = top.score / 100
        selected = top.id if top.score >= self.auto_select_threshold else None
        logger.debug(
            "[DETECT] Top candidate %s scored %s (selected=%s, candidates=%s).",
            top.id,
            top.score,
            selected is not None,
            len(candidates),
        )
        return DetectionResult(
            selected_account_id=selected,
            confidence=confidence,
            candidates=candidates,
        )

    def record_usage(self, account_id: str) -> None:
        if account_id in self._recent:
            self._recent.remove(account_id)
        self._recent.insert(0, account_id)
        del self._recent[self.max_recent:]

    def recent_ids(self) -> list[str]:
        return list(self._recent)

    def recent_accounts(self) -> list[AccountDefinition]:
        accounts = []
        for account_id in self._recent:
            account = self.registry.get(account_id)
            if account:
                accounts.append(account)
        return accounts

    def picker_order(self, suggested: list[AccountDefinition] | None = None) -> list[AccountDefinition]:
        """Suggested matches first, else recent accounts first when enabled, then the rest."""
        if suggested:
            leading = list(suggested)
        elif self.registry.preferences.show_recent_accounts_first:
            leading = self.recent_accounts()
        else:
            leading = []

        leading_ids = {account.id for account in leading}
        rest = [account for account in self.registry.all() if account.id not in leading_ids]
        return leading + rest
