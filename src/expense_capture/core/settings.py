import os
from collections.abc import Callable
from typing import Any

from dotenv import find_dotenv, load_dotenv

from expense_capture.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"
ACCOUNTS_FILENAME = "account-mapping.json"

_CONFIG_KEYS = (
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "LOG_DIR",
    "ACCOUNTS_FILE",
    "ALLOWED_APPS",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "LUNCH_MONEY_TOKEN",
    "LUNCH_MONEY_URL",
    "LOCATIONIQ_API_KEY",
    "LOCATIONIQ_URL",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "AUTO_SELECT_THRESHOLD",
    "MIN_EXTRACTION_CONFIDENCE",
    "MAX_RECENT_ACCOUNTS",
    "CONVERSATION_MAX_AGE",
    "CONVERSATION_SWEEP_INTERVAL",
    "API_RETRY_LIMIT",
    "API_RETRY_BACKOFF",
    "DEFAULT_CURRENCY",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def _resolve_config_dir() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return config_dir
    return os.path.join(os.getcwd(), "config")


def _resolve_config_path() -> str:
    candidate = os.path.join(_resolve_config_dir(), CONFIG_FILENAME)
    if os.path.exists(candidate) or os.getenv("CONFIG_DIR"):
        return candidate
    return os.path.join(os.getcwd(), CONFIG_FILENAME)


def _strip_inline_comment(raw_value: str) -> str:
    in_single = False
    in_double = False
    escaped = False
    for index, char in enumerate(raw_value):
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"' and not in_single:
            in_double = not in_double
            continue
        if char == "'" and not in_double:
            in_single = not in_single
            continue
        if char == "#" and not in_single and not in_double:
            return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) < 2:
        return raw_value
    if raw_value[0] == raw_value[-1] == '"':
        return raw_value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    if raw_value[0] == raw_value[-1] == "'":
        return raw_value[1:-1].replace("\\'", "'").replace("\\\\", "\\")
    return raw_value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read flat ``KEY: value`` lines; nested YAML is not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            if not key:
                continue
            cleaned = _strip_inline_comment(raw_value).strip()
            if not cleaned:
                continue
            value = _unquote_value(cleaned)
            if value:
                values[key] = value
    return values


def load_environment() -> None:
    """Load .env, then fill keys still unset from config.yaml."""
    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    file_values = read_config_file(_resolve_config_path())
    for key in _CONFIG_KEYS:
        if key not in os.environ and key in file_values:
            os.environ[key] = file_values[key]


def get_accounts_path() -> str:
    explicit = os.getenv("ACCOUNTS_FILE")
    if explicit:
        return explicit
    return os.path.join(_resolve_config_dir(), ACCOUNTS_FILENAME)


def ensure_dir(path: str | None) -> None:
    if path and path not in {".", "./"}:
        os.makedirs(path, exist_ok=True)


def _get_env_number(name: str, default: Any, cast: Callable[[str], Any], min_value: Any = None) -> Any:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s='%s' below minimum %s, using default %s.", name, raw, min_value, default)
        return default
    return value


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    return _get_env_number(name, default, int, min_value)


def get_env_float(name: str, default: float, min_value: float | None = None) -> float:
    return _get_env_number(name, default, float, min_value)


def parse_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    items: list[str] = []
    seen = set()
    for part in raw.split(","):
        item = part.strip()
        if item and item not in seen:
            items.append(item)
            seen.add(item)
    return items


def get_env_list(name: str) -> list[str]:
    return parse_list(os.getenv(name))


_SENSITIVE_ENV_KEYS = (
    "KEY",
    "TOKEN",
    "SECRET",
    "PASSWORD",
    "PASS",
    "AUTH",
    "BEARER",
    "PRIVATE",
)


def _should_mask_env_value(name: str, value: str) -> bool:
    upper_name = name.upper()
    if any(marker in upper_name for marker in _SENSITIVE_ENV_KEYS):
        return True
    if value.startswith("sk-") or value.startswith("rk-"):
        return True
    if value.startswith("Bearer ") or value.startswith("bearer "):
        return True
    return False


def mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not _should_mask_env_value(name, sanitized):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


DEFAULT_AUTO_SELECT_THRESHOLD = 80
DEFAULT_MIN_EXTRACTION_CONFIDENCE = 0.4
DEFAULT_MAX_RECENT_ACCOUNTS = 5
DEFAULT_CONVERSATION_MAX_AGE = 3600.0
DEFAULT_CONVERSATION_SWEEP_INTERVAL = 300.0
DEFAULT_API_RETRY_LIMIT = 3
DEFAULT_API_RETRY_BACKOFF = 1.0
DEFAULT_CURRENCY_CODE = "myr"

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_LUNCH_MONEY_URL = "https://dev.lunchmoney.app/v1"
DEFAULT_LOCATIONIQ_URL = "https://us1.locationiq.com/v1"


load_environment()

LOG_DIR = os.getenv("LOG_DIR")

ensure_dir(LOG_DIR)

AUTO_SELECT_THRESHOLD = get_env_int(
    "AUTO_SELECT_THRESHOLD",
    DEFAULT_AUTO_SELECT_THRESHOLD,
    min_value=1,
)
MIN_EXTRACTION_CONFIDENCE = get_env_float(
    "MIN_EXTRACTION_CONFIDENCE",
    DEFAULT_MIN_EXTRACTION_CONFIDENCE,
    min_value=0.0,
)
CONVERSATION_MAX_AGE = get_env_float(
    "CONVERSATION_MAX_AGE",
    DEFAULT_CONVERSATION_MAX_AGE,
    min_value=1.0,
)
CONVERSATION_SWEEP_INTERVAL = get_env_float(
    "CONVERSATION_SWEEP_INTERVAL",
    DEFAULT_CONVERSATION_SWEEP_INTERVAL,
    min_value=1.0,
)
API_RETRY_LIMIT = get_env_int("API_RETRY_LIMIT", DEFAULT_API_RETRY_LIMIT, min_value=0)
API_RETRY_BACKOFF = get_env_float("API_RETRY_BACKOFF", DEFAULT_API_RETRY_BACKOFF, min_value=0.0)
DEFAULT_CURRENCY = (os.getenv("DEFAULT_CURRENCY") or DEFAULT_CURRENCY_CODE).lower()
