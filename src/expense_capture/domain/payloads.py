from datetime import datetime, timezone
from typing import Any

# Below this an all-digit timestamp is read as seconds, not milliseconds.
_EPOCH_SECONDS_CUTOFF = 10_000_000_000


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        numeric = int(value)
        seconds = numeric if numeric < _EPOCH_SECONDS_CUTOFF else numeric / 1000
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return datetime.now(timezone.utc)


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _split_location(raw: Any) -> tuple[str | None, str | None]:
    if not isinstance(raw, str):
        return None, None
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 2 or not all(parts):
        return None, None
    return parts[0], parts[1]


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _coordinates(payload: dict[str, Any]) -> tuple[str | None, str | None]:
    latitude = _optional_str(payload.get("latitude"))
    longitude = _optional_str(payload.get("longitude"))
    if not latitude and not longitude:
        latitude, longitude = _split_location(payload.get("location"))
    return latitude, longitude


def normalize_notification_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Accept both MacroDroid (app/title/text) and standard field names."""
    latitude, longitude = _coordinates(payload)
    return {
        "app_name": _first(payload, "app_name", "app", "package_name") or "",
        "notification_title": _first(payload, "notification_title", "title") or "",
        "notification_text": _first(payload, "notification_text", "text") or "",
        "timestamp": parse_timestamp(payload.get("timestamp")),
        "latitude": latitude,
        "longitude": longitude,
    }


def normalize_screenshot_payload(payload: dict[str, Any]) -> dict[str, Any]:
    latitude, longitude = _coordinates(payload)
    metadata = payload.get("metadata")
    if not isinstance(metadata, dict):
        metadata = None

    user_input = (metadata or {}).get("user_input")
    if not isinstance(user_input, dict):
        user_input = {}

    return {
        "chat_id": payload.get("chat_id") or None,
        "image_base64": _first(payload, "image_base64", "image") or "",
        "app_package_name": _first(payload, "app_package_name", "package_name", "app_name"),
        "timestamp": parse_timestamp(payload.get("timestamp")),
        "latitude": latitude,
        "longitude": longitude,
        "metadata": metadata,
        "user_payee": _optional_str(user_input.get("payee")),
        "user_remarks": _optional_str(user_input.get("remarks")),
    }
