"""
app/services/init_data.py

Purpose: Telegram Mini App launch data handling

- Parses the raw initData query string
- Resolves start_param from every place Telegram may put it
- Builds the BridgeAttribution record sent to the relay
- Verifies the initData HMAC signature on the relay side
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlparse

from app.core.logging import get_logger
from app.schemas.bridge import BridgeAttribution, UserData

logger = get_logger(__name__)

# Query parameters that carry the startapp value in the launch URL
LAUNCH_URL_START_KEYS = ("tgWebAppStartParam", "startapp")


class InitDataError(Exception):
    """Raised when initData is missing, malformed or has a bad signature."""
    pass


def parse_init_data(raw: Optional[str]) -> Dict[str, Any]:
    """
    Decodes an initData query string into a dict.

    The `user`, `receiver` and `chat` fields are JSON inside the query
    string and are decoded; a field that is not valid JSON is kept raw.
    """
    if not raw:
        return {}

    fields: Dict[str, Any] = dict(parse_qsl(raw, keep_blank_values=True))
    for key in ("user", "receiver", "chat"):
        value = fields.get(key)
        if value:
            try:
                fields[key] = json.loads(value)
            except ValueError:
                logger.warning(f"initData field '{key}' is not valid JSON")
    return fields


def _launch_url_params(launch_url: Optional[str]) -> Dict[str, str]:
    if not launch_url:
        return {}
    parsed = urlparse(launch_url)
    params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    # Telegram puts tgWebApp* params in the fragment
    params.update(parse_qsl(parsed.fragment, keep_blank_values=True))
    return params


def resolve_start_param(
    init_data_unsafe: Optional[Dict[str, Any]] = None,
    raw_fields: Optional[Dict[str, Any]] = None,
    launch_url: Optional[str] = None,
) -> Optional[str]:
    """
    Finds the campaign tag, first non-empty source wins:
    initDataUnsafe, raw initData, then the launch URL.
    """
    candidates = [
        (init_data_unsafe or {}).get("start_param"),
        (raw_fields or {}).get("start_param"),
    ]
    url_params = _launch_url_params(launch_url)
    candidates.extend(url_params.get(key) for key in LAUNCH_URL_START_KEYS)

    for value in candidates:
        if value:
            return str(value)
    return None


def extract_attribution(
    init_data_unsafe: Optional[Dict[str, Any]] = None,
    init_data_raw: Optional[str] = None,
    platform: Optional[str] = None,
    version: Optional[str] = None,
    launch_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[BridgeAttribution]:
    """
    Builds the attribution record from the Mini App launch context.

    Returns None when there is no Telegram context at all. A missing user id
    still yields a record (with telegram_id=None) so the relay can reject it.
    """
    if init_data_unsafe is None and not init_data_raw:
        logger.error("Telegram WebApp context not available")
        return None

    raw_fields = parse_init_data(init_data_raw)
    unsafe = init_data_unsafe or {}

    user = unsafe.get("user") or raw_fields.get("user") or {}
    if not isinstance(user, dict):
        user = {}

    telegram_id = user.get("id")
    if not telegram_id:
        logger.warning("No telegram_id found in initData")

    start_param = resolve_start_param(unsafe, raw_fields, launch_url)
    timestamp = (now or datetime.now(timezone.utc)).isoformat().replace("+00:00", "Z")

    record = BridgeAttribution(
        telegram_id=telegram_id or None,
        start_param=start_param,
        init_data=init_data_raw or "",
        user_data=UserData(
            id=user.get("id"),
            first_name=user.get("first_name"),
            last_name=user.get("last_name"),
            username=user.get("username"),
            language_code=user.get("language_code"),
            is_premium=user.get("is_premium", False),
        ),
        timestamp=timestamp,
        platform=platform or "unknown",
        version=version or "unknown",
    )

    logger.info(
        f"Extracted attribution: telegram_id={record.telegram_id}, "
        f"start_param={record.start_param}, platform={record.platform}"
    )
    return record


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode("utf-8"), hashlib.sha256).digest()


def build_data_check_string(fields: Dict[str, str]) -> str:
    """Sorted `key=value` lines joined by newlines, hash excluded."""
    return "\n".join(f"{k}={fields[k]}" for k in sorted(fields) if k != "hash")


def sign_init_data(fields: Dict[str, str], bot_token: str) -> str:
    """Computes the hex hash Telegram attaches to initData."""
    check_string = build_data_check_string(fields).encode("utf-8")
    return hmac.new(_secret_key(bot_token), check_string, hashlib.sha256).hexdigest()


def verify_init_data(
    raw: str,
    bot_token: str,
    max_age_seconds: int = 0,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Validates the initData signature against the bot token.

    Args:
        raw: initData query string as received from the Mini App
        bot_token: Telegram bot token
        max_age_seconds: reject auth_date older than this; 0 disables the check
        now: current unix time, for tests

    Returns:
        Parsed initData fields (user decoded)

    Raises:
        InitDataError: if the data is missing, unsigned, tampered or stale
    """
    if not raw:
        raise InitDataError("initData is empty")

    fields = dict(parse_qsl(raw, keep_blank_values=True))
    received_hash = fields.pop("hash", None)
    if not received_hash:
        raise InitDataError("initData has no hash")

    expected = sign_init_data(fields, bot_token)
    if not hmac.compare_digest(expected, received_hash):
        raise InitDataError("initData signature mismatch")

    if max_age_seconds > 0:
        auth_date = fields.get("auth_date", "")
        if not auth_date.isdigit():
            raise InitDataError("initData has no valid auth_date")
        current = now if now is not None else time.time()
        if current - int(auth_date) > max_age_seconds:
            raise InitDataError("initData is expired")

    return parse_init_data(raw)
