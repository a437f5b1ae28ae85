"""
Telegram Mini App authentication for web redemption

The claim page identifies the redeemer by the Telegram WebApp initData
(HMAC-SHA256 over the sorted fields, keyed by the bot token).
"""

import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from fastapi import Header, HTTPException, Request

# initData older than this is refused
INIT_DATA_EXPIRATION = 86400


def validate_telegram_init_data(
    init_data: str,
    bot_token: str,
    max_age: int = INIT_DATA_EXPIRATION,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Validate Telegram initData using HMAC-SHA256

    Args:
        init_data: Raw initData string from Telegram WebApp
        bot_token: Bot token for signature validation
        max_age: Seconds after auth_date the data stays valid

    Returns:
        dict: {'user': {...}, 'auth_date': int}

    Raises:
        HTTPException: 401 if validation fails
    """
    parsed_data = dict(parse_qsl(init_data, keep_blank_values=True))

    received_hash = parsed_data.pop('hash', None)
    if not received_hash:
        raise HTTPException(status_code=401, detail="Missing hash in init data")

    auth_date = parsed_data.get('auth_date')
    if not auth_date or not auth_date.isdigit():
        raise HTTPException(status_code=401, detail="Missing auth_date in init data")

    current_timestamp = int(time.time()) if now is None else now
    if current_timestamp - int(auth_date) > max_age:
        raise HTTPException(status_code=401, detail="Init data expired")

    data_check_string = '\n'.join(f"{key}={parsed_data[key]}" for key in sorted(parsed_data))

    secret_key = hmac.new(key=b"WebAppData", msg=bot_token.encode(), digestmod=hashlib.sha256).digest()
    calculated_hash = hmac.new(
        key=secret_key,
        msg=data_check_string.encode(),
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(calculated_hash, received_hash):
        raise HTTPException(status_code=401, detail="Invalid hash - signature verification failed")

    try:
        user_data = json.loads(parsed_data.get('user', '{}'))
    except json.JSONDecodeError:
        raise HTTPException(status_code=401, detail="Invalid user data format")

    if not isinstance(user_data, dict) or not isinstance(user_data.get('id'), int):
        raise HTTPException(status_code=401, detail="Missing user in init data")

    return {'user': user_data, 'auth_date': int(auth_date)}


async def get_telegram_user(request: Request, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """
    FastAPI dependency: the Telegram user behind "Authorization: tma <initData>"
    """
    scheme, _, init_data = (authorization or "").partition(" ")
    if scheme.lower() != "tma" or not init_data:
        raise HTTPException(status_code=401, detail="Expected 'tma <initData>' authorization")

    validated = validate_telegram_init_data(init_data, request.app.state.bot_token)
    return validated['user']
