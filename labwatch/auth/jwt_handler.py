from typing import Optional
from datetime import datetime, timezone
from labwatch.core.security import verify_token


def decode_access_token(token: Optional[str]) -> Optional[dict]:
    """Decode and validate access token"""
    if not token:
        return None

    payload = verify_token(token)
    if payload is None:
        return None

    # Check token type
    if payload.get("type") != "access":
        return None

    # Check expiration
    exp = payload.get("exp")
    if exp is None or datetime.now(timezone.utc).timestamp() > exp:
        return None

    # Subject must be a numeric user id
    try:
        int(payload.get("sub"))
    except (TypeError, ValueError):
        return None

    return payload
