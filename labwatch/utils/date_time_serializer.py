from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_dates(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively convert values that json cannot encode (dates, enums, decimals)"""
    def convert_value(value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value).isoformat()
        elif isinstance(value, date):
            return value.isoformat()
        elif isinstance(value, Enum):
            return value.value
        elif isinstance(value, Decimal):
            return float(value)
        elif isinstance(value, dict):
            return serialize_dates(value)
        elif isinstance(value, (list, tuple)):
            return [convert_value(item) for item in value]
        return value

    return {key: convert_value(value) for key, value in data.items()}
