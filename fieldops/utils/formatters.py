"""
Formatting helpers shared by the draft engine, the JSON adapter and the CLI.
"""
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Union, Optional


def money(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format an amount as US-style money.

    Examples:
        money(1500) -> "$1,500.00"
        money(-20) -> "-$20.00"
        money(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = '-' if num < 0 else ''
    return f"{sign}${abs(num):,.2f}"


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp returned by the remote store."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value

    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def timestamp_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp for JSON responses."""
    if value is None:
        return None
    return value.isoformat()


def accepted_date(value: Union[str, datetime, None]) -> str:
    """Short acceptance date for change-order listings (e.g. 3/14/2026)."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return ""
    return f"{parsed.month}/{parsed.day}/{parsed.year}"
