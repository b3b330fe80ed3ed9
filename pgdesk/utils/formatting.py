from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from ..config import settings


def _group_indian(digits: str) -> str:
    # 12345678 -> 1,23,45,678
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Any, symbol: Optional[str] = None, decimals: bool = False) -> str:
    """Render money the way tenants read it, e.g. ``₹12,345``."""
    if symbol is None:
        symbol = settings.currency_symbol
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount or 0))
    sign = "-" if value < 0 else ""
    value = abs(value)
    if decimals:
        rounded = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        whole, _, fraction = f"{rounded:.2f}".partition(".")
        return f"{sign}{symbol}{_group_indian(whole)}.{fraction}"
    rounded = value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{sign}{symbol}{_group_indian(str(int(rounded)))}"


def format_date(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return f"{value.day} {value.strftime('%b %Y')}"


def isoformat(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)
