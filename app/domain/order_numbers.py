import re
from datetime import datetime, time
from typing import Iterable, Optional

from app.core.config import settings
from app.domain.schemas import Transaction

_LEADING_INT = re.compile(r"\s*(\d+)")


def start_of_local_day(now: datetime, tz=None) -> datetime:
    """Midnight of ``now``'s calendar day in ``tz``."""
    tz = tz or settings.tz
    local_now = now.astimezone(tz) if now.tzinfo else tz.localize(now)
    return tz.localize(datetime.combine(local_now.date(), time.min))


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def parse_order_number(value: Optional[str]) -> int:
    """Leading integer of an order number; anything else counts as 0."""
    match = _LEADING_INT.match(value or "")
    return int(match.group(1)) if match else 0


def todays_orders(transactions: Iterable[Transaction], now: datetime, tz=None):
    cutoff = to_epoch_ms(start_of_local_day(now, tz))
    return [t for t in transactions if t.timestamp >= cutoff]


def next_order_number(transactions: Iterable[Transaction], now: Optional[datetime] = None, tz=None) -> str:
    """Next human-facing order number for today: highest number so far + 1."""
    tz = tz or settings.tz
    now = now or datetime.now(tz)
    numbers = [parse_order_number(t.order_number) for t in todays_orders(transactions, now, tz)]
    return str(max(numbers, default=0) + 1)
