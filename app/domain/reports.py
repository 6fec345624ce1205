from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional

from app.core.config import settings
from app.domain.order_numbers import todays_orders
from app.domain.schemas import Transaction


@dataclass
class DailySummary:
    total_sales: int = 0
    total_revenue: float = 0.0
    total_discount: float = 0.0
    average_ticket: float = 0.0
    cancelled_count: int = 0
    method_breakdown: Dict[str, float] = field(default_factory=dict)


def daily_summary(transactions: Iterable[Transaction], now: Optional[datetime] = None, tz=None) -> DailySummary:
    """Totals for today's orders. Cancelled orders are only counted, never summed."""
    tz = tz or settings.tz
    now = now or datetime.now(tz)
    summary = DailySummary()
    for t in todays_orders(transactions, now, tz):
        if t.is_cancelled:
            summary.cancelled_count += 1
            continue
        summary.total_sales += 1
        summary.total_revenue += t.total
        summary.total_discount += t.discount
        method = t.payment_method.value
        summary.method_breakdown[method] = round(summary.method_breakdown.get(method, 0.0) + t.total, 2)

    summary.total_revenue = round(summary.total_revenue, 2)
    summary.total_discount = round(summary.total_discount, 2)
    if summary.total_sales:
        summary.average_ticket = round(summary.total_revenue / summary.total_sales, 2)
    return summary
