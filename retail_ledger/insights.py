"""
Spending Insights Module

Read-only projections over one account's transactions: spending by category,
a zero-filled spending/income trend and income versus expense. Sums stay in
Decimal; rounding to two places happens only in ``to_dict``.
"""

import calendar
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .currency import quantize_for_display
from .transactions import Transaction, Direction

ZERO = Decimal('0')


class InsightWindow(Enum):
    """Reporting period and its bucket granularity"""
    WEEK = "week"    # 7 daily buckets
    MONTH = "month"  # 30 daily buckets
    YEAR = "year"    # 12 monthly buckets


@dataclass
class TrendBucket:
    label: str
    start: date
    spending: Decimal = ZERO
    income: Decimal = ZERO


@dataclass
class InsightsReport:
    """All insight figures for one account and window"""
    window: InsightWindow
    window_start: datetime
    window_end: datetime
    spending_by_category: Dict[str, Decimal]
    trend: List[TrendBucket]
    total_income: Decimal
    total_expense: Decimal
    transaction_count: int
    average_spending: Decimal = ZERO
    peak_bucket: Optional[str] = None

    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expense

    def to_dict(self) -> Dict[str, Any]:
        """Presentation form with every amount rounded to two places"""
        return {
            "window": self.window.value,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "transaction_count": self.transaction_count,
            "spending_by_category": [
                {"category": name, "amount": str(quantize_for_display(value))}
                for name, value in self.spending_by_category.items()
            ],
            "trend": [
                {
                    "label": bucket.label,
                    "spending": str(quantize_for_display(bucket.spending)),
                    "income": str(quantize_for_display(bucket.income))
                }
                for bucket in self.trend
            ],
            "income_vs_expense": {
                "income": str(quantize_for_display(self.total_income)),
                "expense": str(quantize_for_display(self.total_expense)),
                "net": str(quantize_for_display(self.net))
            },
            "average_spending": str(quantize_for_display(self.average_spending)),
            "peak_bucket": self.peak_bucket
        }


def _is_spending(txn: Transaction) -> bool:
    return txn.direction == Direction.DEBIT and txn.amount.amount < 0


def _is_income(txn: Transaction) -> bool:
    return txn.direction == Direction.CREDIT and txn.amount.amount > 0


def _local(timestamp: datetime, now: datetime) -> datetime:
    if now.tzinfo is not None and timestamp.tzinfo is not None:
        return timestamp.astimezone(now.tzinfo)
    return timestamp


def _shift_months(value: datetime, months: int) -> datetime:
    """Move a datetime by whole calendar months, clamping the day"""
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _bucket_count(window: InsightWindow) -> int:
    if window == InsightWindow.WEEK:
        return 7
    if window == InsightWindow.MONTH:
        return 30
    return 12


def window_start(window: InsightWindow, now: datetime) -> datetime:
    """
    Earliest timestamp included in a window ending at ``now``

    This is the start of the oldest trend bucket (midnight of its first day),
    so everything counted in the totals also lands in a bucket.
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if window == InsightWindow.YEAR:
        return _shift_months(midnight.replace(day=1), -(_bucket_count(window) - 1))
    return midnight - timedelta(days=_bucket_count(window) - 1)


def _bucket_key(timestamp: datetime, window: InsightWindow) -> Tuple[int, ...]:
    if window == InsightWindow.YEAR:
        return (timestamp.year, timestamp.month)
    return (timestamp.year, timestamp.month, timestamp.day)


def _empty_buckets(window: InsightWindow, now: datetime) -> "OrderedDict[Tuple[int, ...], TrendBucket]":
    buckets: "OrderedDict[Tuple[int, ...], TrendBucket]" = OrderedDict()
    if window == InsightWindow.YEAR:
        for i in range(_bucket_count(window) - 1, -1, -1):
            month = _shift_months(now.replace(day=1), -i)
            buckets[(month.year, month.month)] = TrendBucket(
                label=month.strftime("%Y-%m"), start=month.date()
            )
        return buckets

    for i in range(_bucket_count(window) - 1, -1, -1):
        day = (now - timedelta(days=i)).date()
        buckets[(day.year, day.month, day.day)] = TrendBucket(label=day.isoformat(), start=day)
    return buckets


def filter_window(
    transactions: Iterable[Transaction],
    window: InsightWindow,
    now: datetime
) -> List[Transaction]:
    """Transactions whose timestamp falls inside the window"""
    start = window_start(window, now)
    return [t for t in transactions if start <= _local(t.timestamp, now) <= now]


def spending_by_category(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    """Sum of debit amounts per category, largest first"""
    totals: Dict[str, Decimal] = {}
    for txn in transactions:
        if _is_spending(txn):
            name = txn.category.value
            totals[name] = totals.get(name, ZERO) + abs(txn.amount.amount)
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))


def spending_trend(
    transactions: Iterable[Transaction],
    window: InsightWindow,
    now: datetime
) -> List[TrendBucket]:
    """
    Spending and income per bucket, oldest first

    Every bucket of the window is present even when nothing happened in it.
    Transactions outside the bucket range are ignored.
    """
    buckets = _empty_buckets(window, now)
    for txn in transactions:
        bucket = buckets.get(_bucket_key(_local(txn.timestamp, now), window))
        if bucket is None:
            continue
        if _is_spending(txn):
            bucket.spending += abs(txn.amount.amount)
        elif _is_income(txn):
            bucket.income += txn.amount.amount
    return list(buckets.values())


def income_vs_expense(transactions: Iterable[Transaction]) -> Tuple[Decimal, Decimal]:
    """Total income and total expense"""
    income = ZERO
    expense = ZERO
    for txn in transactions:
        if _is_income(txn):
            income += txn.amount.amount
        elif _is_spending(txn):
            expense += abs(txn.amount.amount)
    return income, expense


def build_insights(
    transactions: Iterable[Transaction],
    window: InsightWindow,
    now: Optional[datetime] = None
) -> InsightsReport:
    """
    Compute every insight for one account's transactions

    Args:
        transactions: Transactions of a single account
        window: Reporting window
        now: End of the window (defaults to current UTC time)
    """
    now = now or datetime.now(timezone.utc)
    in_window = filter_window(transactions, window, now)

    trend = spending_trend(in_window, window, now)
    income, expense = income_vs_expense(in_window)

    trend_spending = sum((bucket.spending for bucket in trend), ZERO)
    average = trend_spending / len(trend) if trend else ZERO

    # Earliest bucket wins ties; no peak without spending
    peak = None
    peak_spending = ZERO
    for bucket in trend:
        if bucket.spending > peak_spending:
            peak_spending = bucket.spending
            peak = bucket.label

    return InsightsReport(
        window=window,
        window_start=window_start(window, now),
        window_end=now,
        spending_by_category=spending_by_category(in_window),
        trend=trend,
        total_income=income,
        total_expense=expense,
        transaction_count=len(in_window),
        average_spending=average,
        peak_bucket=peak
    )
