"""
Test suite for spending insights
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from retail_ledger.currency import Money, Currency
from retail_ledger.transactions import Transaction, Direction, Category
from retail_ledger.insights import (
    InsightWindow, build_insights, spending_by_category, spending_trend,
    income_vs_expense, filter_window, window_start
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def txn(amount: str, age: timedelta, category: Category = Category.OTHER, seq: int = 1) -> Transaction:
    money = Money(Decimal(amount), Currency.ZAR)
    return Transaction(
        id=f"t{seq}",
        created_at=NOW,
        updated_at=NOW,
        account_id="acc_1",
        timestamp=NOW - age,
        description="entry",
        amount=money,
        direction=Direction.CREDIT if money.is_positive() else Direction.DEBIT,
        category=category,
        sequence=seq,
        balance_after=Money(Decimal('0'), Currency.ZAR)
    )


class TestWindows:

    def test_window_starts_at_oldest_bucket(self):
        assert window_start(InsightWindow.WEEK, NOW) == datetime(2024, 6, 9, tzinfo=timezone.utc)
        assert window_start(InsightWindow.MONTH, NOW) == datetime(2024, 5, 17, tzinfo=timezone.utc)
        assert window_start(InsightWindow.YEAR, NOW) == datetime(2023, 7, 1, tzinfo=timezone.utc)

    def test_year_window_crosses_short_month(self):
        end_of_march = datetime(2024, 3, 31, 18, 30, tzinfo=timezone.utc)
        assert window_start(InsightWindow.YEAR, end_of_march) == datetime(2023, 4, 1, tzinfo=timezone.utc)

    def test_filter_window(self):
        entries = [txn("-1", timedelta(days=1), seq=1), txn("-1", timedelta(days=8), seq=2)]
        assert [t.id for t in filter_window(entries, InsightWindow.WEEK, NOW)] == ["t1"]
        assert len(filter_window(entries, InsightWindow.MONTH, NOW)) == 2

    @pytest.mark.parametrize("window,age", [
        (InsightWindow.WEEK, timedelta(days=6, hours=11)),
        (InsightWindow.MONTH, timedelta(days=29, hours=11)),
        (InsightWindow.YEAR, timedelta(days=349)),
    ])
    def test_boundary_entry_counted_in_totals_and_trend(self, window, age):
        report = build_insights([txn("-100.00", age, Category.SHOPPING)], window, now=NOW)

        assert report.total_expense == Decimal('100.00')
        assert sum(b.spending for b in report.trend) == Decimal('100.00')
        assert report.trend[0].spending == Decimal('100.00')

    @pytest.mark.parametrize("window,age", [
        (InsightWindow.WEEK, timedelta(days=6, hours=13)),
        (InsightWindow.MONTH, timedelta(days=29, hours=13)),
        (InsightWindow.YEAR, timedelta(days=352)),
    ])
    def test_entry_before_oldest_bucket_excluded(self, window, age):
        report = build_insights([txn("-100.00", age, Category.SHOPPING)], window, now=NOW)

        assert report.transaction_count == 0
        assert report.total_expense == Decimal('0')
        assert report.spending_by_category == {}


class TestAggregations:

    def setup_method(self):
        self.entries = [
            txn("-500.00", timedelta(days=5), Category.TRANSFER, 1),
            txn("-87.50", timedelta(days=4), Category.TRANSPORT, 2),
            txn("-159.00", timedelta(days=3), Category.ENTERTAINMENT, 3),
            txn("18500.00", timedelta(days=2), Category.INCOME, 4),
            txn("-245.80", timedelta(hours=2), Category.SHOPPING, 5),
            txn("-54.20", timedelta(hours=3), Category.SHOPPING, 6),
        ]

    def test_spending_by_category_largest_first(self):
        totals = spending_by_category(self.entries)
        assert list(totals.items()) == [
            ("transfer", Decimal('500.00')),
            ("shopping", Decimal('300.00')),
            ("entertainment", Decimal('159.00')),
            ("transport", Decimal('87.50')),
        ]
        assert "income" not in totals

    def test_income_vs_expense(self):
        income, expense = income_vs_expense(self.entries)
        assert income == Decimal('18500.00')
        assert expense == Decimal('1046.50')

    def test_week_trend_has_seven_zero_filled_days(self):
        trend = spending_trend(self.entries, InsightWindow.WEEK, NOW)

        assert len(trend) == 7
        assert trend[0].label == "2024-06-09"
        assert trend[-1].label == "2024-06-15"
        assert trend[-1].spending == Decimal('300.00')
        by_label = {b.label: b for b in trend}
        assert by_label["2024-06-13"].income == Decimal('18500.00')
        assert by_label["2024-06-09"].spending == Decimal('0')

    def test_month_and_year_bucket_counts(self):
        assert len(spending_trend([], InsightWindow.MONTH, NOW)) == 30
        year = spending_trend(self.entries, InsightWindow.YEAR, NOW)
        assert len(year) == 12
        assert year[0].label == "2023-07"
        assert year[-1].label == "2024-06"
        assert year[-1].spending == Decimal('1046.50')

    def test_build_insights(self):
        old = txn("-999.00", timedelta(days=40), Category.SHOPPING, 7)
        report = build_insights(self.entries + [old], InsightWindow.MONTH, now=NOW)

        assert report.transaction_count == 6
        assert report.total_expense == Decimal('1046.50')
        assert report.net == Decimal('17453.50')
        assert report.peak_bucket == "2024-06-10"
        assert report.average_spending == Decimal('1046.50') / 30

        data = report.to_dict()
        assert data["window"] == "month"
        assert data["income_vs_expense"] == {
            "income": "18500.00", "expense": "1046.50", "net": "17453.50"
        }
        assert data["average_spending"] == "34.88"
        assert data["spending_by_category"][0] == {"category": "transfer", "amount": "500.00"}
        assert len(data["trend"]) == 30

    def test_empty_history(self):
        report = build_insights([], InsightWindow.WEEK, now=NOW)

        assert report.transaction_count == 0
        assert report.spending_by_category == {}
        assert report.total_income == Decimal('0')
        assert all(b.spending == 0 for b in report.trend)
        assert report.peak_bucket is None
        assert report.to_dict()["peak_bucket"] is None
