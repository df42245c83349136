from datetime import date
from decimal import Decimal

from personal_cfo.domain.analytics import (
    UNCATEGORIZED,
    budget_progress,
    category_monthly_totals,
    category_totals,
    converted_category_spending,
    month_window,
    monthly_spending,
    year_total,
)
from personal_cfo.models import Budget, CategorySpending, ExchangeRate, SpendingTrend, Transaction

RATE = ExchangeRate(
    pen_per_usd=4.0,
    usd_per_pen=0.25,
    source="exchangerate.fun",
    fetched_at=0.0,
)


def _tx(tx_id: str, amount: str, currency: str, when: str, category: str | None = None) -> Transaction:
    return Transaction(
        id=tx_id,
        merchant="m",
        amount=amount,
        currency=currency,
        transaction_date=when,
        category=category,
    )


def test_month_window_crosses_year_boundary() -> None:
    assert month_window(3, date(2024, 2, 15)) == ["2023-12", "2024-01", "2024-02"]
    assert month_window(0, date(2024, 2, 15)) == []


def test_monthly_spending_zero_fills_and_converts() -> None:
    transactions = [
        _tx("1", "-40", "PEN", "2024-01-05"),
        _tx("2", "5", "USD", "2024-01-20"),
        _tx("3", "100", "PEN", "2023-06-01"),
    ]
    months = monthly_spending(transactions, "PEN", RATE, months=3, end=date(2024, 2, 1))
    assert [m.month for m in months] == ["2023-12", "2024-01", "2024-02"]
    assert [m.amount for m in months] == [Decimal("0.00"), Decimal("60.00"), Decimal("0.00")]


def test_category_totals_sorted_with_uncategorized_bucket() -> None:
    transactions = [
        _tx("1", "10", "PEN", "2024-01-01", "Food"),
        _tx("2", "30", "PEN", "2024-01-02"),
        _tx("3", "4", "USD", "2024-01-03", "Food"),
    ]
    totals = category_totals(transactions, "PEN", RATE)
    assert [(t.category, t.amount, t.transaction_count) for t in totals] == [
        (UNCATEGORIZED, Decimal("30.00"), 1),
        ("Food", Decimal("26.00"), 2),
    ]


def test_converted_category_spending_merges_currencies() -> None:
    rows = [
        CategorySpending(category="Food", amount="8", currency="PEN", transaction_count=2),
        CategorySpending(category="Food", amount="1", currency="USD", transaction_count=1),
    ]
    totals = converted_category_spending(rows, "USD", RATE)
    assert totals[0].amount == Decimal("3.00")
    assert totals[0].transaction_count == 3


def test_budget_progress_levels_and_matching() -> None:
    budgets = [
        Budget(id="b1", category="Food", limit_amount="100", currency="PEN", month="2024-01"),
        Budget(id="b2", category="Fun", limit_amount="50", currency="PEN", month="2024-01"),
        Budget(id="b3", category="Travel", limit_amount="200", currency="USD", month="2024-01"),
        Budget(id="b4", category="Empty", limit_amount="0", currency="PEN", month="2024-01"),
    ]
    spending = [
        CategorySpending(category="food", amount="85", currency="pen"),
        CategorySpending(category="Fun", amount="60.5", currency="PEN"),
        CategorySpending(category="Travel", amount="999", currency="PEN"),
    ]
    progress = {p.budget_id: p for p in budget_progress(budgets, spending)}

    assert progress["b1"].percentage == 85
    assert progress["b1"].level == "warning"
    assert progress["b2"].percentage == 121
    assert progress["b2"].level == "over"
    # Spending in another currency does not count toward a USD budget.
    assert progress["b3"].spent == Decimal("0.00")
    assert progress["b3"].level == "ok"
    assert progress["b4"].percentage == 0


def test_budget_percentage_rounds_half_up() -> None:
    budgets = [Budget(id="b", category="Food", limit_amount="200", currency="PEN", month="2024-01")]
    spending = [CategorySpending(category="Food", amount="1", currency="PEN")]
    assert budget_progress(budgets, spending)[0].percentage == 1


def test_year_total_sums_absolute_trends() -> None:
    trends = [SpendingTrend(month="2024-01", amount="10.005"), SpendingTrend(month="2024-02", amount="-5")]
    assert year_total(trends) == Decimal("15.005")


def test_monthly_spending_skips_and_flags_unconvertible_rows() -> None:
    transactions = [
        _tx("1", "-40", "PEN", "2024-01-05"),
        _tx("2", "999", "EUR", "2024-01-06"),
    ]
    months = monthly_spending(transactions, "PEN", RATE, months=2, end=date(2024, 1, 31))
    january = months[-1]
    assert january.amount == Decimal("40.00")
    assert january.unconverted_currencies == frozenset({"EUR"})
    assert not january.complete
    assert months[0].complete


def test_category_totals_never_add_foreign_amounts_as_is() -> None:
    transactions = [
        _tx("1", "10", "PEN", "2024-01-01", "Food"),
        _tx("2", "500", "GBP", "2024-01-02", "Food"),
    ]
    totals = category_totals(transactions, "PEN", RATE)
    assert totals[0].amount == Decimal("10.00")
    assert totals[0].transaction_count == 2
    assert totals[0].unconverted_currencies == frozenset({"GBP"})


def test_category_totals_into_unsupported_target_skip_everything_foreign() -> None:
    transactions = [
        _tx("1", "10", "PEN", "2024-01-01", "Food"),
        _tx("2", "3", "EUR", "2024-01-02", "Food"),
    ]
    totals = category_totals(transactions, "EUR", RATE)
    assert totals[0].amount == Decimal("3.00")
    assert totals[0].unconverted_currencies == frozenset({"PEN"})


def test_converted_category_spending_flags_rows_without_rate() -> None:
    rows = [
        CategorySpending(category="Food", amount="8", currency="PEN", transaction_count=2),
        CategorySpending(category="Food", amount="1", currency="USD", transaction_count=1),
    ]
    totals = converted_category_spending(rows, "USD", None)
    assert totals[0].amount == Decimal("1.00")
    assert totals[0].unconverted_currencies == frozenset({"PEN"})


def test_category_monthly_totals_leave_out_unconvertible_rows() -> None:
    transactions = [
        _tx("1", "10", "PEN", "2024-01-01", "Food"),
        _tx("2", "7", "EUR", "2024-01-02", "Food"),
    ]
    assert category_monthly_totals(transactions, "PEN", RATE) == {
        "2024-01": {"Food": Decimal("10.00")},
    }
