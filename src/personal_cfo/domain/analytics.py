from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from personal_cfo.domain.currency import (
    ExchangeRateUnavailableError,
    MoneyLike,
    convert_amount,
    round_for_display,
    to_decimal,
)
from personal_cfo.logger import get_logger
from personal_cfo.models import Budget, CategorySpending, ExchangeRate, SpendingTrend, Transaction

logger = get_logger(__name__)

UNCATEGORIZED = "Uncategorized"

BudgetLevel = Literal["ok", "warning", "over"]


@dataclass(frozen=True)
class MonthlyAmount:
    month: str
    amount: Decimal
    unconverted_currencies: frozenset[str] = field(default_factory=frozenset)

    @property
    def complete(self) -> bool:
        return not self.unconverted_currencies


@dataclass(frozen=True)
class CategoryAmount:
    category: str
    amount: Decimal
    transaction_count: int
    unconverted_currencies: frozenset[str] = field(default_factory=frozenset)

    @property
    def complete(self) -> bool:
        return not self.unconverted_currencies


@dataclass(frozen=True)
class BudgetProgress:
    budget_id: str
    category: str
    currency: str
    spent: Decimal
    limit: Decimal
    percentage: int
    level: BudgetLevel


class _Bucket:
    """Running converted sum; rows with no rate are counted out, not added."""

    __slots__ = ("total", "skipped")

    def __init__(self) -> None:
        self.total = Decimal("0")
        self.skipped: set[str] = set()

    def add(self, item: MoneyLike, target: str, rate: ExchangeRate | None) -> None:
        try:
            self.total += abs(convert_amount(item.amount, item.currency, target, rate))
        except ExchangeRateUnavailableError as exc:
            self.skipped.add(exc.source)


def _log_skipped(buckets: Iterable[_Bucket], target: str) -> None:
    skipped = set().union(*(bucket.skipped for bucket in buckets))
    if skipped:
        logger.info(
            "[FX] Left %s out of %s analytics; no rate.",
            ", ".join(sorted(skipped)),
            target,
        )


def month_key(value: str | date) -> str:
    if isinstance(value, date):
        return value.strftime("%Y-%m")
    return value[:7]


def month_window(months: int, end: date | None = None) -> list[str]:
    """Return ``months`` consecutive ``YYYY-MM`` keys ending at ``end``."""
    end = end or date.today()
    year, month = end.year, end.month
    keys: list[str] = []
    for _ in range(max(months, 0)):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    keys.reverse()
    return keys


def monthly_spending(
    transactions: Iterable[Transaction],
    target: str,
    rate: ExchangeRate | None,
    *,
    months: int = 6,
    end: date | None = None,
) -> list[MonthlyAmount]:
    window = month_window(months, end)
    buckets = {key: _Bucket() for key in window}
    for transaction in transactions:
        bucket = buckets.get(month_key(transaction.transaction_date))
        if bucket is not None:
            bucket.add(transaction, target, rate)
    _log_skipped(buckets.values(), target)
    return [
        MonthlyAmount(
            month=key,
            amount=round_for_display(buckets[key].total),
            unconverted_currencies=frozenset(buckets[key].skipped),
        )
        for key in window
    ]


def category_monthly_totals(
    transactions: Iterable[Transaction],
    target: str,
    rate: ExchangeRate | None,
) -> dict[str, dict[str, Decimal]]:
    """Month to category to total; rows with no rate are left out."""
    buckets: dict[str, dict[str, _Bucket]] = defaultdict(lambda: defaultdict(_Bucket))
    for transaction in transactions:
        category = transaction.category or UNCATEGORIZED
        buckets[month_key(transaction.transaction_date)][category].add(transaction, target, rate)
    _log_skipped((b for categories in buckets.values() for b in categories.values()), target)
    return {
        month: {category: round_for_display(bucket.total) for category, bucket in categories.items()}
        for month, categories in sorted(buckets.items())
    }


def _category_amounts(buckets: dict[str, _Bucket], counts: dict[str, int]) -> list[CategoryAmount]:
    totals = [
        CategoryAmount(
            category=category,
            amount=round_for_display(bucket.total),
            transaction_count=counts[category],
            unconverted_currencies=frozenset(bucket.skipped),
        )
        for category, bucket in buckets.items()
    ]
    totals.sort(key=lambda item: (-item.amount, item.category))
    return totals


def category_totals(
    transactions: Iterable[Transaction],
    target: str,
    rate: ExchangeRate | None,
) -> list[CategoryAmount]:
    buckets: dict[str, _Bucket] = defaultdict(_Bucket)
    counts: dict[str, int] = defaultdict(int)
    for transaction in transactions:
        category = transaction.category or UNCATEGORIZED
        buckets[category].add(transaction, target, rate)
        counts[category] += 1
    _log_skipped(buckets.values(), target)
    return _category_amounts(buckets, counts)


def converted_category_spending(
    spending: Iterable[CategorySpending],
    target: str,
    rate: ExchangeRate | None,
) -> list[CategoryAmount]:
    """Merge backend per-currency category rows into one display currency."""
    buckets: dict[str, _Bucket] = defaultdict(_Bucket)
    counts: dict[str, int] = defaultdict(int)
    for row in spending:
        buckets[row.category].add(row, target, rate)
        counts[row.category] += row.transaction_count
    _log_skipped(buckets.values(), target)
    return _category_amounts(buckets, counts)


def _budget_level(percentage: int) -> BudgetLevel:
    if percentage > 100:
        return "over"
    if percentage > 80:
        return "warning"
    return "ok"


def budget_progress(
    budgets: Sequence[Budget],
    category_spending: Sequence[CategorySpending],
) -> list[BudgetProgress]:
    """Compare each budget to the spending row with the same category and currency."""
    index: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
    for row in category_spending:
        index[(row.category.lower(), row.currency.upper())] += to_decimal(row.amount)

    progress: list[BudgetProgress] = []
    for budget in budgets:
        spent = index.get((budget.category.lower(), budget.currency.upper()), Decimal("0"))
        limit = to_decimal(budget.limit_amount)
        if limit > 0:
            percentage = int((spent / limit * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        else:
            percentage = 0
        progress.append(BudgetProgress(
            budget_id=budget.id,
            category=budget.category,
            currency=budget.currency,
            spent=round_for_display(spent),
            limit=round_for_display(limit),
            percentage=percentage,
            level=_budget_level(percentage),
        ))
    return progress


def year_total(trends: Iterable[SpendingTrend]) -> Decimal:
    """Unrounded; callers convert first and round once for display."""
    return sum((abs(to_decimal(trend.amount)) for trend in trends), Decimal("0"))
