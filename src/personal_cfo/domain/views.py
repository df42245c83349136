from __future__ import annotations

from decimal import Decimal
from typing import Any

from personal_cfo.domain.analytics import BudgetProgress, CategoryAmount, MonthlyAmount
from personal_cfo.domain.currency import (
    ConvertedTotal,
    currency_symbol,
    format_money,
    try_convert_for_display,
)
from personal_cfo.domain.statements import derive_badge, progress_info
from personal_cfo.models import ExchangeRate, Statement, StatementStatus, Transaction


def money(value: Decimal | None, currency: str) -> dict[str, Any]:
    return {
        "amount": None if value is None else str(value),
        "currency": currency,
        "formatted": format_money(value, currency),
    }


def build_total_payload(total: ConvertedTotal) -> dict[str, Any]:
    payload = money(total.amount, total.currency)
    payload["complete"] = total.complete
    payload["using_fixed_fallback"] = total.using_fixed_fallback
    payload["unconverted_currencies"] = sorted(total.unconverted_currencies)
    return payload


def build_rate_payload(rate: ExchangeRate) -> dict[str, Any]:
    return {
        "pen_per_usd": rate.pen_per_usd,
        "usd_per_pen": rate.usd_per_pen,
        "source": rate.source,
        "fetched_at": rate.fetched_at,
        "using_fixed_fallback": rate.using_fixed_fallback,
        "symbols": {"PEN": currency_symbol("PEN"), "USD": currency_symbol("USD")},
    }


def _flags(item: MonthlyAmount | CategoryAmount) -> dict[str, Any]:
    return {
        "complete": item.complete,
        "unconverted_currencies": sorted(item.unconverted_currencies),
    }


def build_monthly_payload(months: list[MonthlyAmount], currency: str) -> list[dict[str, Any]]:
    return [{"month": item.month, **money(item.amount, currency), **_flags(item)} for item in months]


def build_category_payload(totals: list[CategoryAmount], currency: str) -> list[dict[str, Any]]:
    return [
        {
            "category": item.category,
            "transaction_count": item.transaction_count,
            **money(item.amount, currency),
            **_flags(item),
        }
        for item in totals
    ]


def build_budget_payload(progress: BudgetProgress) -> dict[str, Any]:
    return {
        "budget_id": progress.budget_id,
        "category": progress.category,
        "currency": progress.currency,
        "spent": money(progress.spent, progress.currency),
        "limit": money(progress.limit, progress.currency),
        "percentage": progress.percentage,
        "level": progress.level,
    }


def build_transaction_payload(
    transaction: Transaction,
    target: str,
    rate: ExchangeRate | None,
) -> dict[str, Any]:
    payload = transaction.model_dump(mode="json")
    payload["display"] = money(
        try_convert_for_display(transaction.amount, transaction.currency, target, rate),
        target,
    )
    return payload


def build_statement_payload(
    statement: Statement,
    live_status: StatementStatus | None = None,
    polling: bool = False,
) -> dict[str, Any]:
    record = live_status or statement
    badge = derive_badge(record)
    progress = progress_info(statement, live_status)
    payload = statement.model_dump(mode="json")
    payload.update({
        "badge": badge.value,
        "in_progress": polling or badge.in_progress,
        "polling": polling,
        "progress": {"percentage": progress.percentage, "step": progress.step},
    })
    return payload
