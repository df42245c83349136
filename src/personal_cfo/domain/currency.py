"""Currency normalization for display totals.

Amounts arrive as decimal strings. Conversion happens at full ``Decimal``
precision and is rounded once, when the final figure is shown. Converted
values are display-only and are never sent back to the backend.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Protocol

from personal_cfo.logger import get_logger
from personal_cfo.models import ExchangeRate

logger = get_logger(__name__)

CENT = Decimal("0.01")
SUPPORTED_PAIR = frozenset({"PEN", "USD"})

_SYMBOLS = {
    "PEN": "S/",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}


class ExchangeRateUnavailableError(Exception):
    """Raised when amounts in different currencies are combined without a rate."""

    def __init__(self, source: str, target: str) -> None:
        super().__init__(f"No exchange rate available to convert {source} to {target}")
        self.source = source
        self.target = target


class MoneyLike(Protocol):
    amount: str
    currency: str


@dataclass(frozen=True)
class ConvertedTotal:
    amount: Decimal | None
    currency: str
    using_fixed_fallback: bool = False
    unconverted_currencies: frozenset[str] = field(default_factory=frozenset)

    @property
    def complete(self) -> bool:
        return self.amount is not None


def to_decimal(amount: str | int | float | Decimal | None) -> Decimal:
    if amount is None or amount == "":
        return Decimal("0")
    if isinstance(amount, Decimal):
        return amount
    try:
        return Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc


def round_for_display(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_code(code: str | None, default: str = "PEN") -> str:
    return (code or default).strip().upper()


def convert_amount(
    amount: str | int | float | Decimal,
    source: str,
    target: str,
    rate: ExchangeRate | None,
) -> Decimal:
    value = to_decimal(amount)
    source_code = normalize_code(source)
    target_code = normalize_code(target)
    if source_code == target_code:
        return value
    # The rate only covers PEN/USD; any other pair has no rate at all.
    if rate is None or {source_code, target_code} != SUPPORTED_PAIR:
        raise ExchangeRateUnavailableError(source_code, target_code)
    pen_per_usd = Decimal(str(rate.pen_per_usd))
    if source_code == "PEN":
        return value / pen_per_usd
    return value * pen_per_usd


def convert_for_display(
    amount: str | int | float | Decimal,
    source: str,
    target: str,
    rate: ExchangeRate | None,
) -> Decimal:
    return round_for_display(convert_amount(amount, source, target, rate))


def try_convert_for_display(
    amount: str | int | float | Decimal,
    source: str,
    target: str,
    rate: ExchangeRate | None,
) -> Decimal | None:
    """Like ``convert_for_display`` but yields ``None`` when no rate applies."""
    try:
        return convert_for_display(amount, source, target, rate)
    except ExchangeRateUnavailableError as exc:
        logger.debug("[FX] %s", exc)
        return None


def _converted_values(
    items: Iterable[MoneyLike],
    target: str,
    rate: ExchangeRate | None,
    absolute: bool,
) -> Iterable[Decimal]:
    for item in items:
        value = convert_amount(item.amount, item.currency, target, rate)
        yield abs(value) if absolute else value


def total_in_currency(
    items: Iterable[MoneyLike],
    target: str,
    rate: ExchangeRate | None,
    *,
    absolute: bool = False,
) -> Decimal:
    """Sum ``items`` in ``target``.

    Raises ``ExchangeRateUnavailableError`` on the first item that cannot be
    converted; use ``summarize`` for a total that degrades to a placeholder.
    """
    total = sum(_converted_values(items, target, rate, absolute), Decimal("0"))
    return round_for_display(total)


def summarize(
    items: Iterable[MoneyLike],
    target: str,
    rate: ExchangeRate | None,
    *,
    absolute: bool = False,
) -> ConvertedTotal:
    target_code = normalize_code(target)
    total = Decimal("0")
    unconverted: set[str] = set()
    for item in items:
        try:
            value = convert_amount(item.amount, item.currency, target_code, rate)
        except ExchangeRateUnavailableError as exc:
            unconverted.add(exc.source)
            continue
        total += abs(value) if absolute else value

    if unconverted:
        logger.info(
            "[FX] Total in %s withheld; no rate for %s.",
            target_code,
            ", ".join(sorted(unconverted)),
        )
        return ConvertedTotal(
            amount=None,
            currency=target_code,
            unconverted_currencies=frozenset(unconverted),
        )

    return ConvertedTotal(
        amount=round_for_display(total),
        currency=target_code,
        using_fixed_fallback=bool(rate and rate.using_fixed_fallback),
    )


def currency_symbol(code: str) -> str:
    normalized = normalize_code(code)
    return _SYMBOLS.get(normalized, f"{normalized} ")


def format_money(value: Decimal | None, currency: str) -> str:
    if value is None:
        return "n/a"
    rounded = round_for_display(value)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{currency_symbol(currency)}{abs(rounded):,.2f}"
