from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal


def _dec(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def ceil_whole_units(value: Decimal | float | int | str) -> int:
    # always up: the seller's minimum is never undercut
    return int(_dec(value).to_integral_value(rounding=ROUND_CEILING))


def ceil_cents(value: Decimal | float | int | str) -> int:
    return int((_dec(value) * 100).to_integral_value(rounding=ROUND_CEILING))


def two_decimals(value: Decimal | float | int | str) -> str:
    return str(_dec(value).quantize(Decimal("0.01"), rounding=ROUND_CEILING))


def percent_of_cents(cents: int, percent: int) -> int:
    return int((Decimal(cents) * percent / 100).to_integral_value(rounding=ROUND_HALF_UP))
