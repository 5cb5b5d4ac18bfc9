"""
Deterministic money math.

All prices are rounded half-up to 2 decimals through Decimal so that
999 at 20% off is exactly 799.20 and removing the discount restores 999.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, str, Decimal]

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Number) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def round_money(value: Number) -> float:
    return float(to_money(value))


def discounted_price(base_price: Number, percentage: Number) -> float:
    """base * (1 - p/100), rounded to cents."""
    base = Decimal(str(base_price))
    factor = (HUNDRED - Decimal(str(percentage))) / HUNDRED
    return round_money(base * factor)


def price_multiplier(percentage: Number, operation: str) -> Decimal:
    """1 - p/100 for "decrease", 1 + p/100 for "increase"."""
    delta = Decimal(str(percentage)) / HUNDRED
    return Decimal(1) - delta if operation == "decrease" else Decimal(1) + delta


def apply_multiplier(price: Number, multiplier: Number) -> float:
    return round_money(Decimal(str(price)) * Decimal(str(multiplier)))


def format_number(value: Number) -> str:
    """999 -> "999", 799.2 -> "799.2", 10.50 -> "10.5"."""
    try:
        amount = to_money(value)
    except (ArithmeticError, ValueError):
        return "0"
    if amount == amount.to_integral_value():
        return str(int(amount))
    return format(amount, "f").rstrip("0").rstrip(".")


def format_usd(value: Number) -> str:
    return f"${format_number(value)}"
