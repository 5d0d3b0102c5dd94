"""
Invoice arithmetic and currency formatting.
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional

CURRENCY_SYMBOLS = {
    "GBP": "£",
    "USD": "$",
    "EUR": "€",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "NGN": "₦",
}

# Currencies quoted without minor units
ZERO_DECIMAL_CURRENCIES = {"JPY"}

CENTS = Decimal("0.01")


def round2(value: float) -> float:
    """Round half up to two decimal places, on the decimal value as written (1.005 -> 1.01)."""
    return float(Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP))


def to_number(value: Any) -> float:
    """Coerce a value to float, treating anything unparseable as zero."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _item_value(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def calculate_line_amount(quantity: Any, rate: Any) -> float:
    return round2(to_number(quantity) * to_number(rate))


def calculate_subtotal(items: Iterable[Any]) -> float:
    """Sum of quantity x rate over the line items."""
    total = 0.0
    for item in items:
        total += to_number(_item_value(item, "quantity")) * to_number(_item_value(item, "rate"))
    return round2(total)


def calculate_tax(subtotal: float, tax_rate: Optional[float]) -> float:
    rate = to_number(tax_rate)
    if rate < 0:
        return 0.0
    return round2(subtotal * rate / 100)


def calculate_discount(subtotal: float, discount_rate: Optional[float]) -> float:
    rate = to_number(discount_rate)
    if rate < 0:
        return 0.0
    return round2(subtotal * rate / 100)


def calculate_total(subtotal: float, tax: float, discount: float, shipping: Optional[float] = 0) -> float:
    return round2(subtotal + tax - discount + to_number(shipping))


def calculate_invoice_totals(
    items: Iterable[Any],
    tax_rate: Optional[float] = 0,
    discount_rate: Optional[float] = 0,
    shipping: Optional[float] = 0
) -> Dict[str, float]:
    """
    Compute every derived amount of an invoice.

    Returns:
        Dict with subtotal, tax_amount, discount_amount, shipping and total
    """
    subtotal = calculate_subtotal(items)
    tax_amount = calculate_tax(subtotal, tax_rate)
    discount_amount = calculate_discount(subtotal, discount_rate)
    return {
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "discount_amount": discount_amount,
        "shipping": to_number(shipping),
        "total": calculate_total(subtotal, tax_amount, discount_amount, shipping),
    }


def get_currency_symbol(currency: str) -> str:
    return CURRENCY_SYMBOLS.get((currency or "").upper(), "$")


def format_currency(amount: float, currency: str = "USD") -> str:
    """
    Format an amount with its currency symbol and thousands separators.

    JPY is shown without decimals, everything else with two.
    """
    symbol = get_currency_symbol(currency)
    value = to_number(amount)
    if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES:
        formatted = f"{math.floor(abs(value) + 0.5):,}"
    else:
        formatted = f"{round2(abs(value)):,.2f}"
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{formatted}"
