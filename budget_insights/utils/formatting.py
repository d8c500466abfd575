"""
Human-readable formatting for generated titles and descriptions.
"""

from .constants import AMOUNT_SCALE_FACTOR, CURRENCY_DECIMALS


def format_cents(amount_cents: float, currency: str = "EUR") -> str:
    """Format an amount in cents, e.g. 123456 -> '1,234.56 EUR'."""
    return f"{amount_cents / AMOUNT_SCALE_FACTOR:,.{CURRENCY_DECIMALS}f} {currency}"
