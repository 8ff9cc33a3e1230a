"""
Fixed-point conversion between display prices and ledger base units.

Prices and recorded purchase amounts are Decimals with two fractional digits.
The ledger speaks integer base units with PRICE_TOKEN_DECIMALS places. All
comparisons against a price happen in base units so no rounding can let an
underpayment through.
"""
from decimal import Decimal, ROUND_DOWN, ROUND_UP

CENTS = Decimal("0.01")


def to_base_units(amount: Decimal, decimals: int) -> int:
    # Round up: the floor a payment must meet can never be below the display price
    scaled = Decimal(amount).scaleb(decimals).to_integral_value(rounding=ROUND_UP)
    return int(scaled)


def from_base_units(units: int, decimals: int) -> Decimal:
    """Convert base units to a two-place amount, truncating sub-cent dust."""
    return Decimal(units).scaleb(-decimals).quantize(CENTS, rounding=ROUND_DOWN)
