"""Platform fee calculation.

The platform keeps ``fee_rate_percent`` of every escrowed amount; the seller
receives the remainder when funds are released. All values are Decimals
rounded half-up to the currency's minor unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from agrotrust_escrow.domain.enums import CURRENCY_MINOR_UNITS, Currency
from agrotrust_escrow.domain.exceptions import InvalidAmountError

DEFAULT_FEE_RATE_PERCENT = Decimal("1.5")
_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class FeeSplit:
    amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal


def _to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmountError(value)
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as err:
        raise InvalidAmountError(value) from err


def minor_unit_quantum(currency: Currency | str = Currency.USD) -> Decimal:
    """Return the smallest representable amount, e.g. Decimal("0.01")."""
    places = CURRENCY_MINOR_UNITS.get(Currency(currency), 2)
    return Decimal(1).scaleb(-places)


def to_minor_units(amount: Decimal, currency: Currency | str = Currency.USD) -> int:
    """Convert a major-unit amount to an integer count of minor units (cents)."""
    places = CURRENCY_MINOR_UNITS.get(Currency(currency), 2)
    return int(amount.scaleb(places).to_integral_value(rounding=ROUND_HALF_UP))


def calculate_fee_split(
    amount: Decimal | int | float | str,
    fee_rate_percent: Decimal | int | float | str = DEFAULT_FEE_RATE_PERCENT,
    currency: Currency | str = Currency.USD,
) -> FeeSplit:
    """Split a gross amount into platform fee and net payable to the seller.

    Raises:
        InvalidAmountError: If the amount is non-finite or negative, or the
            fee rate is outside 0-100.
    """
    gross = _to_decimal(amount)
    if not gross.is_finite() or gross < 0:
        raise InvalidAmountError(amount)

    rate = _to_decimal(fee_rate_percent)
    if not rate.is_finite() or rate < 0 or rate > _HUNDRED:
        raise InvalidAmountError(fee_rate_percent)

    quantum = minor_unit_quantum(currency)
    gross = gross.quantize(quantum, rounding=ROUND_HALF_UP)
    fee = (gross * rate / _HUNDRED).quantize(quantum, rounding=ROUND_HALF_UP)
    return FeeSplit(amount=gross, fee_amount=fee, net_amount=gross - fee)
