from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from rest_framework.exceptions import ValidationError

MONEY_QUANT = Decimal("0.01")
# Largest amount a DecimalField(max_digits=12, decimal_places=2) column holds.
MAX_MONEY = Decimal("9999999999.99")


def to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def ensure_money_fits(amount, field):
    if abs(amount) > MAX_MONEY:
        raise ValidationError({field: f"Amount cannot exceed {MAX_MONEY}."})
    return amount


def parse_money(value, field):
    """Quantize caller input to cents, raising a field ValidationError when it is not a storable number."""
    try:
        amount = to_money(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: "A valid decimal amount is required."})
    if not amount.is_finite():
        raise ValidationError({field: "A valid decimal amount is required."})
    return ensure_money_fits(amount, field)
