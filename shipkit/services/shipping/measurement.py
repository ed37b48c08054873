# shipkit/services/shipping/measurement.py
"""
Measurement Conversion

Exact linear conversion between length and weight units. Carriers mandate a
unit system in their payloads, so every parcel is converted before it is
serialized. Values are kept as Decimal at full precision; rounding to the
two-decimal display precision only happens in ``Amount.format``.
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Any, Union

from pydantic import field_validator

from shipkit.core.exceptions import UnitConversionError
from shipkit.schemas.base import BaseSchema

# Working precision for conversions. Far beyond anything a carrier accepts.
CONVERSION_PRECISION = 40


class Dimension(str, Enum):
    LENGTH = "length"
    WEIGHT = "weight"


class Unit(str, Enum):
    """Supported measurement units"""
    MILLIMETER = "mm"
    CENTIMETER = "cm"
    METER = "m"
    INCH = "in"
    FOOT = "ft"
    GRAM = "g"
    KILOGRAM = "kg"
    OUNCE = "oz"
    POUND = "lb"

    @property
    def dimension(self) -> Dimension:
        return _UNIT_TABLE[self][0]

    @property
    def factor(self) -> Decimal:
        """Size of one unit expressed in the SI base unit (meter or kilogram)"""
        return _UNIT_TABLE[self][1]


_UNIT_TABLE = {
    Unit.MILLIMETER: (Dimension.LENGTH, Decimal("0.001")),
    Unit.CENTIMETER: (Dimension.LENGTH, Decimal("0.01")),
    Unit.METER: (Dimension.LENGTH, Decimal("1")),
    Unit.INCH: (Dimension.LENGTH, Decimal("0.0254")),
    Unit.FOOT: (Dimension.LENGTH, Decimal("0.3048")),
    Unit.GRAM: (Dimension.WEIGHT, Decimal("0.001")),
    Unit.KILOGRAM: (Dimension.WEIGHT, Decimal("1")),
    Unit.OUNCE: (Dimension.WEIGHT, Decimal("0.028349523125")),
    Unit.POUND: (Dimension.WEIGHT, Decimal("0.45359237")),
}


class Amount(BaseSchema):
    """A numeric value tagged with a unit"""
    value: Decimal
    unit: Unit

    @field_validator('value', mode='before')
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        # Go through repr so 0.1 stays 0.1 instead of its binary expansion
        if isinstance(v, float):
            return Decimal(repr(v))
        return v

    @property
    def dimension(self) -> Dimension:
        return self.unit.dimension

    def convert_to(self, unit: Unit) -> "Amount":
        return convert(self, unit)

    def format(self, places: int = 2) -> str:
        """Fixed-point string as carriers expect it, e.g. ``12.30``"""
        quantum = Decimal(1).scaleb(-places)
        return f"{self.value.quantize(quantum, rounding=ROUND_HALF_UP):f}"


def convert(amount: Amount, to_unit: Union[Unit, str]) -> Amount:
    """
    Convert an amount to another unit of the same dimension.

    Args:
        amount: Amount to convert
        to_unit: Target unit

    Returns:
        A new Amount in the target unit

    Raises:
        UnitConversionError: If the units measure different dimensions
    """
    to_unit = Unit(to_unit)
    if amount.unit.dimension is not to_unit.dimension:
        raise UnitConversionError(
            f"Cannot convert {amount.unit.dimension.value} ({amount.unit.value}) "
            f"to {to_unit.dimension.value} ({to_unit.value})"
        )
    if amount.unit is to_unit:
        return amount

    with localcontext() as ctx:
        ctx.prec = CONVERSION_PRECISION
        value = amount.value * amount.unit.factor / to_unit.factor

    return Amount(value=value, unit=to_unit)
