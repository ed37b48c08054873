"""
Domain model shared by every carrier adapter.

All types are immutable; adapters build them fresh for each response.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from pydantic import StrictInt, field_validator, model_validator

from shipkit.core.enums import TrackingOutcome, TrackingStatus
from shipkit.schemas.base import BaseSchema
from shipkit.services.shipping.measurement import Amount, Dimension, Unit

# Carriers quote decimal strings with two fractional digits of the currency.
MINOR_UNIT_PLACES = 2


class Address(BaseSchema):
    name: str = ""
    lines: Tuple[str, ...] = ()
    postal_code: str = ""
    city: str = ""
    state: str = ""
    country_code: str = ""
    phone: str = ""


class Parcel(BaseSchema):
    """Three length amounts plus one weight amount"""
    length: Amount
    width: Amount
    height: Amount
    weight: Amount

    @model_validator(mode='after')
    def check_dimensions(self) -> "Parcel":
        for name in ('length', 'width', 'height'):
            if getattr(self, name).dimension is not Dimension.LENGTH:
                raise ValueError(f"Parcel {name} must be a length, got {getattr(self, name).unit.value}")
        if self.weight.dimension is not Dimension.WEIGHT:
            raise ValueError(f"Parcel weight must be a weight, got {self.weight.unit.value}")
        return self

    @classmethod
    def make(
        cls,
        length: Union[Decimal, float, int, str],
        width: Union[Decimal, float, int, str],
        height: Union[Decimal, float, int, str],
        weight: Union[Decimal, float, int, str],
        length_unit: Unit = Unit.CENTIMETER,
        weight_unit: Unit = Unit.KILOGRAM,
    ) -> "Parcel":
        return cls(
            length=Amount(value=length, unit=length_unit),
            width=Amount(value=width, unit=length_unit),
            height=Amount(value=height, unit=length_unit),
            weight=Amount(value=weight, unit=weight_unit),
        )

    def convert_to(self, length_unit: Unit, weight_unit: Unit) -> "Parcel":
        """Return a new parcel expressed in the given unit pair"""
        return Parcel(
            length=self.length.convert_to(length_unit),
            width=self.width.convert_to(length_unit),
            height=self.height.convert_to(length_unit),
            weight=self.weight.convert_to(weight_unit),
        )


class Money(BaseSchema):
    """Integer count of minor currency units plus an ISO 4217 code"""
    amount: StrictInt
    currency: str

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"Currency must be a 3-letter ISO code, got: {v!r}")
        return v

    @classmethod
    def from_decimal_string(cls, value: str, currency: str) -> "Money":
        """
        Convert a carrier decimal string such as ``"12.345"`` into minor units.

        Rounds half away from zero, so ``"12.345"`` becomes 1235.

        Raises:
            ValueError: If the value is not a decimal number
        """
        try:
            decimal_value = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a decimal amount: {value!r}")
        if not decimal_value.is_finite():
            raise ValueError(f"Not a decimal amount: {value!r}")

        minor = decimal_value.scaleb(MINOR_UNIT_PLACES).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return cls(amount=int(minor), currency=currency)


class Quote(BaseSchema):
    carrier: str
    service: str
    price: Money


class TrackingActivity(BaseSchema):
    status: TrackingStatus
    description: str
    date: datetime
    address: Address


class Tracking(BaseSchema):
    """
    Movement history of one shipment, most recent activity first.

    Activity dates are naive local times at the event location because
    neither carrier sends a zone for them. ``estimated_delivery_date`` is
    date-only upstream and is set to 12:00 UTC, so it is timezone-aware.
    Compare it with activity dates by ``.date()``, not directly.
    """
    carrier: str
    service: str
    activities: Tuple[TrackingActivity, ...] = ()
    estimated_delivery_date: Optional[datetime] = None
    parcels: Tuple[Parcel, ...] = ()


class TrackingResult(BaseSchema):
    """
    Outcome of a tracking lookup for one tracking number.

    ``body`` is the raw carrier response and is kept on success too.
    ``message`` is the caller-facing error text on failure.
    """
    status: TrackingOutcome
    tracking_number: str
    body: str
    tracking: Optional[Tracking] = None
    message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status is TrackingOutcome.SUCCESS


class QuoteRequest(BaseSchema):
    sender: Address
    recipient: Address
    parcels: Tuple[Parcel, ...]


class ShipmentRequest(BaseSchema):
    sender: Address
    recipient: Address
    parcels: Tuple[Parcel, ...]
    service: str
    contents: str = ""
    reference: Optional[str] = None
    currency: str = "EUR"
    declared_value: Optional[Decimal] = None
    is_dutiable: bool = False
    shipping_date: Optional[datetime] = None


class Label(BaseSchema):
    carrier: str
    tracking_number: str
    label: bytes
    label_format: str = "PDF"


class PickupRequest(BaseSchema):
    service: str
    address: Address
    earliest_pickup: datetime
    latest_pickup: datetime
    parcels: Tuple[Parcel, ...] = ()


class CancelPickupRequest(BaseSchema):
    service: str
    confirmation_number: str
    address: Address
    pickup_date: datetime
