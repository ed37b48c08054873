"""
UPS Carrier Implementation

This module implements the UPS JSON (REST) API integration.

Features:
- Rate shopping (``/Rate`` with RequestOption "Shop")
- Negotiated rates for accounts with a shipper number
- Shipment tracking (``/Track``), one tracking number per request
- Shipment void (``/Void``)

UPS quirks handled here:
- Sender countries in NON_SI_COUNTRIES must use inches and pounds
- A single rate, package or activity is returned as a bare object instead of
  a one-element list, because UPS converts the response from XML
- Tracking responses carry no package dimensions, only weight
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shipkit.core.enums import TrackingOutcome, TrackingStatus
from shipkit.core.exceptions import (
    CarrierNotImplementedError,
    PreconditionViolationError,
    StructuralError,
)
from shipkit.schemas.shipping import (
    Address,
    CancelPickupRequest,
    Label,
    Money,
    Parcel,
    PickupRequest,
    Quote,
    QuoteRequest,
    ShipmentRequest,
    Tracking,
    TrackingActivity,
    TrackingResult,
)
from shipkit.services.shipping.base import BaseCarrier
from shipkit.services.shipping.error_formatter import ErrorFormatter, ExactErrorFormatter
from shipkit.services.shipping.measurement import Unit
from shipkit.services.shipping.normalize import coerce_to_sequence, get_path

logger = logging.getLogger(__name__)

URL_TEST = "https://wwwcie.ups.com/rest"
URL_PRODUCTION = "https://onlinetools.ups.com/rest"

# UPS doesn't allow SI units for shipments originating in these countries
NON_SI_COUNTRIES = frozenset({'US'})

PACKAGING_TYPE_CUSTOMER_SUPPLIED = '02'

SCHEDULED_DELIVERY = 'Scheduled Delivery'

UPS_STATUS_MAP = {
    'D': TrackingStatus.DELIVERED,
    'I': TrackingStatus.IN_TRANSIT,
    'P': TrackingStatus.IN_TRANSIT,
    'M': TrackingStatus.IN_TRANSIT,
    'X': TrackingStatus.EXCEPTION,
}

JSON_HEADERS = {
    'Accept': 'application/json',
    'Content-Type': 'application/json',
}


@dataclass(frozen=True)
class UPSCredentials:
    username: str
    password: str
    access_license: str
    shipper_number: Optional[str] = None

    @property
    def negotiated_rates(self) -> bool:
        """Accounts with a shipper number are entitled to negotiated rates"""
        return bool(self.shipper_number)


def map_ups_status(status_type: Optional[str]) -> TrackingStatus:
    return UPS_STATUS_MAP.get((status_type or '').strip().upper(), TrackingStatus.IN_TRANSIT)


def unit_system(country_code: str) -> Tuple[Unit, Unit, str, str]:
    """
    Pick the unit system UPS accepts for a sender country.

    Returns:
        (length unit, weight unit, UPS length code, UPS weight code)
    """
    if (country_code or '').strip().upper() in NON_SI_COUNTRIES:
        return Unit.INCH, Unit.POUND, 'IN', 'LBS'
    return Unit.CENTIMETER, Unit.KILOGRAM, 'CM', 'KGS'


class UPSPayloadBuilder:
    """Builds UPS JSON request bodies from canonical requests"""

    def __init__(self, credentials: UPSCredentials):
        self.credentials = credentials

    def _build_security(self) -> Dict[str, Any]:
        return {
            'UsernameToken': {
                'Username': self.credentials.username,
                'Password': self.credentials.password,
            },
            'ServiceAccessToken': {
                'AccessLicenseNumber': self.credentials.access_license,
            },
        }

    @staticmethod
    def _build_address(address: Address) -> Dict[str, Any]:
        return {
            'AddressLine': [line for line in address.lines if line],
            'City': address.city,
            'StateProvinceCode': address.state,
            'PostalCode': address.postal_code,
            'CountryCode': address.country_code,
        }

    @staticmethod
    def _build_package(parcel: Parcel, length_code: str, weight_code: str) -> Dict[str, Any]:
        return {
            'PackagingType': {
                'Code': PACKAGING_TYPE_CUSTOMER_SUPPLIED,
            },
            'Dimensions': {
                'UnitOfMeasurement': {'Code': length_code},
                'Length': parcel.length.format(2),
                'Width': parcel.width.format(2),
                'Height': parcel.height.format(2),
            },
            'PackageWeight': {
                'UnitOfMeasurement': {'Code': weight_code},
                'Weight': parcel.weight.format(2),
            },
        }

    def build_rate_request(self, request: QuoteRequest) -> Dict[str, Any]:
        length_unit, weight_unit, length_code, weight_code = unit_system(request.sender.country_code)
        parcels = [parcel.convert_to(length_unit, weight_unit) for parcel in request.parcels]

        shipment = {
            'Shipper': {
                'Name': request.sender.name,
                'ShipperNumber': self.credentials.shipper_number or '',
                'Address': self._build_address(request.sender),
            },
            'ShipTo': {
                'Name': request.recipient.name,
                'Address': self._build_address(request.recipient),
            },
            'ShipFrom': {
                'Name': request.sender.name,
                'Address': self._build_address(request.sender),
            },
            'Package': [self._build_package(parcel, length_code, weight_code) for parcel in parcels],
        }

        if self.credentials.negotiated_rates:
            shipment['ShipmentRatingOptions'] = {'NegotiatedRatesIndicator': ''}

        return {
            'UPSSecurity': self._build_security(),
            'RateRequest': {
                'Request': {'RequestOption': 'Shop'},
                'Shipment': shipment,
            },
        }

    def build_track_request(self, tracking_number: str, request_option: str = '1') -> Dict[str, Any]:
        # RequestOption "1" returns all activity
        return {
            'UPSSecurity': self._build_security(),
            'TrackRequest': {
                'Request': {'RequestOption': request_option},
                'InquiryNumber': tracking_number,
            },
        }

    def build_void_request(self, shipment_id: str) -> Dict[str, Any]:
        return {
            'UPSSecurity': self._build_security(),
            'VoidShipmentRequest': {
                'Request': {},
                'VoidShipment': {'ShipmentIdentificationNumber': shipment_id},
            },
        }


class UPSResponseNormalizer:
    """Decodes UPS JSON responses into domain objects"""

    def __init__(self, credentials: UPSCredentials, error_formatter: ErrorFormatter):
        self.credentials = credentials
        self.error_formatter = error_formatter

    @staticmethod
    def _load(body: str) -> Any:
        try:
            return json.loads(body)
        except (TypeError, ValueError):
            return None

    def normalize_quotes(self, body: str) -> List[Quote]:
        data = self._load(body)
        rated = get_path(data, 'RateResponse.RatedShipment')
        if rated is None:
            logger.error("UPS rate response has no RatedShipment")
            raise StructuralError("UPS rate response has no RatedShipment", body)

        quotes = []
        for line in coerce_to_sequence(rated):
            quote = self._parse_rated_shipment(line, body)
            if quote is not None:
                quotes.append(quote)

        if not quotes:
            logger.error("UPS rate response has no priced RatedShipment")
            raise StructuralError("UPS rate response has no priced RatedShipment", body)
        return quotes

    def _parse_rated_shipment(self, line: Dict[str, Any], body: str) -> Optional[Quote]:
        service = str(get_path(line, 'Service.Code', ''))

        if self.credentials.negotiated_rates:
            charges = get_path(line, 'NegotiatedRateCharges.TotalCharge')
            if charges is None:
                raise StructuralError(
                    f"UPS rate line {service!r} has no NegotiatedRateCharges for a negotiated account",
                    body,
                )
        else:
            charges = get_path(line, 'TotalCharges')

        value = get_path(charges, 'MonetaryValue')
        currency = get_path(charges, 'CurrencyCode')
        if value in (None, '') or not currency:
            logger.warning(f"Dropping UPS rate line {service!r} without a price")
            return None

        try:
            price = Money.from_decimal_string(value, currency)
        except ValueError as e:
            logger.warning(f"Dropping UPS rate line {service!r} with an invalid price: {e}")
            return None

        return Quote(carrier=UPSCarrier.carrier_name, service=service, price=price)

    def normalize_tracking(self, body: str, tracking_number: str) -> TrackingResult:
        data = self._load(body)
        shipment = get_path(data, 'TrackResponse.Shipment')
        if shipment is None:
            logger.info(f"UPS returned no shipment for {tracking_number}")
            return TrackingResult(
                status=TrackingOutcome.ERROR,
                tracking_number=tracking_number,
                body=body,
                message=self.error_formatter.format(body),
            )

        # Multi-piece shipments: the first package is the master package
        activities = []
        parcels = []
        packages = coerce_to_sequence(shipment.get('Package'))
        if packages:
            package = packages[0]
            activities = [
                self._parse_activity(row, body)
                for row in coerce_to_sequence(package.get('Activity'))
            ]
            parcel = self._parse_package_weight(package)
            if parcel is not None:
                parcels.append(parcel)

        tracking = Tracking(
            carrier=UPSCarrier.carrier_name,
            service=str(get_path(shipment, 'Service.Description', '')),
            activities=activities,
            estimated_delivery_date=self._estimated_delivery(shipment),
            parcels=parcels,
        )
        return TrackingResult(
            status=TrackingOutcome.SUCCESS,
            tracking_number=tracking_number,
            body=body,
            tracking=tracking,
        )

    @staticmethod
    def _parse_activity(row: Dict[str, Any], body: str) -> TrackingActivity:
        try:
            date = datetime.strptime(f"{row['Date']}{row['Time']}", '%Y%m%d%H%M%S')
        except (KeyError, TypeError, ValueError):
            raise StructuralError("UPS activity has no valid Date/Time", body)

        location = get_path(row, 'ActivityLocation.Address', {}) or {}
        address = Address(
            postal_code=location.get('PostalCode') or '',
            city=location.get('City') or '',
            state=location.get('StateProvinceCode') or '',
            country_code=location.get('CountryCode') or '',
        )
        return TrackingActivity(
            status=map_ups_status(get_path(row, 'Status.Type')),
            description=get_path(row, 'Status.Description', '') or '',
            date=date,
            address=address,
        )

    @staticmethod
    def _parse_package_weight(package: Dict[str, Any]) -> Optional[Parcel]:
        try:
            weight = Decimal(str(get_path(package, 'PackageWeight.Weight')))
        except InvalidOperation:
            return None
        if not weight.is_finite():
            return None
        code = get_path(package, 'PackageWeight.UnitOfMeasurement.Code', '')
        # UPS does not provide any dimension information in the tracking response
        return Parcel.make(
            0, 0, 0, weight,
            length_unit=Unit.CENTIMETER,
            weight_unit=Unit.POUND if code == 'LBS' else Unit.KILOGRAM,
        )

    @staticmethod
    def _estimated_delivery(shipment: Dict[str, Any]) -> Optional[datetime]:
        for detail in coerce_to_sequence(shipment.get('DeliveryDetail')):
            if get_path(detail, 'Type.Description') != SCHEDULED_DELIVERY:
                continue
            try:
                date = datetime.strptime(str(detail.get('Date', '')), '%Y%m%d')
            except ValueError:
                return None
            # Date only; noon UTC keeps the day stable across most time zones
            return date.replace(hour=12, tzinfo=timezone.utc)
        return None

    def normalize_void(self, body: str) -> bool:
        data = self._load(body)
        code = get_path(data, 'VoidShipmentResponse.SummaryResult.Status.Code')
        if code is None:
            raise StructuralError("UPS void response has no SummaryResult status", body)
        return str(code) == '1'


class UPSCarrier(BaseCarrier):
    """UPS carrier implementation."""

    carrier_name = "UPS"
    carrier_code = "ups"

    def __init__(
        self,
        credentials: UPSCredentials,
        transport,
        base_url: str = URL_PRODUCTION,
        error_formatter: Optional[ErrorFormatter] = None,
    ):
        """Initialize the UPS carrier.

        Args:
            credentials: UPS account credentials
            transport: Object with an async ``request`` method (see HttpTransport)
            base_url: URL_TEST or URL_PRODUCTION
            error_formatter: Formats failed tracking bodies, defaults to the raw body
        """
        self.transport = transport
        self.base_url = base_url.rstrip('/')
        self.payload_builder = UPSPayloadBuilder(credentials)
        self.normalizer = UPSResponseNormalizer(
            credentials,
            error_formatter if error_formatter is not None else ExactErrorFormatter(),
        )

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> str:
        url = f"{self.base_url}/{endpoint}"
        logger.debug(f"POST {url}")
        response = await self.transport.request(
            'POST',
            url,
            headers=dict(JSON_HEADERS),
            content=json.dumps(payload),
        )
        return response.text

    async def get_quotes(self, request: QuoteRequest) -> List[Quote]:
        body = await self._post('Rate', self.payload_builder.build_rate_request(request))
        quotes = self.normalizer.normalize_quotes(body)
        logger.info(f"Retrieved {len(quotes)} UPS quotes")
        return quotes

    async def get_tracking_status(
        self,
        tracking_numbers: Sequence[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[TrackingResult]:
        if isinstance(tracking_numbers, str):
            tracking_numbers = [tracking_numbers]
        if len(tracking_numbers) != 1:
            raise PreconditionViolationError(
                f"UPS only allows tracking of 1 shipment at a time, got {len(tracking_numbers)}"
            )

        options = options or {}
        tracking_number = tracking_numbers[0]
        payload = self.payload_builder.build_track_request(
            tracking_number,
            request_option=options.get('request_option', '1'),
        )
        body = await self._post('Track', payload)
        return [self.normalizer.normalize_tracking(body, tracking_number)]

    async def cancel_shipment(self, shipment_id: str, data: Optional[Dict[str, Any]] = None) -> bool:
        body = await self._post('Void', self.payload_builder.build_void_request(shipment_id))
        voided = self.normalizer.normalize_void(body)
        logger.info(f"UPS void of {shipment_id}: {'success' if voided else 'rejected'}")
        return voided

    async def get_available_services(self, request: QuoteRequest) -> List[str]:
        quotes = await self.get_quotes(request)
        return list(dict.fromkeys(quote.service for quote in quotes))

    async def create_shipment(self, request: ShipmentRequest) -> Label:
        raise CarrierNotImplementedError("UPS create_shipment is not implemented")

    async def create_pickup(self, request: PickupRequest) -> Any:
        raise CarrierNotImplementedError("UPS create_pickup is not implemented")

    async def cancel_pickup(self, request: CancelPickupRequest) -> Any:
        raise CarrierNotImplementedError("UPS cancel_pickup is not implemented")

    async def get_proof_of_delivery(self, tracking_number: str) -> Any:
        raise CarrierNotImplementedError("UPS get_proof_of_delivery is not implemented")
