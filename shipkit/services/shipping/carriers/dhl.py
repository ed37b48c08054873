"""
DHL Carrier Implementation

This module implements the DHL Express XML Services (XML-PI) integration.

Features:
- Rate calculation (DCTRequest / GetQuote)
- Shipment tracking (KnownTrackingRequest), several AWB numbers per request
- Shipment creation with label (ShipmentRequest, schema 5.0)

Every request is a literal XML document posted to a single servlet. Request
bodies are built by pure functions so they can be tested without a network.
Responses are parsed with xmltodict, which collapses single children into a
bare mapping just like the UPS JSON conversion does.

DHL XML Services docs:
 - https://xmlportal.dhl.com/
"""

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence
from xml.parsers.expat import ExpatError
from xml.sax.saxutils import escape

import xmltodict

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
from shipkit.services.shipping.normalize import coerce_to_sequence, get_path, split_composite

logger = logging.getLogger(__name__)

URL_TEST = "https://xmlpitest-ea.dhl.com/XMLShippingServlet"
URL_PRODUCTION = "https://xmlpi-ea.dhl.com/XMLShippingServlet"

# KnownTrackingRequest accepts at most this many AWB numbers
MAX_TRACKING_NUMBERS = 10

XML_HEADERS = {
    'Accept': 'text/xml',
    'Content-Type': 'text/xml',
}

# DHL doesn't document the meaning of its event codes; unknown codes are in transit
DHL_DELIVERED_CODES = frozenset({
    'CC', 'BR', 'TP', 'DD', 'OK', 'DL', 'DM',
})
DHL_EXCEPTION_CODES = frozenset({
    'BL', 'HI', 'HO', 'AD', 'SP', 'IA', 'SI', 'ST', 'NA',
    'CI', 'CU', 'LX', 'DI', 'SF', 'LV', 'UV', 'HN', 'DP',
    'PY', 'PM', 'BA', 'CD', 'UD', 'HX', 'TD', 'CA', 'NH',
    'MX', 'SS', 'CS', 'CM', 'RD', 'RR', 'MS', 'MC', 'OH',
    'SC', 'WX',
    'RT',  # returned to shipper
})


@dataclass(frozen=True)
class DHLCredentials:
    site_id: str
    password: str
    account_number: str
    region_code: str = "EU"


def map_dhl_event_code(code: Optional[str]) -> TrackingStatus:
    code = (code or '').strip().upper()
    if code in DHL_DELIVERED_CODES:
        return TrackingStatus.DELIVERED
    if code in DHL_EXCEPTION_CODES:
        return TrackingStatus.EXCEPTION
    return TrackingStatus.IN_TRANSIT


def _x(value: Any) -> str:
    """Escape a value for interpolation into an XML template"""
    return escape(str(value if value is not None else ''))


def _metric(parcels: Sequence[Parcel]) -> List[Parcel]:
    return [parcel.convert_to(Unit.CENTIMETER, Unit.KILOGRAM) for parcel in parcels]


def _address_lines(address: Address) -> str:
    return ''.join(
        f"<AddressLine>{_x(line)}</AddressLine>" for line in address.lines if line
    )


class DHLPayloadBuilder:
    """Renders DHL XML request documents"""

    def __init__(self, credentials: DHLCredentials):
        self.credentials = credentials

    def _service_header(self, now: Optional[datetime] = None, reference: Optional[str] = None) -> str:
        parts = []
        if now is not None:
            parts.append(f"<MessageTime>{now.isoformat(timespec='seconds')}</MessageTime>")
        if reference is not None:
            parts.append(f"<MessageReference>{_x(reference)}</MessageReference>")
        parts.append(f"<SiteID>{_x(self.credentials.site_id)}</SiteID>")
        parts.append(f"<Password>{_x(self.credentials.password)}</Password>")
        return f"<Request><ServiceHeader>{''.join(parts)}</ServiceHeader></Request>"

    def build_quote_request(self, request: QuoteRequest, now: datetime) -> bytes:
        """
        Build a GetQuote document.

        Args:
            request: Canonical quote request
            now: Message time, also used as the booking date

        Returns:
            UTF-8 encoded XML
        """
        sender = request.sender
        recipient = request.recipient

        # after conversion we might get lots of decimals, DHL wants two
        pieces = ''.join(
            f"""
            <Piece>
               <PieceID>{index}</PieceID>
               <Height>{parcel.height.format(2)}</Height>
               <Depth>{parcel.length.format(2)}</Depth>
               <Width>{parcel.width.format(2)}</Width>
               <Weight>{parcel.weight.format(2)}</Weight>
            </Piece>"""
            for index, parcel in enumerate(_metric(request.parcels), start=1)
        )

        body = f"""<?xml version="1.0" encoding="UTF-8"?>
<p:DCTRequest xmlns:p="http://www.dhl.com"
    xmlns:p1="http://www.dhl.com/datatypes"
    xmlns:p2="http://www.dhl.com/DCTRequestdatatypes"
    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
    xsi:schemaLocation="http://www.dhl.com DCT-req.xsd ">
   <GetQuote>
      {self._service_header(now=now)}
      <From>
         <CountryCode>{_x(sender.country_code)}</CountryCode>
         <Postalcode>{_x(sender.postal_code)}</Postalcode>
         <City>{_x(sender.city)}</City>
      </From>
      <BkgDetails>
         <PaymentCountryCode>{_x(sender.country_code)}</PaymentCountryCode>
         <Date>{now.strftime('%Y-%m-%d')}</Date>
         <ReadyTime>PT00H00M</ReadyTime>
         <DimensionUnit>CM</DimensionUnit>
         <WeightUnit>KG</WeightUnit>
         <Pieces>{pieces}
         </Pieces>
         <PaymentAccountNumber>{_x(self.credentials.account_number)}</PaymentAccountNumber>
      </BkgDetails>
      <To>
         <CountryCode>{_x(recipient.country_code)}</CountryCode>
         <Postalcode>{_x(recipient.postal_code)}</Postalcode>
         <City>{_x(recipient.city)}</City>
      </To>
   </GetQuote>
</p:DCTRequest>
"""
        return body.encode('utf-8')

    def build_tracking_request(self, tracking_numbers: Sequence[str], language_code: str = 'en') -> bytes:
        awb_numbers = ''.join(
            f"\n   <AWBNumber>{_x(number)}</AWBNumber>" for number in tracking_numbers
        )
        body = f"""<?xml version="1.0" encoding="UTF-8"?>
<req:KnownTrackingRequest xmlns:req="http://www.dhl.com"
    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
    xsi:schemaLocation="http://www.dhl.com TrackingRequestKnown.xsd">
   {self._service_header()}
   <LanguageCode>{_x(language_code)}</LanguageCode>{awb_numbers}
   <LevelOfDetails>ALL_CHECK_POINTS</LevelOfDetails>
   <PiecesEnabled>S</PiecesEnabled>
</req:KnownTrackingRequest>
"""
        return body.encode('utf-8')

    def _party(self, address: Address) -> str:
        return (
            f"<CompanyName>{_x(address.name)}</CompanyName>"
            f"{_address_lines(address)}"
            f"<City>{_x(address.city)}</City>"
            f"<Division>{_x(address.state)}</Division>"
            f"<PostalCode>{_x(address.postal_code)}</PostalCode>"
            f"<CountryCode>{_x(address.country_code)}</CountryCode>"
            f"<Contact><PersonName>{_x(address.name)}</PersonName>"
            f"<PhoneNumber>{_x(address.phone)}</PhoneNumber></Contact>"
        )

    def build_shipment_request(self, request: ShipmentRequest, now: datetime, reference: str) -> bytes:
        """
        Build a ShipmentRequest (schema 5.0) document.

        Args:
            request: Canonical shipment request
            now: Message time
            reference: 28-32 character message reference

        Returns:
            UTF-8 encoded XML
        """
        account = _x(self.credentials.account_number)
        parcels = _metric(request.parcels)
        total_weight = sum((parcel.weight.value for parcel in parcels), Decimal(0))
        shipping_date = request.shipping_date or now

        pieces = ''.join(
            f"<Piece><PieceID>{index}</PieceID>"
            f"<Weight>{parcel.weight.format(2)}</Weight>"
            f"<Width>{parcel.width.format(2)}</Width>"
            f"<Height>{parcel.height.format(2)}</Height>"
            f"<Depth>{parcel.length.format(2)}</Depth></Piece>"
            for index, parcel in enumerate(parcels, start=1)
        )

        dutiable = ''
        if request.is_dutiable:
            declared = request.declared_value if request.declared_value is not None else Decimal(0)
            dutiable = (
                f"<Dutiable><DeclaredValue>{declared:.2f}</DeclaredValue>"
                f"<DeclaredCurrency>{_x(request.currency)}</DeclaredCurrency>"
                f"<TermsOfTrade>DAP</TermsOfTrade></Dutiable>"
            )

        reference_node = ''
        if request.reference:
            reference_node = f"<Reference><ReferenceID>{_x(request.reference)}</ReferenceID></Reference>"

        body = f"""<?xml version="1.0" encoding="UTF-8"?>
<req:ShipmentRequest xmlns:req="http://www.dhl.com" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" xsi:schemaLocation="http://www.dhl.com ship-val-global-req.xsd" schemaVersion="5.0">
   {self._service_header(now=now, reference=reference)}
   <RegionCode>{_x(self.credentials.region_code)}</RegionCode>
   <NewShipper>N</NewShipper>
   <LanguageCode>en</LanguageCode>
   <PiecesEnabled>Y</PiecesEnabled>
   <Billing>
      <ShipperAccountNumber>{account}</ShipperAccountNumber>
      <ShippingPaymentType>S</ShippingPaymentType>
      <BillingAccountNumber>{account}</BillingAccountNumber>
      <DutyPaymentType>R</DutyPaymentType>
   </Billing>
   <Consignee>{self._party(request.recipient)}</Consignee>
   {dutiable}{reference_node}
   <ShipmentDetails>
      <NumberOfPieces>{len(parcels)}</NumberOfPieces>
      <Pieces>{pieces}</Pieces>
      <Weight>{total_weight:.2f}</Weight>
      <WeightUnit>K</WeightUnit>
      <GlobalProductCode>{_x(request.service)}</GlobalProductCode>
      <LocalProductCode>{_x(request.service)}</LocalProductCode>
      <Date>{shipping_date.strftime('%Y-%m-%d')}</Date>
      <Contents>{_x(request.contents)}</Contents>
      <DoorTo>DD</DoorTo>
      <DimensionUnit>C</DimensionUnit>
      <IsDutiable>{'Y' if request.is_dutiable else 'N'}</IsDutiable>
      <CurrencyCode>{_x(request.currency)}</CurrencyCode>
   </ShipmentDetails>
   <Shipper>
      <ShipperID>{account}</ShipperID>
      <RegisteredAccount>{account}</RegisteredAccount>
      {self._party(request.sender)}
   </Shipper>
   <EProcShip>N</EProcShip>
   <LabelImageFormat>PDF</LabelImageFormat>
</req:ShipmentRequest>
"""
        return body.encode('utf-8')


class DHLResponseNormalizer:
    """Decodes DHL XML responses into domain objects"""

    def __init__(self, error_formatter: ErrorFormatter):
        self.error_formatter = error_formatter

    @staticmethod
    def _document(body: str, root_name: str) -> Dict[str, Any]:
        """
        Parse the body and return the root element, ignoring its namespace prefix.

        Raises:
            StructuralError: If the body is not XML or has another root element
        """
        try:
            data = xmltodict.parse(body)
        except (ExpatError, TypeError, ValueError):
            logger.error(f"DHL response is not valid XML, expected {root_name}")
            raise StructuralError(f"DHL response is not valid XML, expected {root_name}", body)

        for key, value in data.items():
            if key.split(':')[-1] == root_name:
                return value if isinstance(value, dict) else {}

        logger.error(f"DHL response has no {root_name} root element")
        raise StructuralError(f"DHL response has no {root_name} root element", body)

    def normalize_quotes(self, body: str) -> List[Quote]:
        document = self._document(body, 'DCTResponse')
        quoted = get_path(document, 'GetQuoteResponse.BkgDetails.QtdShp')
        if quoted is None:
            raise StructuralError("DHL quote response has no QtdShp", body)

        quotes = []
        for line in coerce_to_sequence(quoted):
            # sometimes DHL responds with a QtdShp without a ShippingCharge
            charge = (line.get('ShippingCharge') or '').strip()
            product = line.get('ProductShortName') or ''
            if not charge:
                logger.warning(f"Dropping DHL quote {product!r} without a ShippingCharge")
                continue
            try:
                price = Money.from_decimal_string(charge, line.get('CurrencyCode') or '')
            except ValueError as e:
                logger.warning(f"Dropping DHL quote {product!r} with an invalid price: {e}")
                continue
            quotes.append(Quote(carrier=DHLCarrier.carrier_name, service=product, price=price))

        if not quotes:
            raise StructuralError("DHL quote response has no priced QtdShp", body)
        return quotes

    def normalize_tracking(self, body: str, tracking_numbers: Sequence[str]) -> List[TrackingResult]:
        document = self._document(body, 'TrackingResponse')
        awb_infos = coerce_to_sequence(document.get('AWBInfo'))
        if not awb_infos:
            raise StructuralError("DHL tracking response has no AWBInfo", body)

        by_number = {}
        for info in awb_infos:
            by_number.setdefault(str(info.get('AWBNumber') or '').strip(), info)

        results = []
        for number in tracking_numbers:
            info = by_number.get(number.strip())
            # a lone AWBInfo without a number answers the single number asked for
            if info is None and len(tracking_numbers) == 1 and len(awb_infos) == 1:
                info = awb_infos[0]

            shipment = info.get('ShipmentInfo') if info else None
            if not shipment:
                results.append(TrackingResult(
                    status=TrackingOutcome.ERROR,
                    tracking_number=number,
                    body=body,
                    message=self.error_formatter.format(body),
                ))
                continue

            results.append(TrackingResult(
                status=TrackingOutcome.SUCCESS,
                tracking_number=number,
                body=body,
                tracking=self._parse_shipment(shipment, body),
            ))
        return results

    def _parse_shipment(self, shipment: Dict[str, Any], body: str) -> Tracking:
        events = [self._parse_event(event, body) for event in coerce_to_sequence(shipment.get('ShipmentEvent'))]
        # DHL orders the events oldest first, we want the most recent first
        events.reverse()

        parcels = []
        weight = self._parse_weight(shipment)
        if weight is not None:
            weight_unit = Unit.POUND if (shipment.get('WeightUnit') or '').upper() == 'L' else Unit.KILOGRAM
            parcels.append(Parcel.make(0, 0, 0, weight, length_unit=Unit.CENTIMETER, weight_unit=weight_unit))

        return Tracking(
            carrier=DHLCarrier.carrier_name,
            service=shipment.get('GlobalProductCode') or '',
            activities=events,
            parcels=parcels,
        )

    @staticmethod
    def _parse_weight(shipment: Dict[str, Any]) -> Optional[Decimal]:
        raw = str(shipment.get('Weight') or '').strip()
        if not raw:
            return None
        try:
            weight = Decimal(raw)
        except InvalidOperation:
            logger.warning(f"Ignoring DHL shipment weight {raw!r}")
            return None
        return weight if weight.is_finite() else None

    @staticmethod
    def _parse_event(event: Dict[str, Any], body: str) -> TrackingActivity:
        try:
            date = datetime.strptime(f"{event.get('Date')} {event.get('Time')}", '%Y-%m-%d %H:%M:%S')
        except ValueError:
            raise StructuralError("DHL shipment event has no valid Date/Time", body)

        # ServiceArea.Description is "{CITY} - {COUNTRY}"
        city, country = split_composite(get_path(event, 'ServiceArea.Description') or '', ' - ', 2)

        return TrackingActivity(
            status=map_dhl_event_code(get_path(event, 'ServiceEvent.EventCode')),
            # the description will sometimes include the location too
            description=get_path(event, 'ServiceEvent.Description') or '',
            date=date,
            address=Address(city=city, country_code=country),
        )

    def normalize_shipment(self, body: str) -> Label:
        document = self._document(body, 'ShipmentResponse')
        awb_number = document.get('AirwayBillNumber')
        image = get_path(document, 'LabelImage.OutputImage')
        if not awb_number or not image:
            raise StructuralError("DHL shipment response has no AirwayBillNumber or label", body)

        try:
            label = base64.b64decode(image, validate=False)
        except (binascii.Error, ValueError):
            raise StructuralError("DHL label image is not valid base64", body)

        return Label(
            carrier=DHLCarrier.carrier_name,
            tracking_number=str(awb_number),
            label=label,
            label_format=get_path(document, 'LabelImage.OutputFormat') or 'PDF',
        )


class DHLCarrier(BaseCarrier):
    """DHL Express XML Services carrier implementation."""

    carrier_name = "DHL"
    carrier_code = "dhl"

    def __init__(
        self,
        credentials: DHLCredentials,
        transport,
        base_url: str = URL_PRODUCTION,
        error_formatter: Optional[ErrorFormatter] = None,
    ):
        """Initialize the DHL carrier.

        Args:
            credentials: DHL XML Services credentials
            transport: Object with an async ``request`` method (see HttpTransport)
            base_url: URL_TEST or URL_PRODUCTION
            error_formatter: Formats failed tracking bodies, defaults to the raw body
        """
        self.transport = transport
        self.base_url = base_url
        self.payload_builder = DHLPayloadBuilder(credentials)
        self.normalizer = DHLResponseNormalizer(
            error_formatter if error_formatter is not None else ExactErrorFormatter()
        )

    async def _post(self, document: bytes) -> str:
        logger.debug(f"POST {self.base_url}")
        response = await self.transport.request(
            'POST',
            self.base_url,
            headers=dict(XML_HEADERS),
            content=document,
            params={'isUTF8Support': 'true'},
        )
        return response.text

    async def get_quotes(self, request: QuoteRequest) -> List[Quote]:
        document = self.payload_builder.build_quote_request(request, datetime.now(timezone.utc))
        quotes = self.normalizer.normalize_quotes(await self._post(document))
        logger.info(f"Retrieved {len(quotes)} DHL quotes")
        return quotes

    async def get_tracking_status(
        self,
        tracking_numbers: Sequence[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[TrackingResult]:
        if isinstance(tracking_numbers, str):
            tracking_numbers = [tracking_numbers]
        tracking_numbers = list(tracking_numbers)
        if not tracking_numbers:
            raise PreconditionViolationError("At least one tracking number is required")
        if len(tracking_numbers) > MAX_TRACKING_NUMBERS:
            raise PreconditionViolationError(
                f"DHL allows tracking of at most {MAX_TRACKING_NUMBERS} shipments at a time, "
                f"got {len(tracking_numbers)}"
            )

        options = options or {}
        document = self.payload_builder.build_tracking_request(
            tracking_numbers,
            language_code=options.get('language_code', 'en'),
        )
        return self.normalizer.normalize_tracking(await self._post(document), tracking_numbers)

    async def create_shipment(self, request: ShipmentRequest) -> Label:
        document = self.payload_builder.build_shipment_request(
            request,
            datetime.now(timezone.utc),
            uuid.uuid4().hex,
        )
        label = self.normalizer.normalize_shipment(await self._post(document))
        logger.info(f"DHL shipment created: {label.tracking_number}")
        return label

    async def get_available_services(self, request: QuoteRequest) -> List[str]:
        quotes = await self.get_quotes(request)
        return list(dict.fromkeys(quote.service for quote in quotes))

    async def cancel_shipment(self, shipment_id: str, data: Optional[Dict[str, Any]] = None) -> bool:
        raise CarrierNotImplementedError("DHL cancel_shipment is not implemented")

    async def create_pickup(self, request: PickupRequest) -> Any:
        raise CarrierNotImplementedError("DHL create_pickup is not implemented")

    async def cancel_pickup(self, request: CancelPickupRequest) -> Any:
        raise CarrierNotImplementedError("DHL cancel_pickup is not implemented")

    async def get_proof_of_delivery(self, tracking_number: str) -> Any:
        raise CarrierNotImplementedError("DHL get_proof_of_delivery is not implemented")
