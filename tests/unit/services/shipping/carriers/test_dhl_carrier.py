# DHL carrier unit tests
import base64
import pytest
import xmltodict
from datetime import datetime, timezone
from decimal import Decimal

from shipkit.core.enums import TrackingOutcome, TrackingStatus
from shipkit.core.exceptions import (
    CarrierNotImplementedError,
    PreconditionViolationError,
    StructuralError,
)
from shipkit.schemas.shipping import Address, Parcel, QuoteRequest, ShipmentRequest
from shipkit.services.shipping.carriers.dhl import (
    MAX_TRACKING_NUMBERS,
    URL_TEST,
    DHLCarrier,
    DHLPayloadBuilder,
    map_dhl_event_code,
)
from shipkit.services.shipping.error_formatter import DHLStatusErrorFormatter
from shipkit.services.shipping.measurement import Unit


NOW = datetime(2018, 5, 14, 9, 30, 0, tzinfo=timezone.utc)


def quote_response(lines):
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<res:DCTResponse xmlns:res="http://www.dhl.com">
  <GetQuoteResponse>
    <Response><ServiceHeader><SiteID>dhl_site</SiteID></ServiceHeader></Response>
    <BkgDetails>{lines}</BkgDetails>
  </GetQuoteResponse>
</res:DCTResponse>"""


def qtd_shp(product, charge, currency="EUR"):
    return (
        f"<QtdShp><GlobalProductCode>P</GlobalProductCode>"
        f"<ProductShortName>{product}</ProductShortName>"
        f"<CurrencyCode>{currency}</CurrencyCode>"
        f"<ShippingCharge>{charge}</ShippingCharge></QtdShp>"
    )


def event(date, time, code, description, area):
    return (
        f"<ShipmentEvent><Date>{date}</Date><Time>{time}</Time>"
        f"<ServiceEvent><EventCode>{code}</EventCode><Description>{description}</Description></ServiceEvent>"
        f"<ServiceArea><ServiceAreaCode>XXX</ServiceAreaCode><Description>{area}</Description></ServiceArea>"
        f"</ShipmentEvent>"
    )


def awb_info(number, events, weight="1.5", weight_unit="K"):
    return f"""
  <AWBInfo>
    <AWBNumber>{number}</AWBNumber>
    <Status><ActionStatus>success</ActionStatus></Status>
    <ShipmentInfo>
      <GlobalProductCode>P</GlobalProductCode>
      <Weight>{weight}</Weight>
      <WeightUnit>{weight_unit}</WeightUnit>
      {events}
    </ShipmentInfo>
  </AWBInfo>"""


def missing_awb_info(number):
    return f"""
  <AWBInfo>
    <AWBNumber>{number}</AWBNumber>
    <Status>
      <ActionStatus>No Shipments Found</ActionStatus>
      <Condition>
        <ConditionCode>101</ConditionCode>
        <ConditionData>No Shipments Found for AWBNumber {number}</ConditionData>
      </Condition>
    </Status>
  </AWBInfo>"""


def tracking_response(infos):
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<req:TrackingResponse xmlns:req="http://www.dhl.com">
  <Response><ServiceHeader><SiteID>dhl_site</SiteID></ServiceHeader></Response>{infos}
</req:TrackingResponse>"""


@pytest.fixture
def carrier(dhl_credentials, mock_transport):
    return DHLCarrier(dhl_credentials, mock_transport, base_url=URL_TEST)


@pytest.fixture
def shipment_request(swedish_sender, german_recipient, sample_parcel):
    return ShipmentRequest(
        sender=swedish_sender,
        recipient=german_recipient,
        parcels=(sample_parcel, sample_parcel),
        service="P",
        contents="Guitar strings",
        reference="ORDER-1001",
        declared_value=Decimal("49.5"),
        is_dutiable=True,
    )

"""
1. Request documents
"""

def test_quote_document_is_metric(dhl_credentials, swedish_sender, german_recipient):
    parcel = Parcel.make(10, 10, 10, "2.20462262185", Unit.INCH, Unit.POUND)
    request = QuoteRequest(sender=swedish_sender, recipient=german_recipient, parcels=(parcel, parcel))

    document = DHLPayloadBuilder(dhl_credentials).build_quote_request(request, NOW)
    data = xmltodict.parse(document)['p:DCTRequest']['GetQuote']

    assert data['Request']['ServiceHeader']['SiteID'] == "dhl_site"
    assert data['Request']['ServiceHeader']['MessageTime'] == "2018-05-14T09:30:00+00:00"
    assert data['BkgDetails']['Date'] == "2018-05-14"
    assert data['BkgDetails']['DimensionUnit'] == "CM"
    assert data['BkgDetails']['PaymentAccountNumber'] == "950000002"
    assert data['From']['City'] == "Stockholm"
    assert data['To']['CountryCode'] == "DE"

    pieces = data['BkgDetails']['Pieces']['Piece']
    assert [piece['PieceID'] for piece in pieces] == ["1", "2"]
    assert pieces[0]['Depth'] == "25.40"
    assert pieces[0]['Height'] == "25.40"
    assert pieces[0]['Weight'] == "1.00"


def test_quote_document_escapes_text(dhl_credentials, german_recipient, sample_parcel):
    sender = Address(name="Smith & Sons", postal_code="111 43", city="Smith & Sons <City>", country_code="SE")
    request = QuoteRequest(sender=sender, recipient=german_recipient, parcels=(sample_parcel,))

    document = DHLPayloadBuilder(dhl_credentials).build_quote_request(request, NOW)

    assert b"<City>Smith &amp; Sons &lt;City&gt;</City>" in document
    assert xmltodict.parse(document)['p:DCTRequest']['GetQuote']['From']['City'] == "Smith & Sons <City>"


def test_tracking_document_lists_every_number(dhl_credentials):
    document = DHLPayloadBuilder(dhl_credentials).build_tracking_request(["8564385550", "1815115363"])
    data = xmltodict.parse(document)['req:KnownTrackingRequest']

    assert data['AWBNumber'] == ["8564385550", "1815115363"]
    assert data['LevelOfDetails'] == "ALL_CHECK_POINTS"
    assert data['LanguageCode'] == "en"
    assert data['Request']['ServiceHeader']['Password'] == "dhl_pass"


def test_shipment_document(dhl_credentials, shipment_request):
    document = DHLPayloadBuilder(dhl_credentials).build_shipment_request(shipment_request, NOW, "a" * 32)
    data = xmltodict.parse(document)['req:ShipmentRequest']

    assert data['@schemaVersion'] == "5.0"
    assert data['Request']['ServiceHeader']['MessageReference'] == "a" * 32
    assert data['Billing']['ShipperAccountNumber'] == "950000002"
    assert data['Consignee']['City'] == "Berlin"
    assert data['Shipper']['CompanyName'] == "Vinnia AB"
    # empty address lines are skipped
    assert data['Shipper']['AddressLine'] == "Kungsgatan 1"
    assert data['Dutiable']['DeclaredValue'] == "49.50"
    assert data['Reference']['ReferenceID'] == "ORDER-1001"

    details = data['ShipmentDetails']
    assert details['NumberOfPieces'] == "2"
    assert details['Weight'] == "2.00"
    assert details['GlobalProductCode'] == "P"
    assert details['IsDutiable'] == "Y"
    assert details['Date'] == "2018-05-14"
    assert [piece['PieceID'] for piece in details['Pieces']['Piece']] == ["1", "2"]


def test_shipment_document_not_dutiable(dhl_credentials, swedish_sender, german_recipient, sample_parcel):
    request = ShipmentRequest(sender=swedish_sender, recipient=german_recipient, parcels=(sample_parcel,), service="U")

    data = xmltodict.parse(
        DHLPayloadBuilder(dhl_credentials).build_shipment_request(request, NOW, "b" * 32)
    )['req:ShipmentRequest']

    assert 'Dutiable' not in data
    assert 'Reference' not in data
    assert data['ShipmentDetails']['IsDutiable'] == "N"

"""
2. Quotes
"""

@pytest.mark.asyncio
async def test_get_quotes(carrier, mock_transport, quote_request):
    mock_transport.queue(quote_response(
        qtd_shp("EXPRESS WORLDWIDE", "109.605") + qtd_shp("EXPRESS 12:00", "130.00")
    ))

    quotes = await carrier.get_quotes(quote_request)

    assert [quote.service for quote in quotes] == ["EXPRESS WORLDWIDE", "EXPRESS 12:00"]
    assert [quote.price.amount for quote in quotes] == [10961, 13000]
    assert all(quote.carrier == "DHL" for quote in quotes)
    assert quotes[0].price.currency == "EUR"

    call = mock_transport.calls[0]
    assert call["url"] == URL_TEST
    assert call["params"] == {'isUTF8Support': 'true'}
    assert call["headers"]["Content-Type"] == "text/xml"
    assert b"<p:DCTRequest" in call["content"]


@pytest.mark.asyncio
async def test_single_quote_line(carrier, mock_transport, quote_request):
    mock_transport.queue(quote_response(qtd_shp("ECONOMY SELECT", "45.00")))

    quotes = await carrier.get_quotes(quote_request)

    assert len(quotes) == 1
    assert quotes[0].price.amount == 4500


@pytest.mark.asyncio
async def test_quote_lines_without_charge_are_dropped(carrier, mock_transport, quote_request):
    mock_transport.queue(quote_response(
        qtd_shp("EXPRESS WORLDWIDE", "109.60") + qtd_shp("MEDICAL EXPRESS", "")
    ))

    quotes = await carrier.get_quotes(quote_request)

    assert [quote.service for quote in quotes] == ["EXPRESS WORLDWIDE"]


@pytest.mark.asyncio
async def test_quote_lines_with_invalid_price_are_dropped(carrier, mock_transport, quote_request):
    mock_transport.queue(quote_response(
        qtd_shp("EXPRESS WORLDWIDE", "109.60")
        + qtd_shp("ECONOMY", "45.00", currency="")
        + qtd_shp("EXPRESS 9:00", "n/a")
    ))

    quotes = await carrier.get_quotes(quote_request)

    assert [quote.service for quote in quotes] == ["EXPRESS WORLDWIDE"]


@pytest.mark.asyncio
async def test_quote_with_only_invalid_prices_is_structural_error(carrier, mock_transport, quote_request):
    body = quote_response(qtd_shp("ECONOMY", "45.00", currency=""))
    mock_transport.queue(body)

    with pytest.raises(StructuralError) as exc_info:
        await carrier.get_quotes(quote_request)

    assert exc_info.value.body == body


@pytest.mark.asyncio
async def test_quote_without_qtdshp_is_structural_error(carrier, mock_transport, quote_request):
    body = quote_response("")
    mock_transport.queue(body)

    with pytest.raises(StructuralError) as exc_info:
        await carrier.get_quotes(quote_request)

    assert exc_info.value.body == body


@pytest.mark.asyncio
async def test_quote_invalid_xml_is_structural_error(carrier, mock_transport, quote_request):
    mock_transport.queue("Internal Server Error")

    with pytest.raises(StructuralError):
        await carrier.get_quotes(quote_request)


@pytest.mark.asyncio
async def test_quote_error_document_is_structural_error(carrier, mock_transport, quote_request):
    mock_transport.queue(
        '<res:ErrorResponse xmlns:res="http://www.dhl.com"><Response><Status>'
        '<ActionStatus>Error</ActionStatus></Status></Response></res:ErrorResponse>'
    )

    with pytest.raises(StructuralError) as exc_info:
        await carrier.get_quotes(quote_request)

    assert "DCTResponse" in str(exc_info.value)


@pytest.mark.asyncio
async def test_available_services(carrier, mock_transport, quote_request):
    mock_transport.queue(quote_response(
        qtd_shp("EXPRESS WORLDWIDE", "109.60") + qtd_shp("EXPRESS 12:00", "130.00")
    ))

    assert await carrier.get_available_services(quote_request) == ["EXPRESS WORLDWIDE", "EXPRESS 12:00"]

"""
3. Tracking
"""

@pytest.mark.asyncio
async def test_tracking_events_most_recent_first(carrier, mock_transport):
    events = (
        event("2018-05-10", "08:00:00", "PU", "Shipment picked up", "STOCKHOLM - SWEDEN")
        + event("2018-05-11", "14:20:00", "PL", "Processed at LEIPZIG - GERMANY", "LEIPZIG - GERMANY")
        + event("2018-05-12", "10:05:00", "OK", "Delivered - Signed for by: MEYER", "BERLIN - GERMANY")
    )
    body = tracking_response(awb_info("8564385550", events))
    mock_transport.queue(body)

    results = await carrier.get_tracking_status(["8564385550"])

    assert len(results) == 1
    result = results[0]
    assert result.status is TrackingOutcome.SUCCESS
    assert result.tracking_number == "8564385550"
    assert result.body == body

    tracking = result.tracking
    assert tracking.carrier == "DHL"
    assert tracking.service == "P"
    assert [a.date for a in tracking.activities] == [
        datetime(2018, 5, 12, 10, 5),
        datetime(2018, 5, 11, 14, 20),
        datetime(2018, 5, 10, 8, 0),
    ]
    assert [a.status for a in tracking.activities] == [
        TrackingStatus.DELIVERED,
        TrackingStatus.IN_TRANSIT,
        TrackingStatus.IN_TRANSIT,
    ]
    assert tracking.activities[0].address.city == "BERLIN"
    assert tracking.activities[0].address.country_code == "GERMANY"
    assert tracking.activities[0].description == "Delivered - Signed for by: MEYER"

    assert len(tracking.parcels) == 1
    assert tracking.parcels[0].weight.unit is Unit.KILOGRAM
    assert tracking.parcels[0].weight.format(2) == "1.50"


@pytest.mark.asyncio
async def test_tracking_single_event_and_pounds(carrier, mock_transport):
    mock_transport.queue(tracking_response(awb_info(
        "8564385550",
        event("2018-05-10", "08:00:00", "RT", "Returned to shipper", "STOCKHOLM"),
        weight="3.3",
        weight_unit="L",
    )))

    tracking = (await carrier.get_tracking_status("8564385550"))[0].tracking

    assert len(tracking.activities) == 1
    assert tracking.activities[0].status is TrackingStatus.EXCEPTION
    # no separator in the service area
    assert tracking.activities[0].address.city == "STOCKHOLM"
    assert tracking.activities[0].address.country_code == ""
    assert tracking.parcels[0].weight.unit is Unit.POUND


@pytest.mark.asyncio
async def test_tracking_several_numbers_with_one_missing(dhl_credentials, mock_transport):
    carrier = DHLCarrier(dhl_credentials, mock_transport, error_formatter=DHLStatusErrorFormatter())
    body = tracking_response(
        awb_info("8564385550", event("2018-05-10", "08:00:00", "PU", "Picked up", "STOCKHOLM - SWEDEN"))
        + missing_awb_info("1234567890")
    )
    mock_transport.queue(body)

    results = await carrier.get_tracking_status(["8564385550", "1234567890"])

    assert len(mock_transport.calls) == 1
    assert [result.tracking_number for result in results] == ["8564385550", "1234567890"]
    assert results[0].is_success
    assert not results[1].is_success
    assert results[1].tracking is None
    assert results[1].body == body
    assert results[1].message == "101: No Shipments Found for AWBNumber 1234567890"


@pytest.mark.asyncio
async def test_tracking_ignores_unreadable_weight(carrier, mock_transport):
    mock_transport.queue(tracking_response(awb_info(
        "8564385550",
        event("2018-05-10", "08:00:00", "PU", "Picked up", "STOCKHOLM - SWEDEN"),
        weight="n/a",
    )))

    result = (await carrier.get_tracking_status(["8564385550"]))[0]

    assert result.is_success
    assert len(result.tracking.activities) == 1
    assert result.tracking.parcels == ()


@pytest.mark.asyncio
async def test_tracking_matches_numbers_with_surrounding_spaces(carrier, mock_transport):
    mock_transport.queue(tracking_response(
        awb_info("1111111111", event("2018-05-10", "08:00:00", "PU", "Picked up", "STOCKHOLM - SWEDEN"))
        + awb_info("2222222222", event("2018-05-11", "09:00:00", "OK", "Delivered", "BERLIN - GERMANY"))
    ))

    results = await carrier.get_tracking_status(["1111111111", " 2222222222 "])

    assert [result.status for result in results] == [TrackingOutcome.SUCCESS, TrackingOutcome.SUCCESS]
    assert results[1].tracking.activities[0].status is TrackingStatus.DELIVERED


@pytest.mark.asyncio
async def test_tracking_error_defaults_to_raw_body(carrier, mock_transport):
    body = tracking_response(missing_awb_info("1234567890"))
    mock_transport.queue(body)

    result = (await carrier.get_tracking_status(["1234567890"]))[0]

    assert result.status is TrackingOutcome.ERROR
    assert result.message == body


@pytest.mark.asyncio
async def test_tracking_without_awbinfo_is_structural_error(carrier, mock_transport):
    mock_transport.queue(tracking_response(""))

    with pytest.raises(StructuralError):
        await carrier.get_tracking_status(["8564385550"])


@pytest.mark.asyncio
async def test_tracking_too_many_numbers_fails_before_request(carrier, mock_transport):
    numbers = [f"{n:010d}" for n in range(MAX_TRACKING_NUMBERS + 1)]

    with pytest.raises(PreconditionViolationError):
        await carrier.get_tracking_status(numbers)

    assert mock_transport.calls == []


@pytest.mark.asyncio
async def test_tracking_without_numbers_fails_before_request(carrier, mock_transport):
    with pytest.raises(PreconditionViolationError):
        await carrier.get_tracking_status([])

    assert mock_transport.calls == []


@pytest.mark.parametrize("code, expected", [
    ("OK", TrackingStatus.DELIVERED),
    ("ok", TrackingStatus.DELIVERED),
    ("DD", TrackingStatus.DELIVERED),
    ("RT", TrackingStatus.EXCEPTION),
    ("CA", TrackingStatus.EXCEPTION),
    ("PU", TrackingStatus.IN_TRANSIT),
    ("ZZ", TrackingStatus.IN_TRANSIT),
    (None, TrackingStatus.IN_TRANSIT),
])
def test_event_code_mapping(code, expected):
    assert map_dhl_event_code(code) is expected

"""
4. Shipments and unsupported operations
"""

@pytest.mark.asyncio
async def test_create_shipment_returns_label(carrier, mock_transport, shipment_request):
    pdf = b"%PDF-1.4 label"
    mock_transport.queue(f"""<?xml version="1.0" encoding="UTF-8"?>
<res:ShipmentResponse xmlns:res="http://www.dhl.com">
  <AirwayBillNumber>4370734450</AirwayBillNumber>
  <LabelImage>
    <OutputFormat>PDF</OutputFormat>
    <OutputImage>{base64.b64encode(pdf).decode('ascii')}</OutputImage>
  </LabelImage>
</res:ShipmentResponse>""")

    label = await carrier.create_shipment(shipment_request)

    assert label.carrier == "DHL"
    assert label.tracking_number == "4370734450"
    assert label.label == pdf
    assert label.label_format == "PDF"
    assert b"<req:ShipmentRequest" in mock_transport.last_content


@pytest.mark.asyncio
async def test_create_shipment_without_label_is_structural_error(carrier, mock_transport, shipment_request):
    mock_transport.queue(
        '<res:ShipmentResponse xmlns:res="http://www.dhl.com">'
        '<AirwayBillNumber>4370734450</AirwayBillNumber></res:ShipmentResponse>'
    )

    with pytest.raises(StructuralError):
        await carrier.create_shipment(shipment_request)


@pytest.mark.asyncio
@pytest.mark.parametrize("operation, args", [
    ("cancel_shipment", ("4370734450",)),
    ("create_pickup", (None,)),
    ("cancel_pickup", (None,)),
    ("get_proof_of_delivery", ("4370734450",)),
])
async def test_unsupported_operations(carrier, mock_transport, operation, args):
    with pytest.raises(CarrierNotImplementedError):
        await getattr(carrier, operation)(*args)

    assert mock_transport.calls == []
