# tests/conftest.py
import pytest

from shipkit.core.config import Settings
from shipkit.schemas.shipping import Address, Parcel, QuoteRequest
from shipkit.services.shipping.carriers.dhl import DHLCredentials
from shipkit.services.shipping.carriers.ups import UPSCredentials
from shipkit.services.shipping.measurement import Unit
from tests.mocks.mock_transport import MockTransport


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        UPS_USERNAME="ups_user",
        UPS_PASSWORD="ups_pass",
        UPS_ACCESS_LICENSE="ups_license",
        UPS_SHIPPER_NUMBER=None,
        UPS_TEST_MODE=True,
        DHL_SITE_ID="dhl_site",
        DHL_PASSWORD="dhl_pass",
        DHL_ACCOUNT_NUMBER="950000002",
        DHL_TEST_MODE=True,
        HTTP_TIMEOUT=5.0,
    )

@pytest.fixture
def mock_transport():
    """Provide a transport that replays queued bodies"""
    return MockTransport()

@pytest.fixture
def ups_credentials():
    return UPSCredentials(username="ups_user", password="ups_pass", access_license="ups_license")

@pytest.fixture
def ups_negotiated_credentials():
    return UPSCredentials(
        username="ups_user",
        password="ups_pass",
        access_license="ups_license",
        shipper_number="A1B2C3",
    )

@pytest.fixture
def dhl_credentials():
    return DHLCredentials(site_id="dhl_site", password="dhl_pass", account_number="950000002")

@pytest.fixture
def swedish_sender():
    return Address(
        name="Vinnia AB",
        lines=("Kungsgatan 1", ""),
        postal_code="111 43",
        city="Stockholm",
        country_code="SE",
    )

@pytest.fixture
def us_sender():
    return Address(
        name="Sender Inc",
        lines=("1 Main Street",),
        postal_code="10001",
        city="New York",
        state="NY",
        country_code="us",
    )

@pytest.fixture
def german_recipient():
    return Address(
        name="Empfaenger GmbH",
        lines=("Unter den Linden 5",),
        postal_code="10117",
        city="Berlin",
        country_code="DE",
    )

@pytest.fixture
def sample_parcel():
    """10 x 20 x 30 cm, 1 kg"""
    return Parcel.make(10, 20, 30, 1, Unit.CENTIMETER, Unit.KILOGRAM)

@pytest.fixture
def quote_request(swedish_sender, german_recipient, sample_parcel):
    return QuoteRequest(sender=swedish_sender, recipient=german_recipient, parcels=(sample_parcel,))
