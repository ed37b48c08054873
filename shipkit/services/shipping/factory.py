"""
Shipping carrier factory to make carrier selection easy
"""
from typing import Optional

from shipkit.core.config import Settings, get_settings
from shipkit.core.enums import CarrierCode
from shipkit.services.shipping.base import BaseCarrier
from shipkit.services.shipping.carriers import dhl, ups
from shipkit.services.shipping.error_formatter import ErrorFormatter
from shipkit.services.shipping.transport import HttpTransport


def _build_ups(settings: Settings, transport, error_formatter) -> BaseCarrier:
    credentials = ups.UPSCredentials(
        username=settings.UPS_USERNAME,
        password=settings.UPS_PASSWORD,
        access_license=settings.UPS_ACCESS_LICENSE,
        shipper_number=settings.UPS_SHIPPER_NUMBER or None,
    )
    base_url = ups.URL_TEST if settings.UPS_TEST_MODE else ups.URL_PRODUCTION
    return ups.UPSCarrier(credentials, transport, base_url=base_url, error_formatter=error_formatter)


def _build_dhl(settings: Settings, transport, error_formatter) -> BaseCarrier:
    credentials = dhl.DHLCredentials(
        site_id=settings.DHL_SITE_ID,
        password=settings.DHL_PASSWORD,
        account_number=settings.DHL_ACCOUNT_NUMBER,
    )
    base_url = dhl.URL_TEST if settings.DHL_TEST_MODE else dhl.URL_PRODUCTION
    return dhl.DHLCarrier(credentials, transport, base_url=base_url, error_formatter=error_formatter)


_BUILDERS = {
    CarrierCode.UPS: _build_ups,
    CarrierCode.DHL: _build_dhl,
}


def get_carrier(
    carrier_code: str,
    transport=None,
    settings: Optional[Settings] = None,
    error_formatter: Optional[ErrorFormatter] = None,
) -> BaseCarrier:
    """
    Factory function to get the appropriate carrier by code

    Args:
        carrier_code: The code of the carrier to use ("ups", "dhl")
        transport: Request executor, defaults to HttpTransport
        settings: Settings to read credentials from, defaults to get_settings()
        error_formatter: Formatter for failed tracking responses

    Returns:
        An instance of the appropriate carrier class

    Raises:
        ValueError: If the carrier code is not supported
    """
    try:
        code = CarrierCode((carrier_code or '').strip().lower())
    except ValueError:
        raise ValueError(f"Carrier '{carrier_code}' is not supported")

    settings = settings or get_settings()
    transport = transport or HttpTransport(timeout=settings.HTTP_TIMEOUT)
    return _BUILDERS[code](settings, transport, error_formatter)
