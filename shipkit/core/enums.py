"""
Shared enums and constants used across the carrier adapters.
"""

from enum import Enum


class CarrierCode(str, Enum):
    UPS = "ups"
    DHL = "dhl"


class TrackingStatus(str, Enum):
    """Canonical status of a single tracking activity"""
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    EXCEPTION = "EXCEPTION"


class TrackingOutcome(str, Enum):
    """Outcome of a tracking lookup for one tracking number"""
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
