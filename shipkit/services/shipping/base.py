"""
Base Carrier Interface

This module defines the abstract base class that every shipping carrier
adapter implements.

Each carrier adapter provides the same coroutines for:
- Getting shipping quotes
- Tracking shipments
- Creating and cancelling shipments
- Creating and cancelling pickups
- Proof of delivery
- Listing available services

The base class carries no behaviour of its own. Each adapter composes a
payload builder and a response normalizer. Operations a carrier does not
support raise ``CarrierNotImplementedError`` instead of returning an empty
result a caller could mistake for "no data".
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from shipkit.schemas.shipping import (
    CancelPickupRequest,
    Label,
    PickupRequest,
    Quote,
    QuoteRequest,
    ShipmentRequest,
    TrackingResult,
)


class BaseCarrier(ABC):
    """Base class for all shipping carriers"""

    carrier_name = "Generic Carrier"
    carrier_code = "generic"

    @abstractmethod
    async def get_quotes(self, request: QuoteRequest) -> List[Quote]:
        """Get shipping quotes

        Args:
            request: Sender, recipient and parcels

        Returns:
            Quotes in the carrier's own order

        Raises:
            StructuralError: If the response carries no usable rate lines
        """
        pass

    @abstractmethod
    async def get_tracking_status(
        self,
        tracking_numbers: Sequence[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[TrackingResult]:
        """Track one or more shipments

        Args:
            tracking_numbers: Tracking numbers to look up
            options: Carrier specific options

        Returns:
            One TrackingResult per tracking number

        Raises:
            PreconditionViolationError: If the carrier cannot take this many numbers
        """
        pass

    @abstractmethod
    async def create_shipment(self, request: ShipmentRequest) -> Label:
        pass

    @abstractmethod
    async def cancel_shipment(self, shipment_id: str, data: Optional[Dict[str, Any]] = None) -> bool:
        pass

    @abstractmethod
    async def create_pickup(self, request: PickupRequest) -> Any:
        pass

    @abstractmethod
    async def cancel_pickup(self, request: CancelPickupRequest) -> Any:
        pass

    @abstractmethod
    async def get_proof_of_delivery(self, tracking_number: str) -> Any:
        pass

    @abstractmethod
    async def get_available_services(self, request: QuoteRequest) -> List[str]:
        """Service codes the carrier offers for this route, in quote order"""
        pass
