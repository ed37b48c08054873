class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class CarrierError(BaseServiceError):
    """Base exception for carrier adapter errors."""
    pass

class StructuralError(CarrierError):
    """Raised when a carrier response is missing a node the normalizer requires.

    The raw response body is always attached so callers can inspect it.
    """

    def __init__(self, message: str, body: str = ""):
        super().__init__(message)
        self.body = body

class PreconditionViolationError(CarrierError):
    """Raised when a caller passes something the carrier contract forbids."""
    pass

class CarrierNotImplementedError(CarrierError):
    """Raised when a carrier does not support the requested operation."""
    pass

class TransportError(CarrierError):
    """Raised when the outbound HTTP request itself fails."""
    pass

class UnitConversionError(ValueError):
    """Raised when converting between units of different dimensions."""
    pass
