# exception taxonomy shared by the gateway and the sync core
from typing import Optional


class StorefrontError(Exception):
    """Base class; ``message`` is always safe to show to the user."""

    def __init__(self, message: str = "Something went wrong") -> None:
        super().__init__(message)
        self.message = message


class TransportError(StorefrontError):
    """Network failure or timeout, no usable response."""


class AuthRequired(StorefrontError):
    """Missing, malformed or expired credential."""

    def __init__(
        self,
        message: str = "Please login to continue.",
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code


class RequestFailed(StorefrontError):
    """The server answered but the envelope says ``success: false``."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ValidationRejected(RequestFailed):
    """Server-side input rejection (400 / 422)."""


class GeoError(StorefrontError):
    pass


class GeoPermissionDenied(GeoError):
    def __init__(self, message: str = "Location access was denied.") -> None:
        super().__init__(message)


class GeoUnavailable(GeoError):
    def __init__(self, message: str = "Location information is unavailable.") -> None:
        super().__init__(message)


class GeoTimeout(GeoError):
    def __init__(self, message: str = "Location request timed out.") -> None:
        super().__init__(message)


class ChannelDropped(StorefrontError):
    """The push connection could not be opened or was lost."""


# one sentence per geolocation failure, shown inline next to the location control
GEO_ERROR_MESSAGES = {
    GeoPermissionDenied: "Location permission denied. Allow location access and try again.",
    GeoUnavailable: "Your position could not be determined. Check your connection and try again.",
    GeoTimeout: "Finding your location took too long. Please try again.",
}


def describe_geo_error(error: GeoError) -> str:
    for kind, sentence in GEO_ERROR_MESSAGES.items():
        if isinstance(error, kind):
            return sentence
    return "Could not detect your location."
