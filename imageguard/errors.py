"""
Error Taxonomy

Domain errors for rendering, caching and delivery.

Rendering and storage errors never reach the delivery path as exceptions:
callers convert them into "serve original" or "serve CSS fallback" results
and record an admin notification. Delivery errors are terminal for the
request and map directly onto an HTTP status code.
"""

from typing import Any, Dict, Optional


class WatermarkError(Exception):
    """Base class for all ImageGuard errors."""

    status_code: int = 500
    error_type: Optional[str] = None

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_type": self.error_type,
            **self.context,
        }


class MissingCodecCapability(WatermarkError):
    """No codec is available to decode or encode the source format."""

    error_type = "missing_extensions"


class CorruptedOrUnreadableSource(WatermarkError):
    """Source bytes are empty, truncated or not an image."""

    error_type = "corrupted_image"


class GenerationTimeout(WatermarkError):
    """Synchronous generation did not finish in time."""

    status_code = 504


class InvalidationRaceDetected(WatermarkError):
    """An artifact was rendered under settings that were invalidated mid-flight."""

    status_code = 409


class DeliveryError(WatermarkError):
    """Client-facing gateway rejection. Never retried server-side."""


class TokenInvalid(DeliveryError):
    """Token signature is wrong, malformed or expired."""

    status_code = 404


class RateLimited(DeliveryError):
    """Client exceeded the request budget for the current window."""

    status_code = 429


class PolicyBlocked(DeliveryError):
    """User agent, referer or path policy rejected the request."""

    status_code = 403
