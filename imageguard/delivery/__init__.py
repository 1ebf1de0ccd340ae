"""
Protected Delivery

Signed URLs, rate limiting and request policy in front of the
watermark service.

Usage:
    gateway = ProtectedDeliveryGateway(service, ImageTokenSigner(secret))
    response = gateway.handle(DeliveryRequest(token=token, user_agent=ua))
"""

from imageguard.delivery.tokens import ImageTokenSigner
from imageguard.delivery.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitWindow,
    client_identity,
)
from imageguard.delivery.policy import AccessPolicy, host_matches
from imageguard.delivery.gateway import (
    PROTECTED_ROUTE,
    DeliveryRequest,
    DeliveryResponse,
    ProtectedDeliveryGateway,
)

__all__ = [
    "ImageTokenSigner",
    "FixedWindowRateLimiter",
    "RateLimitWindow",
    "client_identity",
    "AccessPolicy",
    "host_matches",
    "PROTECTED_ROUTE",
    "DeliveryRequest",
    "DeliveryResponse",
    "ProtectedDeliveryGateway",
]
