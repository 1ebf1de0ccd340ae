"""
Protected Delivery Gateway

Serves watermarked images behind signed URLs.

Request checks, in order (first failure wins):
    protection disabled          404
    token invalid or expired     404
    user agent blocked           403  (before any rate-limit accounting)
    rate limit exceeded          429
    referer or path rejected     403
    source missing               404
    If-None-Match matches        304
Otherwise the artifact is looked up or generated synchronously and
returned with private caching and security headers. A bytes Range
header narrows the 200 to a 206 (first satisfiable range only) or
answers 416.
"""

import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

from imageguard.cache.headers import (
    etags_match,
    no_store_headers,
    original_etag,
    parse_range_header,
    protected_image_headers,
)
from imageguard.delivery.policy import AccessPolicy
from imageguard.delivery.rate_limit import FixedWindowRateLimiter, client_identity
from imageguard.delivery.tokens import ImageTokenSigner
from imageguard.errors import DeliveryError, PolicyBlocked, RateLimited
from imageguard.jobs import Priority
from imageguard.watermark.fallback import FALLBACK_HEADER
from imageguard.watermark.service import WatermarkService


logger = logging.getLogger(__name__)

PROTECTED_ROUTE = "/protected/image"


@dataclass
class DeliveryRequest:
    """The parts of an HTTP request the gateway looks at."""
    token: str
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    if_none_match: Optional[str] = None
    client_ip: Optional[str] = None
    host: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    range_header: Optional[str] = None

    @property
    def target(self) -> Optional[Tuple[int, int]]:
        if self.width and self.height:
            return self.width, self.height
        return None


@dataclass
class DeliveryResponse:
    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def rejected(cls, status_code: int, reason: str, headers: Optional[Dict[str, str]] = None) -> "DeliveryResponse":
        merged = no_store_headers()
        merged.update(headers or {})
        return cls(status_code=status_code, headers=merged, reason=reason)


def _guess_content_type(source_path: str) -> str:
    content_type, _ = mimetypes.guess_type(source_path)
    return content_type or "application/octet-stream"


def _partial(response: DeliveryResponse, range_header: Optional[str]) -> DeliveryResponse:
    """Narrow a full 200 response to the requested byte range."""
    if response.status_code != 200 or not range_header:
        return response

    size = len(response.body)
    ranges = parse_range_header(range_header, size)
    if ranges is None:
        return response

    headers = dict(response.headers)
    if not ranges:
        headers["Content-Range"] = f"bytes */{size}"
        return DeliveryResponse(status_code=416, headers=headers, reason="Range not satisfiable")

    start, end = ranges[0]
    headers["Content-Range"] = f"bytes {start}-{end}/{size}"
    return DeliveryResponse(
        status_code=206,
        body=response.body[start:end + 1],
        headers=headers,
        content_type=response.content_type,
    )


class ProtectedDeliveryGateway:
    """
    Token-gated image delivery.

    Usage:
        gateway = ProtectedDeliveryGateway(service, signer, limiter, policy)
        url = gateway.protected_url("products/a.jpg")
        response = gateway.handle(DeliveryRequest(token=..., user_agent=...))
    """

    def __init__(
        self,
        service: WatermarkService,
        signer: ImageTokenSigner,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        policy: Optional[AccessPolicy] = None,
        max_age: int = 3600,
        route_prefix: str = PROTECTED_ROUTE,
    ):
        self.service = service
        self.signer = signer
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter()
        self.policy = policy or AccessPolicy()
        self.max_age = max_age
        self.route_prefix = route_prefix.rstrip("/")

    def protected_url(self, source_path: str, width: Optional[int] = None, height: Optional[int] = None) -> str:
        """Signed URL for source_path, optionally carrying target render dimensions."""
        url = f"{self.route_prefix}/{self.signer.issue(source_path)}"
        if width and height:
            url = f"{url}?{urlencode({'w': width, 'h': height})}"
        return url

    def handle(self, request: DeliveryRequest) -> DeliveryResponse:
        """Run the request through every check and produce a response. Never raises."""
        try:
            return _partial(self._handle(request), request.range_header)
        except DeliveryError as e:
            logger.info(f"Protected image request rejected ({e.status_code}): {e.message}")
            headers = {}
            if isinstance(e, RateLimited) and e.context.get("retry_after"):
                headers["Retry-After"] = str(e.context["retry_after"])
            return DeliveryResponse.rejected(e.status_code, e.message, headers)

    def _handle(self, request: DeliveryRequest) -> DeliveryResponse:
        epoch = self.service.cache_store.epoch
        snapshot = self.service.config_store.snapshot()
        if not snapshot.protection_enabled:
            return DeliveryResponse.rejected(404, "Image protection is disabled")

        source_path = self.signer.verify(request.token)

        allowed, reason = self.policy.check_user_agent(request.user_agent)
        if not allowed:
            raise PolicyBlocked(reason, source_path=source_path)

        client_key = client_identity(request.client_ip, request.user_agent)
        allowed, reason = self.rate_limiter.check_rate_limit(client_key)
        if not allowed:
            raise RateLimited(reason, retry_after=self.rate_limiter.retry_after(client_key))

        allowed, reason = self.policy.check_referer(request.referer, request.host)
        if not allowed:
            raise PolicyBlocked(reason, source_path=source_path)

        allowed, reason = self.policy.check_path(source_path)
        if not allowed:
            raise PolicyBlocked(reason, source_path=source_path)

        store = self.service.cache_store
        if store.source_mtime(source_path) is None:
            return DeliveryResponse.rejected(404, "Image not found")

        etag = self.service.etag_for(source_path, request.target, snapshot)
        if etags_match(request.if_none_match, etag):
            return DeliveryResponse(
                status_code=304,
                headers=protected_image_headers(etag, self.max_age),
            )

        result = self.service.resolve(source_path, Priority.HIGH, request.target, snapshot=snapshot, epoch=epoch)

        if result.is_watermarked:
            try:
                body = store.read_bytes(result.entry)
            except OSError as e:
                # Purged between lookup and read
                logger.info(f"Artifact for {source_path} vanished before read: {e}")
            else:
                return DeliveryResponse(
                    status_code=200,
                    body=body,
                    headers=protected_image_headers(etag, self.max_age),
                    content_type=result.content_type,
                )

        return self._serve_original(source_path, etag if result.is_fallback else None)

    def _serve_original(self, source_path: str, fallback_etag: Optional[str]) -> DeliveryResponse:
        store = self.service.cache_store
        try:
            body = store.absolute_path(source_path).read_bytes()
            mtime = store.source_mtime(source_path)
        except OSError as e:
            logger.warning(f"Failed to read original {source_path}: {e}")
            return DeliveryResponse.rejected(404, "Image not found")

        if fallback_etag is not None:
            headers = protected_image_headers(fallback_etag, self.max_age)
            headers[FALLBACK_HEADER] = "css"
        else:
            headers = protected_image_headers(original_etag(source_path, mtime or 0.0), self.max_age)

        return DeliveryResponse(
            status_code=200,
            body=body,
            headers=headers,
            content_type=_guess_content_type(source_path),
        )
