"""
Image Access Tokens

Stateless, signed, time-limited tokens that reference a source image.

A token is an HS256 JWT with claims:
    path  storage-relative source path
    iat   issued at
    exp   expiry
Nothing is stored server-side; validity is signature plus expiry.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt import PyJWTError

from imageguard.errors import TokenInvalid


logger = logging.getLogger(__name__)


class ImageTokenSigner:
    """
    Issues and verifies image access tokens.

    Usage:
        signer = ImageTokenSigner(secret="...")
        token = signer.issue("products/a.jpg")
        path = signer.verify(token)
    """

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_seconds: int = 24 * 60 * 60):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = timedelta(seconds=ttl_seconds)

    def issue(self, source_path: str, issued_at: Optional[datetime] = None) -> str:
        """Sign a token for source_path. Pure function of path, secret and time."""
        issued_at = issued_at or datetime.now(timezone.utc)
        payload = {
            "path": source_path,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """
        Validate a token and return the source path it grants.

        Raises:
            TokenInvalid: If the token is malformed, tampered with or expired
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["path", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenInvalid("Token has expired")
        except jwt.InvalidSignatureError:
            raise TokenInvalid("Invalid token signature")
        except jwt.DecodeError as e:
            raise TokenInvalid(f"Token decode error: {str(e)}")
        except PyJWTError as e:
            raise TokenInvalid(f"Token validation error: {str(e)}")

        path = payload.get("path")
        if not isinstance(path, str) or not path:
            raise TokenInvalid("Token missing 'path' claim")
        return path
