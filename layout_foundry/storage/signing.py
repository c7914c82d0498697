"""
Signed access to stored blobs.

A grant is the triple (key, exp, sig) where ``exp`` is an epoch-millisecond
deadline and ``sig = hex(HMAC-SHA256(secret, f"{key}.{exp}"))``. Grants are
purely time-bounded: there is no revocation list.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.parse import urlencode

import structlog

from ..errors import SignatureExpiredError, SignatureInvalidError

logger = structlog.get_logger()

DEFAULT_TTL_MS = 300_000
MAX_TTL_MS = 3_600_000

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def content_type_for_key(key: str) -> str:
    """Infer a content type from the storage key's extension."""
    ext = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    return _CONTENT_TYPES.get(ext, "image/png")


@dataclass(frozen=True)
class SignedGrant:
    key: str
    exp: int
    sig: str

    def query_params(self) -> Dict[str, str]:
        return {"key": self.key, "exp": str(self.exp), "sig": self.sig}

    def to_url(self, base_url: str) -> str:
        separator = "&" if "?" in base_url else "?"
        return f"{base_url}{separator}{urlencode(self.query_params())}"


class SignedAccessService:
    """Issues and verifies short-lived read grants for storage keys."""

    def __init__(
        self,
        secret: str,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        max_ttl_ms: int = MAX_TTL_MS,
        clock: Callable[[], int] = now_ms,
        allow_unsigned: bool = False,
        production: bool = True,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret.encode("utf-8")
        self.default_ttl_ms = default_ttl_ms
        self.max_ttl_ms = max_ttl_ms
        self.clock = clock
        # The diagnostics bypass can never be enabled in production.
        self.allow_unsigned = allow_unsigned and not production
        if self.allow_unsigned:
            logger.warning("signed_access_bypass_enabled")

    @classmethod
    def from_settings(cls, settings) -> "SignedAccessService":
        return cls(
            secret=settings.signing_secret,
            default_ttl_ms=settings.signed_url_default_ttl_ms,
            max_ttl_ms=settings.signed_url_max_ttl_ms,
            allow_unsigned=settings.allow_unsigned_downloads,
            production=settings.is_production,
        )

    def sign(self, key: str, exp: int) -> str:
        message = f"{key}.{exp}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def clamp_ttl(self, ttl_ms: Optional[int]) -> int:
        if ttl_ms is None:
            ttl_ms = self.default_ttl_ms
        return max(0, min(int(ttl_ms), self.max_ttl_ms))

    def issue(self, key: str, ttl_ms: Optional[int] = None) -> SignedGrant:
        """Create a grant for key that expires after the clamped TTL."""
        exp = self.clock() + self.clamp_ttl(ttl_ms)
        return SignedGrant(key=key, exp=exp, sig=self.sign(key, exp))

    def verify(self, key: str, exp: int, sig: str) -> bool:
        try:
            self.authorize(key, exp, sig)
        except (SignatureExpiredError, SignatureInvalidError):
            return False
        return True

    def authorize(self, key: str, exp: int, sig: Optional[str]) -> None:
        """Raise unless (key, exp, sig) is a live, untampered grant."""
        if self.allow_unsigned:
            return
        if self.clock() > exp:
            raise SignatureExpiredError(f"Grant for {key} expired at {exp}")
        expected = self.sign(key, exp)
        # sig is untrusted text and may be non-ASCII; compare as bytes.
        if not sig or not hmac.compare_digest(
            expected.encode("utf-8"), sig.encode("utf-8")
        ):
            raise SignatureInvalidError(f"Signature mismatch for {key}")
