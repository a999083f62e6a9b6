"""
HMAC signing for downloadable FHIR Bundles.

Demonstrates:
- Keyed message authentication (HMAC-SHA256 via ``cryptography``) so a
  downloaded Bundle can be checked for tampering
- Constant-time signature verification
- Key management awareness (key from env, not hardcoded)

The signed text is always the canonical 2-space-indented JSON of the Bundle;
a signature and its payload must be produced together.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

logger = logging.getLogger(__name__)

ALGORITHM = "HMAC-SHA256"

# Documented development fallback. Never acceptable outside local demos.
DEFAULT_DOWNLOAD_SECRET = "default-dev-secret-change-in-prod"
_HEX_SIGNATURE = re.compile(r"[0-9a-fA-F]{64}")


class InsecureSecretError(RuntimeError):
    """Raised when the development default secret would be used in production."""


def canonical_json(document: Any) -> str:
    """Serialize a document exactly as it is signed and served.

    NaN and Infinity are rejected with ValueError; they are not valid JSON.
    """
    return json.dumps(document, indent=2, ensure_ascii=False, allow_nan=False)


class SigningService:
    """Signs and verifies Bundle text with a single shared secret."""

    def __init__(self, secret: str | None = None, environment: str | None = None):
        raw_secret = secret or os.getenv("DOWNLOAD_SECRET", "")
        env = environment or os.getenv("ENVIRONMENT", "development")
        self.uses_default_secret = not raw_secret
        if self.uses_default_secret:
            if env == "production":
                raise InsecureSecretError("DOWNLOAD_SECRET must be set in production")
            logger.warning("DOWNLOAD_SECRET not set; signing with the development default")
            raw_secret = DEFAULT_DOWNLOAD_SECRET
        self._key = raw_secret.encode("utf-8")

    def _mac(self) -> hmac.HMAC:
        return hmac.HMAC(self._key, hashes.SHA256())

    def sign(self, text: str) -> str:
        """Return the hex HMAC-SHA256 of ``text``."""
        mac = self._mac()
        mac.update(text.encode("utf-8"))
        return mac.finalize().hex()

    def verify(self, text: str, signature: str) -> bool:
        """Check ``signature`` against ``text``. Malformed signatures are simply invalid."""
        # fromhex skips whitespace, so check the exact hex form first
        if not isinstance(signature, str) or not _HEX_SIGNATURE.fullmatch(signature):
            return False
        provided = bytes.fromhex(signature)
        mac = self._mac()
        mac.update(text.encode("utf-8"))
        try:
            mac.verify(provided)
        except InvalidSignature:
            return False
        return True
