"""
JWS structure validation and signature verification for evidence documents.

Evidence is stored as a compact JWS (``header.payload.signature``). The
structural validator never lets a raw decode exception escape; the verifier
never raises for a bad signature and returns a typed result instead.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt
from jwt.api_jws import PyJWS

from ..config import Settings, get_settings
from ..errors import ConfigurationError, SignatureFormatError
from ..schemas.evidence import VerificationResult
from ..schemas.primitives import utc_now
from .keystore import ALGORITHM_FAMILIES, Keystore, load_keystore

logger = logging.getLogger(__name__)

_BASE64URL = re.compile(r"^[A-Za-z0-9_-]*$")

DEV_FALLBACK_SUFFIX = "(development mode fallback)"


@dataclass(frozen=True)
class JwsParts:
    """Decoded (unverified) parts of a compact JWS."""

    header: Dict[str, Any]
    payload: Dict[str, Any]
    signature: str


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def validate_structure(token: Optional[str]) -> JwsParts:
    """Check that ``token`` is a well-formed compact JWS and decode it.

    Raises:
        SignatureFormatError: With a stable code describing the first defect
    """
    if not token or not isinstance(token, str) or not token.strip():
        raise SignatureFormatError("JWS_EMPTY", "JWS must be a non-empty string")

    parts = token.strip().split(".")
    if len(parts) != 3:
        raise SignatureFormatError(
            "JWS_SEGMENT_COUNT",
            "JWS must have exactly 3 parts (header.payload.signature)",
        )

    header_segment, payload_segment, signature = parts
    if (
        not header_segment
        or not payload_segment
        or not all(_BASE64URL.match(part) for part in parts)
    ):
        raise SignatureFormatError(
            "JWS_BASE64", "JWS parts must be valid base64url encoded strings"
        )

    try:
        header_bytes = _b64url_decode(header_segment)
        payload_bytes = _b64url_decode(payload_segment)
        _b64url_decode(signature)
    except (binascii.Error, ValueError) as e:
        raise SignatureFormatError(
            "JWS_BASE64", "JWS parts must be valid base64url encoded strings"
        ) from e

    try:
        header = json.loads(header_bytes)
    except ValueError as e:
        raise SignatureFormatError("JWS_HEADER_JSON", "JWS header must be valid JSON") from e
    if not isinstance(header, dict):
        raise SignatureFormatError("JWS_HEADER_JSON", "JWS header must be a JSON object")
    if not header.get("alg"):
        raise SignatureFormatError("JWS_HEADER_ALG", 'JWS header must include "alg" field')

    try:
        payload = json.loads(payload_bytes)
    except ValueError as e:
        raise SignatureFormatError(
            "JWS_PAYLOAD_JSON", "JWS payload must be valid JSON"
        ) from e
    if not isinstance(payload, dict):
        raise SignatureFormatError(
            "JWS_PAYLOAD_JSON", "JWS payload must be a JSON object"
        )

    return JwsParts(header=header, payload=payload, signature=signature)


def payload_timestamp(payload: Dict[str, Any]) -> Optional[datetime]:
    """Signing time from ``timestamp`` (ISO 8601 or epoch) or ``iat`` (epoch)."""
    for key in ("timestamp", "iat"):
        value = payload.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                continue
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    return None


class JwsVerifier:
    """
    Verifies evidence signatures against a keystore.

    The keystore is replaced as a whole by ``add_public_key``; every other
    operation only reads it.

    Raises:
        ConfigurationError: If the development fallback is enabled in production
    """

    def __init__(
        self,
        keystore: Optional[Keystore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        if self.settings.is_production and self.settings.jws_dev_fallback_enabled:
            raise ConfigurationError(
                "JWS_FALLBACK_IN_PRODUCTION",
                "Unsigned evidence fallback must be disabled in production",
            )
        self.keystore = keystore if keystore is not None else load_keystore(self.settings)
        self.allow_dev_fallback = self.settings.jws_dev_fallback_enabled
        self._jws = PyJWS()
        self._lock = threading.Lock()

    def add_public_key(self, pem: str) -> Keystore:
        """Add a verification key. Raises ValueError if it cannot be parsed."""
        with self._lock:
            self.keystore = self.keystore.with_key(pem)
            logger.info(f"Public key added to keystore ({len(self.keystore)} keys)")
            return self.keystore

    def verify(self, token: Optional[str]) -> VerificationResult:
        """Verify one compact JWS. Never raises for invalid input."""
        try:
            parts = validate_structure(token)
        except SignatureFormatError as e:
            self._log_failure(e.message)
            return VerificationResult(is_valid=False, error=e.message)

        error = self._check_signature(token.strip(), parts)
        if error is None:
            error = self._check_age(parts.payload)
        if error is None:
            return VerificationResult(
                is_valid=True, header=parts.header, payload=parts.payload
            )

        self._log_failure(error)
        if self.allow_dev_fallback:
            logger.warning("Accepting unverified JWS (development mode), marked invalid")
            return VerificationResult(
                is_valid=False,
                header=parts.header,
                payload=parts.payload,
                error=f"{error} {DEV_FALLBACK_SUFFIX}",
            )
        return VerificationResult(is_valid=False, error=error)

    def _check_signature(self, token: str, parts: JwsParts) -> Optional[str]:
        algorithm = str(parts.header.get("alg"))
        if algorithm not in ALGORITHM_FAMILIES:
            return f"Unsupported signature algorithm: {algorithm}"

        keystore = self.keystore
        candidates = keystore.candidates(parts.header)
        if not candidates:
            return "No verification key matches the signature header"

        for key in candidates:
            try:
                self._jws.decode_complete(
                    token, key=key.public_key, algorithms=[algorithm]
                )
                return None
            except jwt.exceptions.InvalidSignatureError:
                continue
            except jwt.exceptions.PyJWTError as e:
                return f"Signature verification failed: {e}"
        return "Signature verification failed"

    def _check_age(self, payload: Dict[str, Any]) -> Optional[str]:
        max_age = self.settings.jws_max_age_seconds
        if max_age is None:
            return None
        signed_at = payload_timestamp(payload)
        if signed_at is None:
            return "Evidence timestamp missing; cannot enforce maximum age"
        age = (utc_now() - signed_at).total_seconds()
        if age > max_age:
            return f"Evidence signature expired ({int(age)}s old, max {max_age}s)"
        return None

    def _log_failure(self, reason: str) -> None:
        if self.settings.jws_log_failures:
            logger.warning(f"JWS verification failed: {reason}")
