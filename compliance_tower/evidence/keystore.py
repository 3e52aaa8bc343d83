"""
Public keys used to verify signed evidence.

Keys come from ``JWS_PUBLIC_KEYS`` (a JSON array of PEM strings). Outside
production, an empty configuration falls back to the bundled development key;
in production it is a start-up error.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from ..config import Settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEV_PUBLIC_KEY_PATH = Path(__file__).with_name("dev_public_key.pem")

# JWS algorithm -> key family able to verify it
ALGORITHM_FAMILIES: Dict[str, str] = {
    "RS256": "RSA",
    "RS384": "RSA",
    "RS512": "RSA",
    "PS256": "RSA",
    "PS384": "RSA",
    "PS512": "RSA",
    "ES256": "EC",
    "ES384": "EC",
    "ES512": "EC",
    "EdDSA": "OKP",
}


@dataclass(frozen=True)
class VerificationKey:
    """A parsed public key."""

    key_id: str
    family: str
    public_key: Any = field(compare=False, repr=False)
    pem: str = field(compare=False, repr=False)


def _key_family(public_key: Any) -> str:
    if isinstance(public_key, rsa.RSAPublicKey):
        return "RSA"
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return "EC"
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return "OKP"
    raise ValueError(f"Unsupported public key type: {type(public_key).__name__}")


def parse_public_key(pem: str) -> VerificationKey:
    """Parse a PEM encoded public key.

    The key id is derived from the key's SubjectPublicKeyInfo so the same key
    always gets the same id.

    Raises:
        ValueError: If the PEM cannot be loaded or the key type is unsupported
    """
    try:
        public_key = serialization.load_pem_public_key(pem.strip().encode("utf-8"))
    except UnsupportedAlgorithm as e:
        raise ValueError(str(e)) from e
    family = _key_family(public_key)
    der = public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_id = hashlib.sha256(der).hexdigest()[:16]
    return VerificationKey(key_id=key_id, family=family, public_key=public_key, pem=pem)


@dataclass(frozen=True)
class Keystore:
    """Immutable set of verification keys."""

    keys: Tuple[VerificationKey, ...] = ()
    source: str = "configured"

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def is_empty(self) -> bool:
        return not self.keys

    @property
    def key_ids(self) -> List[str]:
        return [key.key_id for key in self.keys]

    def with_key(self, pem: str) -> "Keystore":
        """Return a new keystore that also holds ``pem``.

        Raises:
            ValueError: If the key cannot be parsed
        """
        key = parse_public_key(pem)
        if key.key_id in self.key_ids:
            return self
        return Keystore(keys=self.keys + (key,), source=self.source)

    def candidates(self, header: Dict[str, Any]) -> List[VerificationKey]:
        """Keys that could have produced a signature with ``header``.

        Filters by algorithm family, then by ``kid`` when it names a known key.
        """
        family = ALGORITHM_FAMILIES.get(str(header.get("alg")))
        if family is None:
            return []
        keys = [key for key in self.keys if key.family == family]
        kid = header.get("kid")
        if kid:
            by_id = [key for key in keys if key.key_id == kid]
            if by_id:
                return by_id
        return keys


def _configured_pems(raw: Optional[str]) -> List[str]:
    if not raw or not raw.strip():
        return []
    try:
        values = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            "JWS_KEYS_INVALID", f"JWS_PUBLIC_KEYS is not valid JSON: {e.msg}"
        ) from e
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ConfigurationError(
            "JWS_KEYS_INVALID", "JWS_PUBLIC_KEYS must be a JSON array of PEM strings"
        )
    # Env vars often carry escaped newlines
    return [value.replace("\\n", "\n") for value in values]


def load_keystore(settings: Settings) -> Keystore:
    """Build the keystore once from configuration.

    Raises:
        ConfigurationError: In production when no usable key is configured
    """
    pems = _configured_pems(settings.jws_public_keys)
    source = "configured"

    if not pems:
        if settings.is_production:
            raise ConfigurationError(
                "JWS_KEYS_MISSING",
                "JWS public keys not configured. Set JWS_PUBLIC_KEYS.",
            )
        logger.warning("Using development verification key (NOT for production use)")
        pems = [DEV_PUBLIC_KEY_PATH.read_text(encoding="utf-8")]
        source = "development"

    keys: List[VerificationKey] = []
    for index, pem in enumerate(pems):
        try:
            key = parse_public_key(pem)
        except ValueError as e:
            logger.error(f"Skipping unparseable public key #{index}: {e}")
            continue
        if key.key_id not in {k.key_id for k in keys}:
            keys.append(key)

    if not keys and settings.is_production:
        raise ConfigurationError(
            "JWS_KEYS_MISSING", "None of the configured JWS public keys could be loaded"
        )

    logger.info(f"JWS keystore initialized with {len(keys)} keys ({source})")
    return Keystore(keys=tuple(keys), source=source)
