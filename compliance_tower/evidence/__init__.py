"""Signed evidence verification."""

from .jws import JwsParts, JwsVerifier, validate_structure
from .keystore import Keystore, VerificationKey, load_keystore
from .service import EvidenceService

__all__ = [
    "JwsParts",
    "JwsVerifier",
    "validate_structure",
    "Keystore",
    "VerificationKey",
    "load_keystore",
    "EvidenceService",
]
