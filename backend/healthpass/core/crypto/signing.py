"""
ECDSA signing and verification of health records over secp256k1.

Uses the ``cryptography`` library. Signatures are always emitted in low-S
form because the downstream Noir circuit rejects the high-S twin of a valid
signature; verification likewise treats a high-S signature as invalid.

One :class:`SignatureEngine` is built per process (:func:`get_signature_engine`)
and shared by every service. It holds no mutable state, and the underlying
OpenSSL objects are safe to use from several threads.
"""

from __future__ import annotations

import binascii
from dataclasses import dataclass
from functools import lru_cache

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from healthpass.core.crypto.canonicalization import (
    HealthRecordType,
    canonical_message,
    message_digest,
    pad_message,
)
from healthpass.core.errors import BadInputError, CryptographicError

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_ORDER = SECP256K1_ORDER // 2

SCALAR_SIZE = 32
UNCOMPRESSED_POINT_SIZE = 65
UNCOMPRESSED_POINT_PREFIX = 0x04


@dataclass(frozen=True)
class RecordSignature:
    """Result of signing a health record.

    Attributes
    ----------
    message_hash:
        SHA-256 of the 32-byte padded canonical message.
    signature_r, signature_s:
        32-byte big-endian signature components; ``s`` is low-S normalized.
    canonical_message:
        The full canonical string, before truncation.
    """

    message_hash: bytes
    signature_r: bytes
    signature_s: bytes
    canonical_message: str


def _decode_hex(value: str, what: str) -> bytes:
    text = value.strip()
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    try:
        return binascii.unhexlify(text)
    except (binascii.Error, ValueError) as exc:
        raise BadInputError(f"Invalid {what} hex format") from exc


def _scalar_bytes(value: int) -> bytes:
    return value.to_bytes(SCALAR_SIZE, "big")


class SignatureEngine:
    """Sign, verify and parse keys on a single named curve."""

    def __init__(self) -> None:
        self._curve = ec.SECP256K1()
        self._algorithm = ec.ECDSA(Prehashed(hashes.SHA256()))

    @property
    def curve_name(self) -> str:
        return self._curve.name

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        record_type: HealthRecordType,
        patient_identifier: str,
        details: str,
        issue_date: str,
        issuer: str,
        private_key: ec.EllipticCurvePrivateKey,
    ) -> RecordSignature:
        """Canonicalize, hash and sign a health record.

        The hash covers the 32-byte padded buffer, not the original string.
        """
        self._require_curve(private_key.curve, "private key")
        message = canonical_message(
            record_type, patient_identifier, details, issue_date, issuer
        )
        digest = message_digest(pad_message(message))

        try:
            der_signature = private_key.sign(digest, self._algorithm)
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise CryptographicError("Failed to sign message hash") from exc

        r, s = decode_dss_signature(der_signature)
        if s > SECP256K1_HALF_ORDER:
            s = SECP256K1_ORDER - s

        return RecordSignature(
            message_hash=digest,
            signature_r=_scalar_bytes(r),
            signature_s=_scalar_bytes(s),
            canonical_message=message,
        )

    def verify(
        self,
        message_hash: bytes,
        signature_r: bytes,
        signature_s: bytes,
        public_key: ec.EllipticCurvePublicKey,
    ) -> bool:
        """Check a compact ``(r, s)`` signature over ``message_hash``.

        Returns ``False`` for any cryptographically invalid signature,
        including high-S ones. Raises :class:`BadInputError` only when the
        inputs are structurally malformed.
        """
        for name, value in (
            ("message hash", message_hash),
            ("signature r", signature_r),
            ("signature s", signature_s),
        ):
            if len(value) != SCALAR_SIZE:
                raise BadInputError(f"Invalid {name} length: expected {SCALAR_SIZE} bytes")
        self._require_curve(public_key.curve, "public key")

        r = int.from_bytes(signature_r, "big")
        s = int.from_bytes(signature_s, "big")
        if not (0 < r < SECP256K1_ORDER and 0 < s <= SECP256K1_HALF_ORDER):
            return False

        try:
            public_key.verify(encode_dss_signature(r, s), message_hash, self._algorithm)
        except InvalidSignature:
            return False
        return True

    @staticmethod
    def is_signature_normalized(signature_s: bytes) -> bool:
        """True iff the first byte of ``s`` is below ``0x80``."""
        return len(signature_s) > 0 and signature_s[0] < 0x80

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def generate_key_pair(
        self,
    ) -> tuple[ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey]:
        private_key = ec.generate_private_key(self._curve)
        return private_key, private_key.public_key()

    def parse_private_key(self, private_key_hex: str) -> ec.EllipticCurvePrivateKey:
        """Parse a 32-byte hex scalar (optional ``0x`` prefix)."""
        raw = _decode_hex(private_key_hex, "private key")
        if len(raw) != SCALAR_SIZE:
            raise BadInputError("Invalid private key")
        scalar = int.from_bytes(raw, "big")
        if not 0 < scalar < SECP256K1_ORDER:
            raise BadInputError("Invalid private key")
        return ec.derive_private_key(scalar, self._curve)

    def parse_public_key(self, public_key_hex: str) -> ec.EllipticCurvePublicKey:
        """Parse a SEC1 encoded point (compressed or uncompressed) from hex."""
        raw = _decode_hex(public_key_hex, "public key")
        try:
            return ec.EllipticCurvePublicKey.from_encoded_point(self._curve, raw)
        except ValueError as exc:
            raise BadInputError("Invalid public key") from exc

    @staticmethod
    def serialize_private_key(private_key: ec.EllipticCurvePrivateKey) -> str:
        return _scalar_bytes(private_key.private_numbers().private_value).hex()

    @staticmethod
    def serialize_public_key(
        public_key: ec.EllipticCurvePublicKey, *, compressed: bool = False
    ) -> str:
        point_format = (
            PublicFormat.CompressedPoint if compressed else PublicFormat.UncompressedPoint
        )
        return public_key.public_bytes(Encoding.X962, point_format).hex()

    def get_public_key_coordinates(
        self, public_key: ec.EllipticCurvePublicKey | bytes
    ) -> tuple[bytes, bytes]:
        """Split an uncompressed public key into 32-byte X and Y coordinates."""
        if isinstance(public_key, bytes):
            encoded = public_key
        else:
            encoded = public_key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)

        if len(encoded) != UNCOMPRESSED_POINT_SIZE or encoded[0] != UNCOMPRESSED_POINT_PREFIX:
            raise BadInputError("Invalid uncompressed public key format")
        return encoded[1:33], encoded[33:65]

    def _require_curve(self, curve: ec.EllipticCurve, what: str) -> None:
        if curve.name != self._curve.name:
            raise BadInputError(f"Expected a {self._curve.name} {what}, got {curve.name}")


@lru_cache
def get_signature_engine() -> SignatureEngine:
    """Process-wide signature engine, built on first use."""
    return SignatureEngine()
