"""
Cryptographic primitives for health-record attestation.

- **canonicalization**: deterministic signable message and its 32-byte buffer
- **signing**: secp256k1 ECDSA with low-S normalization, key parsing and
  public-key coordinate extraction for the proving circuit
"""

from healthpass.core.crypto.canonicalization import (
    MESSAGE_BUFFER_SIZE,
    HealthRecordType,
    canonical_message,
    message_digest,
    pad_message,
    record_label,
)
from healthpass.core.crypto.signing import (
    RecordSignature,
    SignatureEngine,
    get_signature_engine,
)

__all__ = [
    "MESSAGE_BUFFER_SIZE",
    "HealthRecordType",
    "canonical_message",
    "message_digest",
    "pad_message",
    "record_label",
    "RecordSignature",
    "SignatureEngine",
    "get_signature_engine",
]
