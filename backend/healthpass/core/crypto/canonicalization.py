"""
Deterministic canonicalization of health records into signable messages.

The canonical message is ``"{label}:{patient}_{details}_{date}:{issuer}"``.
Signers, the proving circuit and offline tooling must all build it this way,
otherwise hashes and signatures silently stop agreeing.

Only the first 32 bytes of the UTF-8 message are signed: longer messages are
truncated and shorter ones are zero-padded on the right. Two records whose
canonical messages share their first 32 bytes therefore hash identically.
"""

from __future__ import annotations

import hashlib
from enum import Enum as PyEnum

MESSAGE_BUFFER_SIZE = 32


class HealthRecordType(str, PyEnum):
    """Kinds of health record that can be attested."""

    VACCINATION = "vaccination"
    TEST_RESULT = "test_result"
    MEDICAL_CLEARANCE = "medical_clearance"
    IMMUNITY_PROOF = "immunity_proof"


_RECORD_LABELS: dict[HealthRecordType, str] = {
    HealthRecordType.VACCINATION: "VaxRecord",
    HealthRecordType.TEST_RESULT: "TestResult",
    HealthRecordType.MEDICAL_CLEARANCE: "MedClearance",
    HealthRecordType.IMMUNITY_PROOF: "ImmunityProof",
}


def record_label(record_type: HealthRecordType) -> str:
    """Return the fixed message label for a record type."""
    return _RECORD_LABELS[HealthRecordType(record_type)]


def canonical_message(
    record_type: HealthRecordType,
    patient_identifier: str,
    details: str,
    issue_date: str,
    issuer: str,
) -> str:
    """Build the canonical signable string for a health record.

    Examples
    --------
    >>> canonical_message(
    ...     HealthRecordType.VACCINATION, "Patient123", "COVID19_Dose1", "2025", "HealthAuthority"
    ... )
    'VaxRecord:Patient123_COVID19_Dose1_2025:HealthAuthority'
    """
    label = record_label(record_type)
    return f"{label}:{patient_identifier}_{details}_{issue_date}:{issuer}"


def pad_message(message: str) -> bytes:
    """Copy the UTF-8 message into a fixed 32-byte buffer.

    Bytes past the 32nd are dropped; short messages are right-padded with
    ``0x00``.
    """
    encoded = message.encode("utf-8")[:MESSAGE_BUFFER_SIZE]
    return encoded.ljust(MESSAGE_BUFFER_SIZE, b"\x00")


def message_digest(buffer: bytes) -> bytes:
    """SHA-256 of the padded buffer (never of the original string)."""
    if len(buffer) != MESSAGE_BUFFER_SIZE:
        raise ValueError(f"Message buffer must be {MESSAGE_BUFFER_SIZE} bytes, got {len(buffer)}")
    return hashlib.sha256(buffer).digest()
