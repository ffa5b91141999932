"""Pydantic models for proof issuance and verification results."""

from __future__ import annotations

import base64
from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from healthpass.core.crypto.canonicalization import HealthRecordType
from healthpass.db.models import ProofType, ZkProof


def record_type_name(record_type: HealthRecordType) -> str:
    """Display name of a record type, e.g. ``TestResult`` for ``test_result``."""
    return "".join(part.capitalize() for part in record_type.value.split("_"))


class RevocationStatus(str, PyEnum):
    """State of the record behind a proof, as seen at verification time."""

    VALID = "valid"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


class VerificationDetails(BaseModel):
    """Per-check outcome of a verification attempt."""

    health_record_type: str | None = None
    issue_date: str | None = None
    authority_name: str | None = None
    is_expired: bool = False
    usage_exceeded: bool = False
    revocation_status: RevocationStatus = RevocationStatus.UNKNOWN


class VerificationResult(BaseModel):
    """Outcome of verifying a presented proof.

    ``proof_id`` is ``None`` when no stored proof matched the presented
    proof data and verification key.
    """

    is_valid: bool
    proof_id: UUID | None = None
    verified_at: datetime
    verification_details: VerificationDetails = Field(default_factory=VerificationDetails)


class ProofResponse(BaseModel):
    """A stored proof with its binary fields base64 encoded."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    proof_data: str
    verification_key: str
    proof_type: ProofType
    generated_at: datetime
    expires_at: datetime | None = None
    usage_count: int
    max_usage: int | None = None
    health_record_type: str

    @classmethod
    def from_proof(cls, proof: ZkProof, health_record_type: str) -> ProofResponse:
        return cls(
            id=proof.id,
            proof_data=base64.b64encode(proof.proof_data).decode("ascii"),
            verification_key=base64.b64encode(proof.verification_key).decode("ascii"),
            proof_type=proof.proof_type,
            generated_at=proof.generated_at,
            expires_at=proof.expires_at,
            usage_count=proof.usage_count,
            max_usage=proof.max_usage,
            health_record_type=health_record_type,
        )
