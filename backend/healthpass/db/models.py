"""
SQLAlchemy ORM models for the health pass service.

Column types are portable: JSON maps to JSONB on PostgreSQL and plain JSON
elsewhere, UUIDs use the generic ``Uuid`` type, and signatures/proofs are
stored as ``LargeBinary``.
"""

from datetime import UTC, date, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from healthpass.core.crypto.canonicalization import HealthRecordType

ZERO_32 = bytes(32)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON().with_variant(JSONB(), "postgresql"),
    }


def _enum_column(enum_cls: type[PyEnum]) -> Enum:
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e])


# =============================================================================
# Enums
# =============================================================================


class AuthorityType(str, PyEnum):
    """Kinds of organisation allowed to issue health records."""

    HOSPITAL = "hospital"
    CLINIC = "clinic"
    LABORATORY = "laboratory"
    GOVERNMENT = "government"
    PHARMACY = "pharmacy"
    UNIVERSITY = "university"


class ProofType(str, PyEnum):
    """Statement proven by a zero-knowledge proof."""

    ECDSA_SIGNATURE_VERIFICATION = "ecdsa_signature_verification"


# =============================================================================
# Authorities and Records
# =============================================================================


class HealthAuthority(Base):
    """An organisation whose key signs health records."""

    __tablename__ = "health_authorities"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    authority_type: Mapped[AuthorityType] = mapped_column(
        _enum_column(AuthorityType), nullable=False
    )
    public_key: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="secp256k1 public key, hex encoded SEC1 point",
    )
    certificate: Mapped[str | None] = mapped_column(Text, comment="X.509 certificate (PEM)")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    records: Mapped[list["HealthRecord"]] = relationship(back_populates="authority")


class HealthRecord(Base):
    """
    A health fact about a patient, attested by an authority.

    Created with zeroed signature columns; signing overwrites all three at
    once. Revocation is terminal for new proofs but never deletes proofs.
    """

    __tablename__ = "health_records"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(
        nullable=False,
        comment="Subject of the owning user account",
    )
    authority_id: Mapped[UUID] = mapped_column(
        ForeignKey("health_authorities.id"),
        nullable=False,
    )
    record_type: Mapped[HealthRecordType] = mapped_column(
        _enum_column(HealthRecordType), nullable=False
    )
    patient_identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date)
    signature_r: Mapped[bytes] = mapped_column(LargeBinary, default=ZERO_32, nullable=False)
    signature_s: Mapped[bytes] = mapped_column(LargeBinary, default=ZERO_32, nullable=False)
    message_hash: Mapped[bytes] = mapped_column(
        LargeBinary,
        default=ZERO_32,
        nullable=False,
        comment="SHA-256 of the 32-byte padded canonical message",
    )
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    authority: Mapped[HealthAuthority] = relationship(back_populates="records")
    proofs: Mapped[list["ZkProof"]] = relationship(back_populates="health_record")

    __table_args__ = (
        Index("ix_health_records_owner_id", "owner_id"),
        Index("ix_health_records_authority_id", "authority_id"),
        Index("ix_health_records_type", "record_type"),
        Index("ix_health_records_issue_date", "issue_date"),
    )

    @property
    def is_signed(self) -> bool:
        return self.message_hash != ZERO_32 and self.signature_r != ZERO_32


# =============================================================================
# Proofs and Verification Audit
# =============================================================================


class ZkProof(Base):
    """
    Zero-knowledge proof that a record carries a valid authority signature.

    ``usage_count`` only grows, and never beyond ``max_usage`` when set.
    """

    __tablename__ = "zk_proofs"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    health_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("health_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    proof_data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    verification_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    proof_type: Mapped[ProofType] = mapped_column(
        _enum_column(ProofType),
        default=ProofType.ECDSA_SIGNATURE_VERIFICATION,
        nullable=False,
    )
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_usage: Mapped[int | None] = mapped_column(Integer)

    health_record: Mapped[HealthRecord] = relationship(back_populates="proofs")

    __table_args__ = (
        Index("ix_zk_proofs_health_record_id", "health_record_id"),
        Index("ix_zk_proofs_generated_at", "generated_at"),
    )


class ProofVerification(Base):
    """
    Append-only audit row for one verification attempt against a known proof.

    Rows are never updated or deleted. ``id`` increases with every insert and
    gives the order attempts were recorded in, independent of clock resolution.
    """

    __tablename__ = "proof_verifications"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    proof_id: Mapped[UUID] = mapped_column(ForeignKey("zk_proofs.id"), nullable=False)
    verifier_id: Mapped[UUID | None] = mapped_column(
        comment="Verifying user, NULL for public checks"
    )
    verification_result: Mapped[bool] = mapped_column(Boolean, nullable=False)
    verification_context: Mapped[dict[str, Any] | None] = mapped_column()
    verified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("ix_proof_verifications_proof_id", "proof_id"),
        Index("ix_proof_verifications_verified_at", "verified_at"),
    )
