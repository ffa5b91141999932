"""
Verify presented proofs and manage proof usage.

A verification is one unit of work: the usage increment and the audit row
are committed together, or neither is. The quota is claimed with a single
conditional ``UPDATE``, so concurrent verifications of the same proof can
never push ``usage_count`` past ``max_usage``.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from healthpass.core.errors import BadInputError, HealthPassError, InternalError, NotFoundError
from healthpass.core.logging import get_logger
from healthpass.db.models import HealthAuthority, HealthRecord, ZkProof, utcnow
from healthpass.modules.audit.service import ProofAuditLog
from healthpass.modules.proofs.prover import Prover
from healthpass.modules.proofs.repository import ProofRepository
from healthpass.modules.proofs.schemas import (
    RevocationStatus,
    VerificationDetails,
    VerificationResult,
    record_type_name,
)

logger = get_logger(__name__)


def _decode_input(value: bytes | str, what: str) -> bytes:
    if isinstance(value, bytes):
        return value
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BadInputError(f"Invalid base64 {what}") from exc


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class ProofVerifier:
    """Evaluate expiration, usage quota, revocation and the cryptographic check."""

    def __init__(
        self,
        session: AsyncSession,
        prover: Prover,
        *,
        audit_log: ProofAuditLog | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._prover = prover
        self._audit = audit_log or ProofAuditLog(session)
        self._clock = clock or utcnow
        self._proofs = ProofRepository(session)

    async def verify(
        self,
        proof_data: bytes | str,
        verification_key: bytes | str,
        context: dict[str, Any] | None = None,
        *,
        verifier_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> VerificationResult:
        """
        Verify a presented proof.

        ``proof_data`` and ``verification_key`` are raw bytes or base64 text.
        Every check is evaluated even when an earlier one fails. An invalid
        proof is a result, not an error; an audit row is written for every
        attempt against a known proof, and if it cannot be stored the attempt
        fails with :class:`InternalError` instead of returning a result.
        """
        proof_bytes = _decode_input(proof_data, "proof data")
        key_bytes = _decode_input(verification_key, "verification key")
        now = self._clock()

        try:
            result = await self._verify_known(
                proof_bytes,
                key_bytes,
                now,
                context=context,
                verifier_id=verifier_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except asyncio.CancelledError:
            await self._session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.error("proof_verification_storage_failed", error=str(exc))
            raise InternalError("Failed to record proof verification") from exc

        logger.info(
            "proof_verification_completed",
            proof_id=str(result.proof_id) if result.proof_id else None,
            is_valid=result.is_valid,
            is_expired=result.verification_details.is_expired,
            usage_exceeded=result.verification_details.usage_exceeded,
            revocation_status=result.verification_details.revocation_status.value,
        )
        return result

    async def _verify_known(
        self,
        proof_data: bytes,
        verification_key: bytes,
        now: datetime,
        *,
        context: dict[str, Any] | None,
        verifier_id: UUID | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> VerificationResult:
        proof = await self._proofs.find_by_artifact(proof_data, verification_key)
        if proof is None:
            return VerificationResult(is_valid=False, verified_at=now)
        proof_id = proof.id

        details = VerificationDetails()

        details.is_expired = proof.expires_at is not None and now > _as_utc(proof.expires_at)
        details.usage_exceeded = (
            proof.max_usage is not None and proof.usage_count >= proof.max_usage
        )

        record = await self._session.get(
            HealthRecord, proof.health_record_id, populate_existing=True
        )
        if record is None:
            details.revocation_status = RevocationStatus.UNKNOWN
        else:
            details.revocation_status = (
                RevocationStatus.REVOKED if record.is_revoked else RevocationStatus.VALID
            )
            details.health_record_type = record_type_name(record.record_type)
            details.issue_date = record.issue_date.isoformat()
            authority = await self._session.get(HealthAuthority, record.authority_id)
            details.authority_name = authority.name if authority is not None else None

        proof_ok = await self._check_proof(proof)

        is_valid = (
            not details.is_expired
            and not details.usage_exceeded
            and details.revocation_status is RevocationStatus.VALID
            and proof_ok
        )
        if is_valid:
            claimed = await self._session.execute(
                update(ZkProof)
                .where(
                    ZkProof.id == proof_id,
                    or_(ZkProof.max_usage.is_(None), ZkProof.usage_count < ZkProof.max_usage),
                )
                .values(usage_count=ZkProof.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                details.usage_exceeded = True
                is_valid = False

        await self._audit.record_attempt(
            proof_id=proof_id,
            result=is_valid,
            verified_at=now,
            verifier_id=verifier_id,
            context=context,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await self._session.commit()

        return VerificationResult(
            is_valid=is_valid,
            proof_id=proof_id,
            verified_at=now,
            verification_details=details,
        )

    async def _check_proof(self, proof: ZkProof) -> bool:
        try:
            return await self._prover.verify(proof.proof_data, proof.verification_key)
        except HealthPassError as exc:
            logger.warning(
                "proof_cryptographic_check_failed",
                proof_id=str(proof.id),
                error=exc.message,
            )
            return False

    async def revoke(self, proof_id: UUID, *, owner_id: UUID | None = None) -> None:
        """
        Freeze a proof by setting ``max_usage`` to its current ``usage_count``.

        Idempotent. History and audit rows are kept.
        """
        proof = await self._proofs.get_for_owner(proof_id, owner_id)
        if proof is None:
            raise NotFoundError("Proof not found")
        try:
            await self._session.execute(
                update(ZkProof)
                .where(ZkProof.id == proof_id)
                .values(max_usage=ZkProof.usage_count)
                .execution_options(synchronize_session=False)
            )
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise InternalError("Failed to revoke proof") from exc
        logger.info("proof_revoked", proof_id=str(proof_id))
