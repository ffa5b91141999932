"""Issue zero-knowledge proofs over signed health records."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import Row, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from healthpass.core.config import Settings, get_settings
from healthpass.core.crypto.signing import SignatureEngine, get_signature_engine
from healthpass.core.errors import (
    BadInputError,
    CryptographicError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ProverUnavailableError,
)
from healthpass.core.logging import get_logger
from healthpass.db.models import HealthAuthority, HealthRecord, ProofType, ZkProof, utcnow
from healthpass.modules.proofs.prover import CircuitInputs, Prover
from healthpass.modules.proofs.repository import ProofRepository
from healthpass.modules.proofs.schemas import ProofResponse, record_type_name

logger = get_logger(__name__)


class ProofIssuer:
    """
    Produce and persist a proof that a record carries its authority's signature.

    The prover runs before anything is written, so a slow or failing prover
    never holds a write lock and never leaves a partial proof behind.
    """

    def __init__(
        self,
        session: AsyncSession,
        prover: Prover,
        *,
        signature_engine: SignatureEngine | None = None,
        clock: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._prover = prover
        self._engine = signature_engine or get_signature_engine()
        self._clock = clock or utcnow
        self._settings = settings or get_settings()
        self._proofs = ProofRepository(session)

    async def generate(
        self,
        record: HealthRecord,
        authority: HealthAuthority,
        *,
        expires_in: timedelta | None = None,
        max_usage: int | None = None,
    ) -> ZkProof:
        """
        Generate a proof for ``record`` and store it with ``usage_count = 0``.

        Parameters
        ----------
        record:
            A signed, unrevoked health record.
        authority:
            The record's issuing authority; must be active.
        expires_in:
            Lifetime of the proof; ``None`` for a proof that never expires.
        max_usage:
            Number of successful verifications allowed; ``None`` for unlimited.

        Raises
        ------
        ForbiddenError
            The record is revoked or the authority is inactive, including a
            change committed while the prover was running.
        NotFoundError
            The record no longer exists.
        BadInputError
            The record is unsigned or the limits are not positive.
        CryptographicError
            The stored signature is not in low-S form.
        ProverUnavailableError
            The external prover failed, timed out or could not be started.
        """
        record_id = record.id
        if authority.id != record.authority_id:
            raise BadInputError("Authority did not issue this health record")
        standing = await self._load_standing(record_id)
        if standing is None:
            raise NotFoundError("Health record not found")
        if standing.is_revoked:
            raise ForbiddenError("Cannot generate proof for revoked health record")
        if not standing.is_active:
            raise ForbiddenError("Issuing health authority is not active")
        if not record.is_signed:
            raise BadInputError("Health record has not been signed")
        if max_usage is not None and max_usage < 1:
            raise BadInputError("max_usage must be at least 1")
        if expires_in is not None and expires_in <= timedelta(0):
            raise BadInputError("expires_in must be positive")
        if not self._engine.is_signature_normalized(record.signature_s):
            raise CryptographicError("Stored signature is not normalized to low-S form")

        public_key = self._engine.parse_public_key(authority.public_key)
        pubkey_x, pubkey_y = self._engine.get_public_key_coordinates(public_key)
        inputs = CircuitInputs(
            msg_hash=record.message_hash,
            pubkey_x=pubkey_x,
            pubkey_y=pubkey_y,
            signature_r=record.signature_r,
            signature_s=record.signature_s,
        )

        try:
            proof_data = await self._prover.prove(inputs)
        except ProverUnavailableError:
            logger.warning("proof_generation_failed", record_id=str(record_id))
            raise

        generated_at = self._clock()
        proof = ZkProof(
            health_record_id=record_id,
            proof_data=proof_data,
            verification_key=b"\x04" + pubkey_x + pubkey_y,
            proof_type=ProofType.ECDSA_SIGNATURE_VERIFICATION,
            generated_at=generated_at,
            expires_at=generated_at + expires_in if expires_in is not None else None,
            usage_count=0,
            max_usage=max_usage,
        )
        # The record or its authority may have changed while the prover ran.
        # Insert first, then re-read under a row lock so a revocation either
        # lands before this check or waits for the commit.
        try:
            self._session.add(proof)
            await self._session.flush()
            standing = await self._load_standing(record_id, lock=True)
            still_eligible = (
                standing is not None and not standing.is_revoked and standing.is_active
            )
            if still_eligible:
                await self._session.commit()
            else:
                await self._session.rollback()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise InternalError("Failed to store generated proof") from exc

        if not still_eligible:
            logger.warning("proof_discarded_after_revocation", record_id=str(record_id))
            raise ForbiddenError(
                "Health record was revoked or its authority deactivated during proof generation"
            )

        logger.info(
            "proof_issued",
            proof_id=str(proof.id),
            record_id=str(record_id),
            expires_at=proof.expires_at.isoformat() if proof.expires_at else None,
            max_usage=max_usage,
        )
        return proof

    async def generate_for_record(
        self,
        record_id: UUID,
        *,
        owner_id: UUID | None = None,
        expires_in_hours: int | None = None,
        max_usage: int | None = None,
        use_default_expiry: bool = False,
    ) -> ZkProof:
        """Load a record (scoped to ``owner_id`` when given) and generate a proof for it."""
        stmt = select(HealthRecord).where(HealthRecord.id == record_id)
        if owner_id is not None:
            stmt = stmt.where(HealthRecord.owner_id == owner_id)
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Health record not found")

        authority = await self._session.get(
            HealthAuthority, record.authority_id, populate_existing=True
        )
        if authority is None:
            raise NotFoundError("Health authority not found")

        if expires_in_hours is None and use_default_expiry:
            expires_in_hours = self._settings.default_proof_expiration_hours
        expires_in = timedelta(hours=expires_in_hours) if expires_in_hours is not None else None

        return await self.generate(record, authority, expires_in=expires_in, max_usage=max_usage)

    async def list_for_owner(
        self, owner_id: UUID, *, page: int = 1, limit: int = 20
    ) -> list[ProofResponse]:
        rows = await self._proofs.list_for_owner(owner_id, page=page, limit=limit)
        return [
            ProofResponse.from_proof(proof, record_type_name(record_type))
            for proof, record_type in rows
        ]

    async def _load_standing(self, record_id: UUID, *, lock: bool = False) -> Row | None:
        """Current revocation and authority state, read from the database."""
        stmt = (
            select(HealthRecord.is_revoked, HealthAuthority.is_active)
            .join(HealthAuthority, HealthAuthority.id == HealthRecord.authority_id)
            .where(HealthRecord.id == record_id)
        )
        if lock:
            stmt = stmt.with_for_update()
        return (await self._session.execute(stmt)).one_or_none()
