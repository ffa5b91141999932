"""Read access to stored proofs."""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthpass.core.crypto.canonicalization import HealthRecordType
from healthpass.db.models import HealthRecord, ZkProof

MAX_PAGE_SIZE = 100


class ProofRepository:
    """Lookups of proofs by artifact, id and owner."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_artifact(
        self, proof_data: bytes, verification_key: bytes
    ) -> ZkProof | None:
        """Find the proof whose stored bytes match both values exactly.

        Identical circuit inputs can yield identical proofs; the most
        recently generated one wins.
        """
        result = await self._session.execute(
            select(ZkProof)
            .where(
                ZkProof.proof_data == proof_data,
                ZkProof.verification_key == verification_key,
            )
            .order_by(ZkProof.generated_at.desc(), ZkProof.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_owner(self, proof_id: UUID, owner_id: UUID | None) -> ZkProof | None:
        """Fetch a proof, optionally restricted to records of ``owner_id``."""
        stmt = select(ZkProof).where(ZkProof.id == proof_id)
        if owner_id is not None:
            stmt = stmt.join(HealthRecord, ZkProof.health_record_id == HealthRecord.id).where(
                HealthRecord.owner_id == owner_id
            )
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_for_owner(
        self,
        owner_id: UUID,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> Sequence[tuple[ZkProof, HealthRecordType]]:
        """Proofs over the owner's records, newest first, with their record type."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        result = await self._session.execute(
            select(ZkProof, HealthRecord.record_type)
            .join(HealthRecord, ZkProof.health_record_id == HealthRecord.id)
            .where(HealthRecord.owner_id == owner_id)
            .order_by(ZkProof.generated_at.desc(), ZkProof.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return [(row[0], row[1]) for row in result.all()]
