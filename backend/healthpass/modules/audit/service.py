"""Append-only audit trail of proof verification attempts."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthpass.db.models import ProofVerification


class ProofAuditLog:
    """Write and read :class:`ProofVerification` rows.

    Writes join the caller's transaction: ``record_attempt`` flushes but
    never commits, so the audit row and the usage increment that produced it
    land together or not at all. Storage failures propagate to the caller.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_attempt(
        self,
        *,
        proof_id: UUID,
        result: bool,
        verified_at: datetime,
        verifier_id: UUID | None = None,
        context: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ProofVerification:
        entry = ProofVerification(
            proof_id=proof_id,
            verifier_id=verifier_id,
            verification_result=result,
            verification_context=context,
            verified_at=verified_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_attempts(self, proof_id: UUID) -> Sequence[ProofVerification]:
        """All attempts against ``proof_id`` in the order they were recorded."""
        result = await self._session.execute(
            select(ProofVerification)
            .where(ProofVerification.proof_id == proof_id)
            .order_by(ProofVerification.id.asc())
        )
        return result.scalars().all()
