"""Service layer for signing and revoking health records."""

from __future__ import annotations

from uuid import UUID

from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from healthpass.core.crypto.signing import (
    RecordSignature,
    SignatureEngine,
    get_signature_engine,
)
from healthpass.core.errors import BadInputError, ForbiddenError, NotFoundError
from healthpass.core.logging import get_logger
from healthpass.db.models import HealthAuthority, HealthRecord
from healthpass.modules.records.details import details_for_signing, parse_record_details

logger = get_logger(__name__)


class HealthRecordSigningService:
    """Attach authority signatures to health records and revoke them."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        signature_engine: SignatureEngine | None = None,
    ) -> None:
        self._session = session
        self._engine = signature_engine or get_signature_engine()

    async def sign_record(self, record_id: UUID, authority_private_key: str) -> HealthRecord:
        """Sign a record with its authority's key, replacing any earlier signature."""
        record = await self._session.get(HealthRecord, record_id, populate_existing=True)
        if record is None:
            raise NotFoundError("Health record not found")
        if record.is_revoked:
            raise ForbiddenError("Cannot sign a revoked health record")

        authority = await self._session.get(
            HealthAuthority, record.authority_id, populate_existing=True
        )
        if authority is None:
            raise NotFoundError("Health authority not found")

        private_key = self._engine.parse_private_key(authority_private_key)
        self._require_authority_key(private_key, authority)

        signature = self.compute_signature(record, authority, private_key)

        result = await self._session.execute(
            update(HealthRecord)
            .where(HealthRecord.id == record.id, HealthRecord.is_revoked.is_(False))
            .values(
                signature_r=signature.signature_r,
                signature_s=signature.signature_s,
                message_hash=signature.message_hash,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._session.rollback()
            raise ForbiddenError("Cannot sign a revoked health record")
        await self._session.commit()
        await self._session.refresh(record)

        logger.info(
            "health_record_signed",
            record_id=str(record.id),
            authority_id=str(authority.id),
            record_type=record.record_type.value,
        )
        return record

    def compute_signature(
        self,
        record: HealthRecord,
        authority: HealthAuthority,
        private_key: ec.EllipticCurvePrivateKey,
    ) -> RecordSignature:
        details = details_for_signing(parse_record_details(record.record_type, record.details))
        return self._engine.sign(
            record.record_type,
            record.patient_identifier,
            details,
            record.issue_date.isoformat(),
            authority.name,
            private_key,
        )

    def verify_record_signature(
        self, record: HealthRecord, public_key: ec.EllipticCurvePublicKey
    ) -> bool:
        return self._engine.verify(
            record.message_hash, record.signature_r, record.signature_s, public_key
        )

    async def revoke_record(self, record_id: UUID) -> None:
        """Mark a record revoked. Existing proofs stay but stop verifying."""
        result = await self._session.execute(
            update(HealthRecord)
            .where(HealthRecord.id == record_id)
            .values(is_revoked=True, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._session.rollback()
            raise NotFoundError("Health record not found")
        await self._session.commit()
        logger.info("health_record_revoked", record_id=str(record_id))

    def _require_authority_key(
        self, private_key: ec.EllipticCurvePrivateKey, authority: HealthAuthority
    ) -> None:
        registered = self._engine.parse_public_key(authority.public_key)
        if private_key.public_key().public_numbers() != registered.public_numbers():
            raise BadInputError("Private key does not belong to the issuing authority")
