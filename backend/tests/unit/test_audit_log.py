"""
Unit tests for the verification audit log.

The audit log joins the caller's transaction: it adds and flushes, never
commits, and lets storage errors propagate.
"""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from healthpass.db.models import ProofVerification
from healthpass.modules.audit.service import ProofAuditLog


def _scalars_all(values: list[object]) -> object:
    return SimpleNamespace(scalars=lambda: SimpleNamespace(all=lambda: values))


@pytest.mark.asyncio
async def test_record_attempt_adds_and_flushes() -> None:
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()

    proof_id = uuid4()
    verifier_id = uuid4()
    verified_at = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

    entry = await ProofAuditLog(session).record_attempt(
        proof_id=proof_id,
        result=True,
        verified_at=verified_at,
        verifier_id=verifier_id,
        context={"venue": "stadium"},
        ip_address="198.51.100.4",
        user_agent="TestAgent/1.0",
    )

    session.add.assert_called_once_with(entry)
    session.flush.assert_awaited_once()
    session.commit.assert_not_called()

    assert isinstance(entry, ProofVerification)
    assert entry.proof_id == proof_id
    assert entry.verifier_id == verifier_id
    assert entry.verification_result is True
    assert entry.verification_context == {"venue": "stadium"}
    assert entry.verified_at == verified_at
    assert entry.ip_address == "198.51.100.4"
    assert entry.user_agent == "TestAgent/1.0"


@pytest.mark.asyncio
async def test_record_attempt_defaults_optional_fields() -> None:
    session = AsyncMock()
    session.add = MagicMock()

    entry = await ProofAuditLog(session).record_attempt(
        proof_id=uuid4(), result=False, verified_at=datetime.now(UTC)
    )

    assert entry.verification_result is False
    assert entry.verifier_id is None
    assert entry.verification_context is None
    assert entry.ip_address is None
    assert entry.user_agent is None


@pytest.mark.asyncio
async def test_record_attempt_propagates_storage_errors() -> None:
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock(
        side_effect=OperationalError("INSERT", {}, Exception("database is locked"))
    )

    with pytest.raises(OperationalError):
        await ProofAuditLog(session).record_attempt(
            proof_id=uuid4(), result=True, verified_at=datetime.now(UTC)
        )


@pytest.mark.asyncio
async def test_list_attempts_returns_rows() -> None:
    rows = [ProofVerification(proof_id=uuid4(), verification_result=True)]
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_scalars_all(rows))

    attempts = await ProofAuditLog(session).list_attempts(uuid4())

    assert attempts == rows
    session.execute.assert_awaited_once()
