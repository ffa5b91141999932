"""
Pytest fixtures for backend testing.
Provides a file-backed SQLite database, sessions, authority keys and record factories.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from healthpass.core.config import get_settings
from healthpass.core.crypto.canonicalization import HealthRecordType
from healthpass.core.crypto.signing import SignatureEngine, get_signature_engine
from healthpass.db.models import AuthorityType, Base, HealthAuthority, HealthRecord
from healthpass.db.session import build_session_factory
from healthpass.modules.proofs.prover import CircuitInputs, Prover
from healthpass.modules.records.service import HealthRecordSigningService

# Fixed secp256k1 scalar used wherever a deterministic authority key is needed.
TEST_PRIVATE_KEY_HEX = "c9afa9d845ba75166b5c215767b1d6934e50c3db36e89b127b8a622b120f6721"

RecordFactory = Callable[..., Awaitable[HealthRecord]]


class RecordingProver(Prover):
    """In-memory prover that remembers its inputs."""

    def __init__(self, *, accept: bool = True) -> None:
        self.accept = accept
        self.prove_calls: list[CircuitInputs] = []
        self.verify_calls: list[tuple[bytes, bytes]] = []

    async def prove(self, inputs: CircuitInputs) -> bytes:
        self.prove_calls.append(inputs)
        return b"proof:" + inputs.msg_hash + len(self.prove_calls).to_bytes(4, "big")

    async def verify(self, proof_data: bytes, verification_key: bytes) -> bool:
        self.verify_calls.append((proof_data, verification_key))
        return self.accept


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests independent of the developer's environment."""
    monkeypatch.setenv("PROVER_BACKEND", "simulated")
    monkeypatch.delenv("DEFAULT_PROOF_EXPIRATION_HOURS", raising=False)
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'healthpass.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def signature_engine() -> SignatureEngine:
    return get_signature_engine()


@pytest.fixture
def authority_key_hex() -> str:
    return TEST_PRIVATE_KEY_HEX


@pytest.fixture
def authority_key(signature_engine: SignatureEngine) -> ec.EllipticCurvePrivateKey:
    return signature_engine.parse_private_key(TEST_PRIVATE_KEY_HEX)


@pytest.fixture
def prover() -> RecordingProver:
    return RecordingProver()


@pytest_asyncio.fixture
async def authority(
    db_session: AsyncSession,
    signature_engine: SignatureEngine,
    authority_key: ec.EllipticCurvePrivateKey,
) -> HealthAuthority:
    authority = HealthAuthority(
        name="HealthAuthority",
        authority_type=AuthorityType.GOVERNMENT,
        public_key=signature_engine.serialize_public_key(authority_key.public_key()),
        is_active=True,
    )
    db_session.add(authority)
    await db_session.commit()
    return authority


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_record(
    db_session: AsyncSession, authority: HealthAuthority, owner_id: UUID
) -> RecordFactory:
    """Factory for unsigned records issued by ``authority``."""

    async def _make(
        *,
        record_type: HealthRecordType = HealthRecordType.VACCINATION,
        patient_identifier: str = "Patient123",
        details: dict[str, Any] | None = None,
        issue_date: date = date(2025, 1, 15),
        owner: UUID | None = None,
    ) -> HealthRecord:
        record = HealthRecord(
            owner_id=owner or owner_id,
            authority_id=authority.id,
            record_type=record_type,
            patient_identifier=patient_identifier,
            details=details if details is not None else {"vaccine_name": "COVID19"},
            issue_date=issue_date,
        )
        db_session.add(record)
        await db_session.commit()
        return record

    return _make


@pytest_asyncio.fixture
async def signed_record(
    db_session: AsyncSession,
    make_record: RecordFactory,
    signature_engine: SignatureEngine,
) -> HealthRecord:
    record = await make_record()
    service = HealthRecordSigningService(db_session, signature_engine=signature_engine)
    return await service.sign_record(record.id, TEST_PRIVATE_KEY_HEX)
