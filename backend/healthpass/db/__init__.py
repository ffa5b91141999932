"""Database package."""

from healthpass.db.models import (
    AuthorityType,
    Base,
    HealthAuthority,
    HealthRecord,
    HealthRecordType,
    ProofType,
    ProofVerification,
    ZkProof,
)
from healthpass.db.session import (
    close_db,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "session_scope",
    "get_session_factory",
    "init_db",
    "close_db",
    "Base",
    "AuthorityType",
    "HealthAuthority",
    "HealthRecord",
    "HealthRecordType",
    "ProofType",
    "ZkProof",
    "ProofVerification",
]
