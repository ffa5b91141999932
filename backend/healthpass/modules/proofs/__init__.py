"""
Zero-knowledge proof lifecycle.

- **prover**: the Prover capability and its Noir and simulated adapters
- **issuer**: proof generation over signed records
- **verifier**: four-check verification, usage quota and revocation
"""

from healthpass.modules.proofs.issuer import ProofIssuer
from healthpass.modules.proofs.prover import (
    CircuitInputs,
    NargoProver,
    Prover,
    SimulatedProver,
    build_prover,
)
from healthpass.modules.proofs.schemas import (
    ProofResponse,
    RevocationStatus,
    VerificationDetails,
    VerificationResult,
)
from healthpass.modules.proofs.verifier import ProofVerifier

__all__ = [
    "CircuitInputs",
    "NargoProver",
    "Prover",
    "ProofIssuer",
    "ProofResponse",
    "ProofVerifier",
    "RevocationStatus",
    "SimulatedProver",
    "VerificationDetails",
    "VerificationResult",
    "build_prover",
]
