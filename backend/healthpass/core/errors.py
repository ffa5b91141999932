"""
Error taxonomy shared by the attestation and proof services.

Every failure a caller can observe is one of these classes. Each carries a
stable ``code`` and an HTTP-style ``status_code`` so a transport layer can map
them without parsing messages. Cryptographically invalid proofs are *not*
errors; they are reported as ``is_valid=False`` results.
"""

from __future__ import annotations


class HealthPassError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadInputError(HealthPassError, ValueError):
    """Malformed hex, key material, proof encodings or request values."""

    code = "BAD_REQUEST"
    status_code = 400


class NotFoundError(HealthPassError):
    """A referenced record, authority or proof does not exist (or is not visible)."""

    code = "NOT_FOUND"
    status_code = 404


class ForbiddenError(HealthPassError):
    """The operation is not permitted on the target, e.g. proving a revoked record."""

    code = "FORBIDDEN"
    status_code = 403


class ServiceUnavailableError(HealthPassError):
    """An external collaborator is unreachable, timed out or failed."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class ProverUnavailableError(ServiceUnavailableError):
    """The external prover failed; ``message`` holds its scrubbed diagnostic."""


class CryptographicError(HealthPassError):
    """Hash or signature construction failed."""

    code = "CRYPTOGRAPHIC_ERROR"
    status_code = 500


class InternalError(HealthPassError):
    """Unexpected storage or I/O failure."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500
