"""Verification audit trail."""

from healthpass.modules.audit.service import ProofAuditLog

__all__ = ["ProofAuditLog"]
