"""Domain modules: records, proofs and the verification audit trail."""
