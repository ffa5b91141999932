"""ZK Health Pass: health-record attestation and zero-knowledge proof lifecycle."""
