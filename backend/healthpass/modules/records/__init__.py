"""Health record details and signing."""
