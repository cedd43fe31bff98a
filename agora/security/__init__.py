"""Audit trail for security-relevant events."""
