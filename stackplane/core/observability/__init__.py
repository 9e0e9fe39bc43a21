"""Observability — logging setup and post-apply readiness probing."""
