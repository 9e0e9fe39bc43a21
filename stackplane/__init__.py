"""stackplane — declarative stack reconciliation for a self-hosted service stack."""

__version__ = "0.1.0"
