"""User interfaces over the core services."""
