"""CLI command groups; thin wrappers over ``stackplane.core.services``."""
