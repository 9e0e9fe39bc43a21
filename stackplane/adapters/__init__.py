"""Adapters — boundaries to external tools."""
