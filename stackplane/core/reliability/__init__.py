"""Reliability — retry policy for external tool calls."""
