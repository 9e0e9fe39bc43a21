"""Compose adapter — transport runner and allow-listed service actions."""

from stackplane.adapters.compose.runner import ComposeRunner, classify_error
from stackplane.adapters.compose.services import ComposeServices, parse_ps_output

__all__ = ["ComposeRunner", "ComposeServices", "classify_error", "parse_ps_output"]
