"""
Domain models — Pydantic types for the control plane.

All models are re-exported here for convenient access:

    from stackplane.core.models import StackSpec, ImpactPlan, ComposeResult
"""

from stackplane.core.models.artifacts import GeneratedArtifacts, ImpactPlan, RenderReport
from stackplane.core.models.compose import ComposeResult, ServiceHealth
from stackplane.core.models.spec import (
    ChannelSpec,
    EntitySpec,
    ServiceSpec,
    SpecError,
    StackSpec,
    parse_stack_spec,
)

__all__ = [
    # spec.py
    "ChannelSpec",
    "EntitySpec",
    "ServiceSpec",
    "SpecError",
    "StackSpec",
    "parse_stack_spec",
    # artifacts.py
    "GeneratedArtifacts",
    "ImpactPlan",
    "RenderReport",
    # compose.py
    "ComposeResult",
    "ServiceHealth",
]
