"""
Stack generator — ``(spec, secrets) → GeneratedArtifacts``.

A pure function: no I/O, no clock, no randomness.  Identical inputs
always produce byte-identical artifacts, which is what lets the impact
planner diff one render against the previous one.
"""

from __future__ import annotations

from stackplane.core.models.artifacts import (
    COMPOSE_FILE,
    PROXY_FILE,
    GeneratedArtifacts,
    env_file_path,
)
from stackplane.core.models.catalog import ADMIN_SERVICE
from stackplane.core.models.spec import StackSpec
from stackplane.core.services.generators.compose import render_compose, render_fallback_compose
from stackplane.core.services.generators.env_files import (
    core_env_values,
    render_core_env_files,
    render_entity_env_files,
    render_env,
    render_system_env,
)
from stackplane.core.services.generators.proxy import render_fallback_proxy, render_proxy


def generate_stack_artifacts(spec: StackSpec, secrets: dict[str, str]) -> GeneratedArtifacts:
    """Render every artifact for a spec.

    Args:
        spec: Validated desired state.
        secrets: Current secrets map.

    Returns:
        Compose document, proxy config, system env, and env files for the
        core services plus every enabled channel/service.
    """
    env_files = render_core_env_files(spec, secrets)
    env_files.update(render_entity_env_files(spec, secrets))
    return GeneratedArtifacts(
        compose=render_compose(spec),
        proxy=render_proxy(spec),
        system_env=render_system_env(spec),
        env_files=env_files,
    )


def build_fallback_bundle(spec: StackSpec, secrets: dict[str, str]) -> dict[str, str]:
    """Files of the emergency admin + proxy bundle, by relative path.

    Only these files are written during fallback; everything else on
    disk is left as rollback restored it.
    """
    return {
        COMPOSE_FILE: render_fallback_compose(),
        PROXY_FILE: render_fallback_proxy(),
        env_file_path(ADMIN_SERVICE): render_env(
            f"Generated {ADMIN_SERVICE} env; do not edit",
            core_env_values(ADMIN_SERVICE, spec, secrets),
        ),
    }
