"""
Impact planner — which services to reload, restart, or start.

Diffs the artifact snapshot taken before a render against the freshly
generated artifacts:

    caddy/caddy.json changed     → reload caddy
    env/gateway.env changed      → restart gateway
    system.env changed           → restart assistant, openmemory
    env/<svc>.env changed        → restart <svc>
    compose: new service block   → up
    compose: changed block       → up (compose recreates it)
    compose: removed block       → down (reported only)

A service slated for ``up`` is dropped from ``restart``.  Every list is
deduplicated and sorted.
"""

from __future__ import annotations

import logging

from stackplane.core.models.artifacts import (
    COMPOSE_FILE,
    PROXY_FILE,
    SYSTEM_ENV_FILE,
    GeneratedArtifacts,
    ImpactPlan,
    service_for_env_file,
)
from stackplane.core.models.catalog import PROXY_SERVICE, SYSTEM_ENV_SERVICES
from stackplane.core.services.generators.compose import compose_service_blocks

logger = logging.getLogger(__name__)


def plan_impact(before: dict[str, str | None], after: GeneratedArtifacts) -> ImpactPlan:
    """Compute the impact plan.

    Args:
        before: Snapshot of managed files (relative path → content, None
            when absent), as returned by ``ArtifactStore.snapshot()``.
        after: The freshly generated artifacts.

    Returns:
        ImpactPlan with sorted, deduplicated service lists.
    """
    new_files = after.files()
    reload: set[str] = set()
    restart: set[str] = set()
    up: set[str] = set()
    down: set[str] = set()

    if before.get(PROXY_FILE) != new_files[PROXY_FILE]:
        reload.add(PROXY_SERVICE)

    if before.get(SYSTEM_ENV_FILE) != new_files[SYSTEM_ENV_FILE]:
        restart.update(SYSTEM_ENV_SERVICES)

    for relpath in set(before) | set(new_files):
        service = service_for_env_file(relpath)
        if service is None:
            continue
        old, new = before.get(relpath), new_files.get(relpath)
        # A removed env file belongs to a removed service; compose handles it.
        if new is not None and old != new:
            restart.add(service)

    old_blocks = compose_service_blocks(before.get(COMPOSE_FILE))
    new_blocks = compose_service_blocks(new_files[COMPOSE_FILE])
    for name, block in new_blocks.items():
        if name not in old_blocks or old_blocks[name] != block:
            up.add(name)
    down.update(name for name in old_blocks if name not in new_blocks)

    restart -= up
    # Only services present in the new document can be acted on.
    restart &= set(new_blocks)
    reload &= set(new_blocks)

    plan = ImpactPlan(
        reload=sorted(reload),
        restart=sorted(restart),
        up=sorted(up),
        down=sorted(down),
    )
    logger.debug("Impact plan: %s", plan.model_dump())
    return plan
