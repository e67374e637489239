"""Label and naming conventions shared by every resource the harness creates.

The labels are the safety net for crashed runs: a sweep queries the engine
for resources carrying them and force-removes whatever is left over.
"""

from __future__ import annotations

DOCKER_PREFIX = "chainharness"

# Value is the run scope (usually the test name).
CLEANUP_LABEL = f"{DOCKER_PREFIX}-cleanup"
# Value is always "true"; lets a scope-less sweep find everything.
MANAGED_LABEL = f"{DOCKER_PREFIX}-managed"


def cleanup_labels(run_scope: str) -> dict[str, str]:
    """Labels that must be present on every container, network and volume."""
    return {CLEANUP_LABEL: run_scope, MANAGED_LABEL: "true"}


def scope_filter(run_scope: str | None) -> dict[str, str]:
    """Label filter selecting one run scope, or every managed resource."""
    if run_scope:
        return {CLEANUP_LABEL: run_scope}
    return {MANAGED_LABEL: "true"}
