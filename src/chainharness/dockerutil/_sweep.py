"""Suite-level setup and the label-based sweep.

Every resource the harness creates carries the cleanup labels, so whatever
in-process cleanup missed (a crashed run, a failed removal) can be found by
label and removed at the end of the suite.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from chainharness.dockerutil._engine import ContainerEngine, EngineError, EngineNotFoundError
from chainharness.dockerutil._labels import DOCKER_PREFIX, cleanup_labels, scope_filter
from chainharness.dockerutil._strings import rand_lower_case_letter_string
from chainharness.logger import logger

# Containers first: networks and volumes cannot be removed while in use.
_SWEEP_ORDER = ("container", "network", "volume")


@dataclass
class SweepReport:
    removed: dict[str, list[str]] = field(default_factory=lambda: {k: [] for k in _SWEEP_ORDER})
    failed: dict[str, str] = field(default_factory=dict)  # resource id -> error

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        counts = ", ".join(f"{len(ids)} {kind}(s)" for kind, ids in self.removed.items())
        return f"removed {counts}; {len(self.failed)} failure(s)"


async def docker_setup(engine: ContainerEngine, run_scope: str) -> str:
    """Create a labelled bridge network for one run scope and return its id."""
    name = f"{DOCKER_PREFIX}-{rand_lower_case_letter_string(8)}"
    network_id = await engine.create_network(name, cleanup_labels(run_scope))
    logger.debug("Created network", network=name, scope=run_scope)
    return network_id


async def sweep(
    engine: ContainerEngine,
    run_scope: str | None = None,
    *,
    log: structlog.stdlib.BoundLogger | None = None,
) -> SweepReport:
    """Force-remove every resource labelled with *run_scope*.

    Without a scope, removes every harness-managed resource. Per-resource
    failures are logged and collected in the report, never raised.
    """
    log = (log if log is not None else logger).bind(scope=run_scope or "*")
    labels = scope_filter(run_scope)
    report = SweepReport()

    for kind in _SWEEP_ORDER:
        try:
            ids = await engine.list_resources(kind, labels)  # type: ignore[arg-type]
        except EngineError as exc:
            log.warning("Listing resources failed", kind=kind, err=str(exc))
            report.failed[f"{kind}:*"] = str(exc)
            continue

        for resource_id in ids:
            try:
                await engine.remove_resource(kind, resource_id)  # type: ignore[arg-type]
            except EngineNotFoundError:
                pass  # already gone
            except EngineError as exc:
                log.warning("Failed to remove resource", kind=kind, id=resource_id, err=str(exc))
                report.failed[resource_id] = str(exc)
                continue
            report.removed[kind].append(resource_id)

    if report.ok:
        log.debug("Sweep complete", summary=report.summary())
    else:
        log.warning("Sweep incomplete", summary=report.summary())
    return report
