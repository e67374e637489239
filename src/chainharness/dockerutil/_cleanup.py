"""Cleanup supervisor — best-effort forced removal of a job container."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from chainharness.dockerutil._engine import ContainerEngine, EngineError, EngineNotFoundError
from chainharness.dockerutil._errors import CleanupWarning
from chainharness.dockerutil._labels import CLEANUP_LABEL

T = TypeVar("T")


async def cleanup_container(
    engine: ContainerEngine,
    container_id: str,
    already_removed: bool,
    log: structlog.stdlib.BoundLogger,
) -> bool:
    """Force-remove *container_id* unless the engine already removed it.

    Never raises for engine failures: a container that cannot be removed is
    logged (it still carries the cleanup label, so a sweep will collect it)
    and the job's own outcome is left untouched. Returns True when the
    container is known to be gone.
    """
    if already_removed:
        return True
    try:
        await engine.remove(container_id, force=True)
    except EngineNotFoundError:
        # Removed concurrently (auto-remove finishing, or a sweep).
        return True
    except EngineError as exc:
        log.warning(
            "Failed to remove container",
            container_id=container_id,
            err=str(exc),
            category=CleanupWarning.__name__,
            sweep_label=CLEANUP_LABEL,
        )
        return False
    return True


async def run_uncancelled(aw: Awaitable[T]) -> T:
    """Await *aw* to completion even if the calling task is cancelled meanwhile.

    Repeated cancellations are absorbed until *aw* finishes, then one
    CancelledError is re-raised so the caller still unwinds.
    """
    task = asyncio.ensure_future(aw)
    cancelled = False
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            cancelled = True
    if cancelled:
        raise asyncio.CancelledError
    return task.result()
