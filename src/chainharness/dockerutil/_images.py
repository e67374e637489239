"""Image presence cache — pull each image at most once per process.

The cache is owned by one long-lived resolver (normally the one inside a
:class:`JobRunner`). Checks for different images never contend; concurrent
checks for the same image share one pull.
"""

from __future__ import annotations

import asyncio

from chainharness.dockerutil._engine import ContainerEngine, EngineError
from chainharness.dockerutil._errors import PullError
from chainharness.logger import logger
from chainharness.types import ImageRef


class ImageResolver:
    def __init__(self, engine: ContainerEngine) -> None:
        self._engine = engine
        self._present: set[ImageRef] = set()
        self._locks: dict[ImageRef, asyncio.Lock] = {}

    def is_known_present(self, ref: ImageRef) -> bool:
        return ref in self._present

    async def ensure(self, ref: ImageRef) -> None:
        """Make sure *ref* exists locally, pulling it if needed.

        Raises :class:`PullError` if the image cannot be retrieved. Failures
        are not cached, so a later call tries again.
        """
        if ref in self._present:
            return

        lock = self._locks.setdefault(ref, asyncio.Lock())
        async with lock:
            if ref in self._present:
                return
            try:
                if not await self._engine.image_exists(ref):
                    await self._engine.pull(ref)
            except EngineError as exc:
                logger.error("Image pull failed", image=str(ref), err=str(exc))
                raise PullError(f"pulling {ref}: {exc}") from exc
            self._present.add(ref)
