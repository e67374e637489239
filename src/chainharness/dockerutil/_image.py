"""Image — run one-off commands in a fixed image on behalf of a test.

Unlike :meth:`JobRunner.run`, :meth:`Image.run` treats a non-zero exit as a
failure: the result carries a :class:`NonZeroExitError` in
``container_error`` (it is not raised; call ``raise_for_status()``).
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence

from chainharness.dockerutil._errors import NonZeroExitError
from chainharness.dockerutil._runner import JobRunner
from chainharness.dockerutil._spec import ContainerOptions, build_container_spec
from chainharness.types import ImageRef, JobResult

_STDERR_TAIL = 1024


class Image:
    def __init__(
        self,
        runner: JobRunner,
        repository: str,
        version: str,
        *,
        run_scope: str,
        network_id: str | None = None,
    ) -> None:
        self.runner = runner
        self.ref = ImageRef(repository, version)
        self.run_scope = run_scope
        self.network_id = network_id

    def __repr__(self) -> str:
        return f"Image({self.ref}, scope={self.run_scope!r})"

    async def run(
        self,
        command: Sequence[str],
        options: ContainerOptions | None = None,
        *,
        timeout: float | None = None,
    ) -> JobResult:
        """Run *command* to completion in a fresh container of this image.

        The image's scope and network fill in any the options leave unset.
        """
        opts = options or ContainerOptions()
        opts = dataclasses.replace(
            opts,
            run_scope=opts.run_scope or self.run_scope,
            network_id=opts.network_id or self.network_id,
        )
        spec = build_container_spec(self.ref, command, opts)
        kwargs = {} if timeout is None else {"timeout": timeout}
        result = await self.runner.run(spec, **kwargs)
        if result.exit_code == 0:
            return result

        tail = result.stderr[-_STDERR_TAIL:].decode(errors="replace").strip()
        err = NonZeroExitError(
            f"{spec.name} exited {result.exit_code}: {tail}",
            exit_code=result.exit_code,
            stderr=result.stderr,
        )
        return dataclasses.replace(result, container_error=err)
