"""Provisioner: drives one container from spec to ready coordinates.

Lifecycle: Built -> Created -> Started -> Ready -> Handle-Returned. Any
failure after Created tears the container down before the error
propagates; a teardown failure is attached to the original error instead of
replacing it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loguru import logger

from ephemera.coordinates import Coordinates, resolve_coordinates
from ephemera.exceptions import (
    ConfigurationError,
    EphemeraError,
    ProvisioningError,
    RuntimeAcquisitionError,
)
from ephemera.runtime.provider import ExecResult, SandboxRuntime


if TYPE_CHECKING:
    from ephemera.spec import LaunchSpec


MAX_LOG_CHARS = 2000


@runtime_checkable
class InstanceHandle(Protocol):
    """Minimal capability every handle exposes to callers and test harnesses."""

    async def host(self) -> str:
        ...

    async def mapped_port(self, port: int) -> int:
        ...

    async def terminate(self) -> None:
        ...


class SandboxInstance:
    """Reference to one created container, bound to its runtime.

    Owned by the caller once a handle is returned; the caller is responsible
    for terminate().

    Args:
        runtime: Runtime that created the container.
        ref: Container reference returned by the runtime.
        image: Effective image, for logging.
    """

    def __init__(self, runtime: SandboxRuntime, ref: str, image: str = "") -> None:
        self.runtime = runtime
        self.ref = ref
        self.image = image
        self.terminated = False

    @property
    def name(self) -> str:
        return self.ref[:12]

    def __repr__(self) -> str:
        return f"SandboxInstance(ref={self.name!r}, image={self.image!r})"

    async def host(self) -> str:
        return await self.runtime.host(self.ref)

    async def mapped_port(self, port: int) -> int:
        return await self.runtime.mapped_port(self.ref, port)

    async def logs(self) -> bytes:
        return await self.runtime.logs(self.ref)

    async def exec(self, command: Sequence[str]) -> ExecResult:
        return await self.runtime.exec(self.ref, command)

    async def is_running(self) -> bool:
        return await self.runtime.is_running(self.ref)

    async def copy_file(self, content: bytes, path: str, mode: int = 0o644) -> None:
        await self.runtime.copy_file(self.ref, content, path, mode)

    async def terminate(self) -> None:
        """Stop and remove the container. Safe to call more than once."""
        if self.terminated:
            return
        await self.runtime.terminate(self.ref)
        self.terminated = True


def _truncate_logs(raw: bytes) -> str:
    text = raw.decode(errors="replace").strip()
    if len(text) > MAX_LOG_CHARS:
        return "... (truncated)\n" + text[-MAX_LOG_CHARS:]
    return text


class Provisioner:
    """Creates, starts and awaits one container per launch() call.

    No retries happen here; retry policy belongs to the caller.

    Args:
        runtime: Container runtime to drive.
    """

    def __init__(self, runtime: SandboxRuntime) -> None:
        self.runtime = runtime

    async def launch(self, spec: LaunchSpec) -> tuple[SandboxInstance, Coordinates]:
        """Launch a container and wait until it is ready.

        Args:
            spec: Finished spec with an image and a readiness strategy.

        Returns:
            The running instance and its resolved coordinates.

        Raises:
            ConfigurationError: If the spec is incomplete; nothing was created.
            RuntimeAcquisitionError: If create, start, a post-start hook or
                coordinate resolution failed.
            ReadinessError: If the instance never became ready.
        """
        if not spec.image:
            raise ConfigurationError("Launch spec has no image")
        if spec.readiness is None:
            raise ConfigurationError("Launch spec has no readiness strategy")

        logger.info("Provisioning instance", image=spec.image, ports=list(spec.exposed_ports))
        try:
            ref = await self.runtime.create(spec)
        except EphemeraError:
            raise
        except Exception as e:
            raise RuntimeAcquisitionError(f"Failed to create container: {e}", phase="create") from e

        instance = SandboxInstance(self.runtime, ref, image=spec.image)
        phase = "start"
        try:
            await self.runtime.start(ref)
            phase = "post_start"
            for hook in spec.post_start:
                await hook(instance)
            phase = "ready"
            await spec.readiness.wait(instance)
            phase = "resolve"
            coordinates = await resolve_coordinates(instance, spec.exposed_ports)
        except ProvisioningError as e:
            await self._abort(instance, e)
            raise
        except Exception as e:
            error = RuntimeAcquisitionError(f"Provisioning failed during {phase}: {e}", phase=phase)
            await self._abort(instance, error)
            raise error from e
        except asyncio.CancelledError as e:
            await self._abort(instance, e, capture_logs=False)
            raise

        logger.info(
            "Instance ready",
            container=instance.name,
            image=spec.image,
            host=coordinates.host,
            ports=dict(coordinates.ports),
        )
        return instance, coordinates

    async def _abort(
        self,
        instance: SandboxInstance,
        error: BaseException,
        capture_logs: bool = True,
    ) -> None:
        """Best-effort teardown after a failure; never masks the original error."""
        logger.warning("Provisioning failed, tearing down", container=instance.name, error=str(error))

        if capture_logs:
            try:
                logs = _truncate_logs(await instance.logs())
            except Exception as e:
                logger.debug("Could not capture container logs", container=instance.name, error=str(e))
                logs = ""
            if logs:
                if isinstance(error, ProvisioningError):
                    error.logs = logs
                error.add_note(f"Container logs:\n{logs}")

        try:
            await instance.terminate()
        except Exception as te:
            logger.warning("Teardown failed", container=instance.name, error=str(te))
            if isinstance(error, ProvisioningError):
                error.teardown_error = te
            error.add_note(f"Teardown of {instance.name} also failed: {te}")
