"""Docker runtime for provisioned instances.

All docker interactions use asyncio.create_subprocess_exec, with no Docker SDK
dependency. Every container is labelled so that leftovers can be found and
removed by teardown_all_instances().
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import os
import tarfile
import time
import uuid
from collections.abc import Mapping, Sequence
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from loguru import logger

from ephemera.config import Settings
from ephemera.exceptions import ConfigurationError, RuntimeAcquisitionError
from ephemera.runtime.provider import ExecResult


if TYPE_CHECKING:
    from ephemera.spec import LaunchSpec


MANAGED_LABEL = "ephemera"
SESSION_LABEL = "ephemera.session"


def _docker_host_from_env() -> str | None:
    """Host part of a tcp:// DOCKER_HOST, if one is configured."""
    docker_host = os.environ.get("DOCKER_HOST", "")
    if not docker_host.startswith(("tcp://", "http://", "https://")):
        return None
    return urlsplit(docker_host).hostname


class DockerRuntime:
    """Drives the docker CLI to create and inspect containers.

    Args:
        settings: Runtime settings (docker binary, host override, timeouts).
        session_id: Value of the session label put on every container.
    """

    def __init__(self, settings: Settings | None = None, session_id: str | None = None) -> None:
        self.settings = settings or Settings()
        self.docker = self.settings.docker_binary
        self.session_id = session_id or uuid.uuid4().hex[:12]

    async def _run(
        self,
        *args: str,
        phase: str,
        stdin: bytes | None = None,
        merge_stderr: bool = False,
    ) -> tuple[int, bytes, bytes]:
        """Run one docker CLI command.

        Returns:
            Tuple of (returncode, stdout, stderr). stderr is empty when merged.

        Raises:
            RuntimeAcquisitionError: If docker cannot be executed or times out.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.docker, *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RuntimeAcquisitionError(
                f"Docker is not available ({self.docker}): {e}", phase=phase
            ) from e

        timeout = self.settings.command_timeout_seconds
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(input=stdin), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise RuntimeAcquisitionError(
                f"docker {args[0]} timed out after {timeout}s", phase=phase
            ) from None
        except BaseException:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await asyncio.shield(proc.wait())
            raise
        return proc.returncode or 0, stdout or b"", stderr or b""

    async def _check(self, *args: str, phase: str, stdin: bytes | None = None) -> str:
        """Run a docker command that must succeed and return its stdout."""
        returncode, stdout, stderr = await self._run(*args, phase=phase, stdin=stdin)
        if returncode != 0:
            raise RuntimeAcquisitionError(
                f"docker {args[0]} failed: {stderr.decode().strip()}", phase=phase
            )
        return stdout.decode().strip()

    def _create_args(self, spec: LaunchSpec, name: str) -> list[str]:
        args = [
            "create",
            "--name", name,
            "--label", f"{MANAGED_LABEL}=true",
            "--label", f"{SESSION_LABEL}={self.session_id}",
        ]
        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])
        for key, value in spec.env.items():
            args.extend(["-e", f"{key}={value}"])
        for port in spec.exposed_ports:
            args.extend(["-p", f"{port}/tcp"])
        if spec.privileged:
            args.append("--privileged")
        if spec.networks:
            args.extend(["--network", spec.networks[0]])

        command = list(spec.command or ())
        if spec.entrypoint:
            # --entrypoint takes a single executable; the rest leads the command.
            args.extend(["--entrypoint", spec.entrypoint[0]])
            command = [*spec.entrypoint[1:], *command]
        args.append(spec.image)
        args.extend(command)
        return args

    async def create(self, spec: LaunchSpec) -> str:
        """Create a container, attach extra networks and copy file mounts."""
        files: list[tuple[bytes, str, int]] = []
        for mount in spec.files:
            try:
                files.append((mount.host_path.read_bytes(), mount.container_path, mount.mode))
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot read file for {mount.container_path}: {e}"
                ) from e

        name = f"{MANAGED_LABEL}-{uuid.uuid4().hex[:12]}"
        # The daemon may finish creating after the caller gives up, so the
        # command always runs to completion and the name is removed on failure.
        creating = asyncio.ensure_future(
            self._check(*self._create_args(spec, name), phase="create")
        )
        try:
            ref = await asyncio.shield(creating)
        except BaseException as e:
            await asyncio.shield(self._discard(creating, name, e))
            raise
        logger.debug("Container created", container=ref[:12], name=name, image=spec.image)

        try:
            for network in spec.networks[1:]:
                await self._check("network", "connect", network, ref, phase="create")
            for content, path, mode in files:
                await self.copy_file(ref, content, path, mode)
        except BaseException as e:
            try:
                await self.terminate(ref)
            except RuntimeAcquisitionError as te:
                e.add_note(f"cleanup of {ref[:12]} also failed: {te}")
            raise
        return ref

    async def _discard(self, creating: asyncio.Future[str], name: str, error: BaseException) -> None:
        """Remove the named container after its create call failed or was cancelled."""
        await asyncio.wait([creating])
        if not creating.cancelled() and creating.exception() is not None:
            logger.debug("Container create failed", name=name, error=str(creating.exception()))
        try:
            await self.terminate(name)
        except RuntimeAcquisitionError as te:
            error.add_note(f"cleanup of {name} also failed: {te}")

    async def start(self, ref: str) -> None:
        await self._check("start", ref, phase="start")
        logger.debug("Container started", container=ref[:12])

    async def terminate(self, ref: str) -> None:
        """Stop and remove the container; a missing container is not an error."""
        returncode, _, stderr = await self._run("rm", "-f", "-v", ref, phase="terminate")
        if returncode != 0:
            message = stderr.decode().strip()
            if "No such container" in message:
                logger.debug("Container already removed", container=ref[:12])
                return
            raise RuntimeAcquisitionError(
                f"Failed to remove container {ref[:12]}: {message}", phase="terminate"
            )
        logger.info("Container removed", container=ref[:12])

    async def host(self, ref: str) -> str:
        """Host override, else the tcp:// DOCKER_HOST host, else localhost."""
        if self.settings.host_override:
            return self.settings.host_override
        return _docker_host_from_env() or "localhost"

    async def mapped_port(self, ref: str, port: int) -> int:
        output = await self._check("port", ref, f"{port}/tcp", phase="port")
        for line in output.splitlines():
            _, _, host_port = line.strip().rpartition(":")
            if host_port.isdigit():
                return int(host_port)
        raise RuntimeAcquisitionError(
            f"Port {port}/tcp is not published for container {ref[:12]}", phase="port"
        )

    async def logs(self, ref: str) -> bytes:
        returncode, output, _ = await self._run("logs", ref, phase="logs", merge_stderr=True)
        if returncode != 0:
            raise RuntimeAcquisitionError(
                f"Failed to read logs of {ref[:12]}: {output.decode().strip()}", phase="logs"
            )
        return output

    async def exec(self, ref: str, command: Sequence[str]) -> ExecResult:
        returncode, output, _ = await self._run(
            "exec", ref, *command, phase="exec", merge_stderr=True,
        )
        return ExecResult(exit_code=returncode, output=output.decode(errors="replace"))

    async def is_running(self, ref: str) -> bool:
        try:
            returncode, stdout, _ = await self._run(
                "inspect", "--format", "{{.State.Running}}", ref, phase="inspect",
            )
        except RuntimeAcquisitionError:
            return False
        return returncode == 0 and stdout.decode().strip() == "true"

    async def copy_file(self, ref: str, content: bytes, path: str, mode: int = 0o644) -> None:
        """Copy bytes into the container as a single-file tar archive.

        The archive is extracted at ``/`` so missing parent directories are
        created by docker.
        """
        target = PurePosixPath(path)
        if not target.is_absolute():
            raise ConfigurationError(f"Container path must be absolute: {path}")

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            info = tarfile.TarInfo(name=str(target.relative_to("/")))
            info.size = len(content)
            info.mode = mode
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(content))

        await self._check("cp", "-", f"{ref}:/", phase="copy", stdin=buffer.getvalue())
        logger.debug("Copied file into container", container=ref[:12], path=path)

    async def create_network(
        self,
        name: str,
        driver: str = "bridge",
        options: Mapping[str, str] | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> str:
        """Create a labelled network and return its id."""
        args = [
            "network", "create",
            "--driver", driver,
            "--label", f"{MANAGED_LABEL}=true",
            "--label", f"{SESSION_LABEL}={self.session_id}",
        ]
        for key, value in (labels or {}).items():
            args.extend(["--label", f"{key}={value}"])
        for key, value in (options or {}).items():
            args.extend(["--opt", f"{key}={value}"])
        args.append(name)
        return await self._check(*args, phase="network")

    async def remove_network(self, name: str) -> None:
        await self._check("network", "rm", name, phase="network")

    async def list_labelled(self, label: str, networks: bool = False) -> list[str]:
        """Ids of containers (or networks) matching a ``key=value`` label."""
        command = ("network", "ls", "-q") if networks else ("ps", "-aq")
        output = await self._check(*command, "--filter", f"label={label}", phase="teardown")
        return output.split()
