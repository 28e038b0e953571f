"""Launch specifications and the customization fold that builds them.

A LaunchSpec is immutable. Customizations are plain functions taking a
spec and returning a new one, so building a spec is a left fold over the
caller's customizations followed by filling in whatever the caller left
unset.
"""

from collections.abc import Awaitable, Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ephemera.exceptions import ConfigurationError, CustomizationError, EphemeraError
from ephemera.images import rewrite_image
from ephemera.readiness import ReadinessStrategy


PostStartHook = Callable[[Any], Awaitable[None]]
"""Async callable run with the SandboxInstance after start, before readiness."""


class FileMount(BaseModel):
    """A host file copied into the container before it starts.

    Attributes:
        host_path: File on the host.
        container_path: Absolute destination path inside the container.
        mode: Permission bits of the destination file.
    """

    model_config = ConfigDict(frozen=True)

    host_path: Path
    container_path: str
    mode: int = 0o644


class LaunchSpec(BaseModel):
    """Everything the runtime needs to create one container.

    This model is frozen. Customizations return modified copies built with
    model_copy(update={...}).

    Attributes:
        image: Effective image identifier; empty until a default or caller sets it.
        env: Environment variables.
        exposed_ports: Internal TCP ports published to random host ports, in order.
        files: Files copied into the container before start.
        readiness: Condition awaited after start; exactly one per launch.
        privileged: Run the container with --privileged.
        command: Arguments passed after the image.
        entrypoint: Entrypoint override.
        networks: Networks to attach; the first is used at creation.
        labels: Extra container labels.
        post_start: Hooks run after start and before readiness is awaited.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    image: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    exposed_ports: tuple[int, ...] = ()
    files: tuple[FileMount, ...] = ()
    readiness: ReadinessStrategy | None = None
    privileged: bool = False
    command: tuple[str, ...] | None = None
    entrypoint: tuple[str, ...] | None = None
    networks: tuple[str, ...] = ()
    labels: dict[str, str] = Field(default_factory=dict)
    post_start: tuple[PostStartHook, ...] = ()

    def file_for(self, container_path: str) -> FileMount | None:
        """Return the mount targeting container_path, if any."""
        for mount in self.files:
            if mount.container_path == container_path:
                return mount
        return None


Customization = Callable[[LaunchSpec], LaunchSpec]
"""Function returning a modified copy of a LaunchSpec, or raising."""


class ServiceDefaults(BaseModel):
    """Built-in defaults for one service, injected into the builder.

    Attributes:
        image: Nominal default image, used when no customization sets one.
        base: Spec the customization fold starts from (command, ports, env...).
        fallback_env: Env entries applied only where the caller left them unset.
        readiness: Preferred readiness strategy when the caller supplies none.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    image: str
    base: LaunchSpec = Field(default_factory=LaunchSpec)
    fallback_env: dict[str, str] = Field(default_factory=dict)
    readiness: ReadinessStrategy | None = None


class LaunchSpecBuilder:
    """Applies caller customizations over a service's built-in defaults.

    Args:
        defaults: The service's built-in defaults.
        mirror: Registry mirror the effective image is rewritten through.
    """

    def __init__(self, defaults: ServiceDefaults, mirror: str | None = None) -> None:
        self.defaults = defaults
        self.mirror = mirror

    def build(self, customizations: Iterable[Customization] = ()) -> LaunchSpec:
        """Fold customizations over the base spec, then fill unset defaults.

        Explicit caller choices always win: the default image is used only if
        no customization set one, and fallback env entries only fill keys the
        caller did not set.

        Args:
            customizations: Applied in order; last write wins per field.

        Returns:
            The finished spec, without a readiness strategy unless the caller set one.

        Raises:
            CustomizationError: If a customization raises or returns a non-spec.
            ConfigurationError: If no image is available or the mirror is malformed.
        """
        spec = self.defaults.base
        for index, customize in enumerate(customizations):
            name = getattr(customize, "__name__", repr(customize))
            try:
                result = customize(spec)
            except EphemeraError:
                raise
            except Exception as e:
                raise CustomizationError(
                    f"Customization #{index} ({name}) failed: {e}"
                ) from e
            if not isinstance(result, LaunchSpec):
                raise CustomizationError(
                    f"Customization #{index} ({name}) returned {type(result).__name__}, "
                    "expected LaunchSpec"
                )
            spec = result

        image = spec.image or self.defaults.image
        if not image:
            raise ConfigurationError("No image configured for launch")

        env = {**self.defaults.fallback_env, **spec.env}
        spec = spec.model_copy(
            update={"image": rewrite_image(image, self.mirror), "env": env}
        )
        logger.debug("Launch spec built", image=spec.image, ports=spec.exposed_ports)
        return spec


def with_image(image: str) -> Customization:
    """Use a specific image instead of the service default."""

    def customize(spec: LaunchSpec) -> LaunchSpec:
        if not image:
            raise ConfigurationError("Image must not be empty")
        return spec.model_copy(update={"image": image})

    customize.__name__ = "with_image"
    return customize


def with_env(env: Mapping[str, str] | None = None, **kwargs: str) -> Customization:
    """Add or override environment variables."""
    entries = {**(env or {}), **kwargs}

    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"env": {**spec.env, **entries}})

    customize.__name__ = "with_env"
    return customize


def with_exposed_ports(*ports: int) -> Customization:
    """Append internal ports to publish; duplicates are ignored."""
    for port in ports:
        if not 0 < port < 65536:
            raise ConfigurationError(f"Invalid port {port}")

    def customize(spec: LaunchSpec) -> LaunchSpec:
        merged = tuple(dict.fromkeys((*spec.exposed_ports, *ports)))
        return spec.model_copy(update={"exposed_ports": merged})

    customize.__name__ = "with_exposed_ports"
    return customize


def with_file(host_path: str | Path, container_path: str, mode: int = 0o644) -> Customization:
    """Copy a host file into the container before it starts."""
    mount = FileMount(host_path=Path(host_path), container_path=container_path, mode=mode)

    def customize(spec: LaunchSpec) -> LaunchSpec:
        others = tuple(f for f in spec.files if f.container_path != container_path)
        return spec.model_copy(update={"files": (*others, mount)})

    customize.__name__ = "with_file"
    return customize


def with_readiness(strategy: ReadinessStrategy) -> Customization:
    """Replace the readiness strategy; the selector never overrides it."""

    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"readiness": strategy})

    customize.__name__ = "with_readiness"
    return customize


def with_command(*args: str) -> Customization:
    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"command": tuple(args)})

    customize.__name__ = "with_command"
    return customize


def with_entrypoint(*args: str) -> Customization:
    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"entrypoint": tuple(args)})

    customize.__name__ = "with_entrypoint"
    return customize


def with_networks(*networks: str) -> Customization:
    """Attach the container to the given networks (replaces any previous list)."""

    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"networks": tuple(networks)})

    customize.__name__ = "with_networks"
    return customize


def with_privileged(privileged: bool = True) -> Customization:
    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"privileged": privileged})

    customize.__name__ = "with_privileged"
    return customize


def with_labels(**labels: str) -> Customization:
    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"labels": {**spec.labels, **labels}})

    customize.__name__ = "with_labels"
    return customize


def with_post_start(hook: PostStartHook) -> Customization:
    """Run an async hook with the instance after start, before readiness."""

    def customize(spec: LaunchSpec) -> LaunchSpec:
        return spec.model_copy(update={"post_start": (*spec.post_start, hook)})

    customize.__name__ = "with_post_start"
    return customize
