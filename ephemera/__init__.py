"""Ephemera: disposable service dependencies in Docker for integration tests."""

from ephemera.config import Settings
from ephemera.coordinates import Coordinates
from ephemera.exceptions import (
    ConfigurationError,
    CustomizationError,
    EphemeraError,
    InstanceExitedError,
    NoUsableCapabilityError,
    ProvisioningError,
    ReadinessError,
    ReadinessTimeoutError,
    RuntimeAcquisitionError,
)
from ephemera.logging import configure_logging
from ephemera.provisioner import Provisioner, SandboxInstance
from ephemera.spec import LaunchSpec, LaunchSpecBuilder, ServiceDefaults


__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "Coordinates",
    "CustomizationError",
    "EphemeraError",
    "InstanceExitedError",
    "LaunchSpec",
    "LaunchSpecBuilder",
    "NoUsableCapabilityError",
    "Provisioner",
    "ProvisioningError",
    "ReadinessError",
    "ReadinessTimeoutError",
    "RuntimeAcquisitionError",
    "SandboxInstance",
    "ServiceDefaults",
    "Settings",
    "configure_logging",
    "__version__",
]
