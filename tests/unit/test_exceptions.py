"""Tests for custom exceptions."""

import pytest

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


def test_configuration_errors_share_base():
    """Errors raised before launch are ConfigurationErrors."""
    for cls in (CustomizationError, NoUsableCapabilityError):
        assert issubclass(cls, ConfigurationError)
        assert issubclass(cls, EphemeraError)


def test_provisioning_error_carries_phase():
    error = RuntimeAcquisitionError("docker start failed", phase="start")
    assert isinstance(error, ProvisioningError)
    assert error.phase == "start"
    assert error.teardown_error is None
    assert error.logs is None
    assert str(error) == "docker start failed"


def test_readiness_errors_are_in_ready_phase():
    for cls in (ReadinessTimeoutError, InstanceExitedError):
        error = cls("not ready")
        assert isinstance(error, ReadinessError)
        assert error.phase == "ready"


def test_readiness_timeout_can_be_raised():
    with pytest.raises(ProvisioningError) as exc_info:
        raise ReadinessTimeoutError("not ready after 60s")
    assert "60s" in str(exc_info.value)
