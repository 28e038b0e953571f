# ephemera/exceptions.py
"""Custom exceptions for ephemera."""


class EphemeraError(Exception):
    """Base exception for all ephemera errors."""

    pass


class ConfigurationError(EphemeraError):
    """Raised when required configuration is missing or invalid.

    Always raised before any container exists; never retried.
    """

    pass


class CustomizationError(ConfigurationError):
    """Raised when a caller-supplied customization fails."""

    pass


class NoUsableCapabilityError(ConfigurationError):
    """Raised when a proxy config declares no SOCKS, HTTP or TUN inbound."""

    pass


class ProvisioningError(EphemeraError):
    """Raised when a launch fails after the runtime was first contacted.

    Attributes:
        phase: Lifecycle phase that failed (create, start, post_start, ready, resolve).
        teardown_error: Error raised by the best-effort teardown, if any.
        logs: Tail of the container logs captured before teardown, if any.
    """

    def __init__(self, message: str, phase: str) -> None:
        """Initialize ProvisioningError.

        Args:
            message: Human-readable description of the failure.
            phase: Lifecycle phase that failed.
        """
        self.phase = phase
        self.teardown_error: BaseException | None = None
        self.logs: str | None = None
        super().__init__(message)


class RuntimeAcquisitionError(ProvisioningError):
    """Raised when the runtime fails to create, start or describe an instance."""

    pass


class ReadinessError(ProvisioningError):
    """Raised when an instance started but never became ready."""

    def __init__(self, message: str) -> None:
        super().__init__(message, phase="ready")


class ReadinessTimeoutError(ReadinessError):
    """Raised when a readiness condition is not observed before its timeout."""

    pass


class InstanceExitedError(ReadinessError):
    """Raised when an instance stops running while readiness is awaited."""

    pass
