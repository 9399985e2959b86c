"""Exception hierarchy shared across the service."""


class ServiceError(Exception):
    """Base class for service errors."""


class ConfigError(ServiceError):
    """Raised when environment configuration is missing or invalid."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("invalid configuration: " + "; ".join(self.problems))


class BindError(ServiceError):
    """Raised when the listener cannot bind its address."""


class LoggingSetupError(ServiceError):
    """Raised when the log destination cannot be opened."""


class HealthCheckError(ServiceError):
    """Raised by a readiness check that found its dependency unavailable."""


class ShutdownError(ServiceError):
    """Raised when forcibly closing connections fails."""


class LifecycleError(ServiceError):
    """Raised on an illegal lifecycle state transition."""


class MalformedRequest(ValueError):
    """Raised when a request line, header block or length is unparseable."""


class RequestEntityTooLarge(Exception):
    """Raised when a request body exceeds configured limits."""
