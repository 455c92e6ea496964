"""Custom exceptions for the cluster controller."""

from collections.abc import Iterable


class ClusterControllerError(Exception):
    """Base exception for all cluster controller errors."""

    def __init__(self, message: str, details: str | None = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details, usually the underlying API error
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class NotFoundError(ClusterControllerError):
    """Raised when the object store has no object with the requested identity."""

    pass


class ConflictError(ClusterControllerError):
    """Raised on optimistic-lock conflicts or conflicting condition updates."""

    pass


class KubernetesError(ClusterControllerError):
    """Exception raised for Kubernetes API errors."""

    pass


class ExternalReferenceError(ClusterControllerError):
    """Exception raised when a provider object cannot be resolved or deleted."""

    pass


class DependentCertificateNotFoundError(ClusterControllerError):
    """Raised when the cluster CA secret needed for a kubeconfig does not exist yet."""

    pass


class ValidationError(ClusterControllerError):
    """Exception raised for validation errors."""

    pass


class ConfigurationError(ClusterControllerError):
    """Exception raised for configuration errors."""

    pass


class AggregateError(ClusterControllerError):
    """Several independent failures from one reconcile pass.

    Nested aggregates are flattened so every individual message survives.
    """

    def __init__(self, errors: Iterable[BaseException]):
        flat: list[BaseException] = []
        for err in errors:
            if isinstance(err, AggregateError):
                flat.extend(err.errors)
            else:
                flat.append(err)
        self.errors = flat
        if len(flat) == 1:
            message = str(flat[0])
        else:
            message = "[" + ", ".join(str(e) for e in flat) + "]"
        super().__init__(message)


def aggregate(errors: Iterable[BaseException | None]) -> AggregateError | None:
    """Combine errors into one AggregateError, or None when there are none."""
    present = [e for e in errors if e is not None]
    if not present:
        return None
    return AggregateError(present)
