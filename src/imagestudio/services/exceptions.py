"""Service error hierarchy for generation orchestration.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- GenerationValidationError: Malformed submit request, no job row is created
- ProviderConfigError: Unknown or disabled provider
- ProviderError: Non-success response from a provider backend
- JobAbortedError: Cancellation token fired during a suspendable call
- DownloadError: Per-image fetch/write failure during output persistence
- StoreError: Persistence layer failure
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class GenerationValidationError(ServiceError):
    """Submit request rejected before any job row was created.

    Examples:
    - Empty prompt
    - Too many input images
    - Input + output image budget exceeded
    - Custom image size out of range
    - Missing provider credential
    """

    pass


class ProviderConfigError(ServiceError):
    """Provider id is unknown or the provider is disabled."""

    pass


class ProviderError(ServiceError):
    """Provider queue endpoint returned a non-success or malformed response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class JobAbortedError(ServiceError):
    """Raised when a job's cancellation token fires."""

    pass


class DownloadError(ServiceError):
    """Generated image could not be downloaded or written to disk."""

    pass


class StoreError(ServiceError):
    """Generation store read or write failed."""

    pass
