"""
Shared error types for core services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type


class NotFoundError(LookupError):
    """Raised when a memory id does not exist."""

    def __init__(self, memory_id: int):
        super().__init__(f"memory with id {memory_id} not found")
        self.memory_id = memory_id


class EmbeddingProviderError(RuntimeError):
    """Raised when the embedding provider is unavailable."""


class EmbeddingDimensionError(ValueError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"embedding has {actual} dimensions, expected {expected}")
        self.expected = expected
        self.actual = actual


class StorageError(RuntimeError):
    """Raised when a storage backend operation fails."""


class StorageUnavailableError(StorageError):
    """Raised when a storage backend cannot be reached at startup."""


class GatewayError(RuntimeError):
    """Raised by the remote proxy when the gateway call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
