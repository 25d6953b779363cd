"""
Exception hierarchy for the screening pipeline.

ValidationError and NotFoundError surface directly to callers.
TransientStoreError is retried by the job runner; AggregationInvariantError
is fatal and indicates a scoring-policy bug.
"""

from typing import Any, Dict, Optional


class ScreeningError(Exception):
    """Base exception for screening errors."""
    pass


class ValidationError(ScreeningError, ValueError):
    """Raised when a screening request is empty or malformed.

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
        suggestion: Optional suggestion for fixing the error
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.code = code
        self.suggestion = suggestion
        super().__init__(message)


class NotFoundError(ScreeningError, LookupError):
    """Raised when a screening result or job does not exist."""

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = str(resource_id)
        super().__init__(f"{resource_type} not found: {resource_id}")


class TransientStoreError(ScreeningError):
    """Raised on watchlist or persistence I/O failure during execution.

    Carries the entity id and job payload so a job that exhausts its
    retries can be diagnosed from the failure record alone.
    """

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ):
        self.entity_id = entity_id
        self.payload = payload
        super().__init__(message)

    def with_context(self, entity_id: str, payload: Dict[str, Any]) -> 'TransientStoreError':
        """Attach screening context if the store did not know it."""
        if self.entity_id is None:
            self.entity_id = entity_id
        if self.payload is None:
            self.payload = payload
        return self


class AggregationInvariantError(ScreeningError):
    """Raised when the risk scoring policy produces or uses invalid values."""
    pass
