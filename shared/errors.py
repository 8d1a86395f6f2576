"""
Error types shared by the ability service, its stores and its CLI.

Every error carries a machine-readable ``code`` and the HTTP status the
service answers with; ``to_response`` renders the JSON body.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """JSON body of an error reply."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for the service and its stores."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Malformed input, such as an empty ability name or unknown operator."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class EntityNotFoundError(AccessLayerException):
    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            "ENTITY_NOT_FOUND",
            f"{entity_type} {entity_id} not found",
            {"entity_type": entity_type, "entity_id": entity_id}
        )


class UnknownEntityTypeError(AccessLayerException):
    """No storage table is registered for an entity type."""

    def __init__(self, entity_type: str):
        super().__init__(
            "UNKNOWN_ENTITY_TYPE",
            f"No table registered for entity type '{entity_type}'",
            {"entity_type": entity_type}
        )


class StoreUnavailableError(AccessLayerException):
    """A cache or storage backend could not be reached at start-up."""

    status_code = 503

    def __init__(self, store: str, message: str):
        super().__init__(f"{store.upper()}_START_FAILED", message, {"store": store})
