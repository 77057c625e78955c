"""
Custom Application Exceptions.

Provides a hierarchy of exceptions for consistent error handling.

Expected negative verification outcomes (no face, distance above threshold,
insufficient frames) are NOT exceptions - they are returned as result records.
Exceptions are reserved for bad input, unknown resources and broken
infrastructure.

Usage:
    from utils.exceptions import ValidationError, ResourceNotFoundError

    # In services
    raise ValidationError("Invalid latitude", field="latitude")

    # In stores
    raise ResourceNotFoundError("Session", session_id)
"""
from typing import Optional, Dict, Any


class AppError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NOT_FOUND")
        status_code: HTTP status code to return
        details: Additional context for debugging
    """
    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "status": "error",
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# SERVICE LAYER EXCEPTIONS (400-level errors)
# =============================================================================

class ServiceError(AppError):
    """
    General service-layer error (bad input, processing failure).

    Use for: Generic service failures not covered by specific exceptions below.
    """
    def __init__(
        self,
        message: str,
        code: str = "SERVICE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, status_code=400, details=details)


class ImageProcessingError(ServiceError):
    """
    Image is invalid, corrupt, or does not meet requirements.

    Use for: Corrupt uploads, unreadable formats, empty buffers.
    """
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code="IMAGE_PROCESSING_ERROR", details=details)


class ValidationError(AppError):
    """
    Input validation failed.

    Use for: Out-of-range GPS coordinates, malformed stage payloads, etc.
    Raised before any session state is touched.
    """
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        _details = details or {}
        if field:
            _details["field"] = field
        super().__init__(message, "VALIDATION_ERROR", status_code=422, details=_details)


class ResourceNotFoundError(AppError):
    """
    Requested resource not found.

    Use for: Unknown or expired session, unknown workflow configuration.
    Kept distinct from verification failures so callers can tell
    "never existed / expired" apart from "verification failed".
    """
    def __init__(
        self,
        resource: str,
        identifier: str,
        details: Optional[Dict[str, Any]] = None
    ):
        _details = details or {}
        _details["resource"] = resource
        _details["identifier"] = identifier
        super().__init__(
            f"{resource} with identifier '{identifier}' not found",
            "NOT_FOUND",
            status_code=404,
            details=_details
        )


class SessionStateError(AppError):
    """
    Operation not allowed in the current state.

    Use for: Starting a session with an inactive workflow configuration,
    referencing a document that is not attached to the session.
    """
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, "INVALID_STATE", status_code=409, details=details)


# =============================================================================
# INFRASTRUCTURE EXCEPTIONS (500-level errors)
# =============================================================================

class ModelLoadError(AppError):
    """
    ML model failed to load.

    Use for: Face analysis / landmark model.
    """
    def __init__(
        self,
        model_name: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        _details = details or {}
        _details["model"] = model_name
        if reason:
            _details["reason"] = reason
        super().__init__(
            f"Failed to load model: {model_name}",
            "MODEL_LOAD_ERROR",
            status_code=503,
            details=_details
        )
