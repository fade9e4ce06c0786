from typing import Optional, Dict, Any


class DeletionServiceException(Exception):
    """Base exception for all deletion service errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class AuthError(DeletionServiceException):
    """Raised when authentication fails (missing, expired or invalid credential)."""
    def __init__(self, message: str, code: str = "unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=401, details=details)


class ForbiddenError(DeletionServiceException):
    """Raised when an authenticated actor lacks access to the target scope."""
    def __init__(self, message: str, code: str = "forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=403, details=details)


class ResourceNotFoundError(DeletionServiceException):
    """Raised when a requested resource, request or confirmation code is not found."""
    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)


class ConflictError(DeletionServiceException):
    """Raised when the operation collides with the current workflow state."""
    def __init__(self, message: str, code: str = "conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=409, details=details)


class InvalidArgumentError(DeletionServiceException):
    """Raised when input is rejected before any write happens."""
    def __init__(self, message: str, code: str = "invalid_argument", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=422, details=details)


class TransientStoreError(DeletionServiceException):
    """Raised on store timeout or contention. Safe to retry."""
    def __init__(self, message: str, code: str = "transient", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=503, details=details)


class FatalDeletionError(DeletionServiceException):
    """
    Raised when the destructive action still fails after all retries.
    The request stays approved until an operator intervenes.
    """
    def __init__(self, message: str, code: str = "fatal", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ApproverNotificationError(DeletionServiceException):
    """Raised when a confirmation code could not be handed to its approver."""
    def __init__(self, message: str, code: str = "notification_failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=502, details=details)
