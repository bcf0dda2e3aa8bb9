from typing import Any, Dict, Optional

from fastapi import status


class PortalError(Exception):
    """
    Base class for errors reported to API callers

    Each subclass carries the HTTP status and the error code used in the
    response envelope {"success": false, "error": {...}}.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(PortalError):
    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        if field and details is None:
            details = {"field": field, "issue": message}
        super().__init__(message, details)
        self.field = field


class AuthError(PortalError):
    pass


class Unauthenticated(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"


class InvalidCredentials(Unauthenticated):
    code = "INVALID_CREDENTIALS"


class Forbidden(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class InvalidStateError(PortalError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE"

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, {"currentStatus": current_status} if current_status else None)
        self.current_status = current_status


class CapacityExceededError(PortalError):
    status_code = status.HTTP_409_CONFLICT
    code = "CAPACITY_EXCEEDED"


class DuplicateResourceError(PortalError):
    status_code = status.HTTP_409_CONFLICT
    code = "DUPLICATE_RESOURCE"


class InvalidQuantityError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_QUANTITY"
