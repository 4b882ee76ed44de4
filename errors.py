"""
API error taxonomy

Raised from the lifecycle modules the same way route code raises HTTPException;
main.py renders every one of them as {"success": false, "message": ...}.
"""
from typing import Any, List, Optional

from fastapi import HTTPException


class AppError(HTTPException):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)
        self.errors = errors


class ValidationFailed(AppError):
    status_code = 400
    default_message = "Validation failed"


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Authentication required."


class Forbidden(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    """A well-formed request that breaks a business rule (stock, slot, state)."""
    status_code = 400
    default_message = "Request conflicts with the current state"
