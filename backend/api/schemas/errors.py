"""Error response body and the mapping from core errors to HTTP status codes"""
from typing import Any, Dict, Optional, Tuple, Type

from fastapi import status
from pydantic import BaseModel

from intelcore.utils.errors import (
    DuplicateRecordError,
    IntelCoreError,
    RecordNotFoundError,
    ValidationError,
)


class ErrorCode:
    """Error codes returned in the ``error_code`` field"""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    HTTP_ERROR = "HTTP_ERROR"


# Checked in order; anything unmatched is a 500.
CORE_ERROR_STATUS: Tuple[Tuple[Type[IntelCoreError], int, str], ...] = (
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND),
    (DuplicateRecordError, status.HTTP_409_CONFLICT, ErrorCode.ALREADY_EXISTS),
    (ValidationError, status.HTTP_400_BAD_REQUEST, ErrorCode.INVALID_INPUT),
)

HTTP_STATUS_CODES: Dict[int, str] = {
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_409_CONFLICT: ErrorCode.ALREADY_EXISTS,
    status.HTTP_500_INTERNAL_SERVER_ERROR: ErrorCode.INTERNAL_ERROR,
    status.HTTP_503_SERVICE_UNAVAILABLE: ErrorCode.SERVICE_UNAVAILABLE,
}


class ErrorResponse(BaseModel):
    """Body of every failed request"""

    error_code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    status_code: int

    @classmethod
    def from_core_error(cls, exc: IntelCoreError) -> "ErrorResponse":
        for error_type, status_code, error_code in CORE_ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code, error_code = status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR

        return cls(error_code=error_code, message=exc.message, details=exc.details, status_code=status_code)

    @classmethod
    def from_http_status(cls, status_code: int, message: str, details: Optional[Dict[str, Any]] = None) -> "ErrorResponse":
        return cls(
            error_code=HTTP_STATUS_CODES.get(status_code, ErrorCode.HTTP_ERROR),
            message=message,
            details=details,
            status_code=status_code,
        )
