"""
Custom exception classes and error handling.

Provides consistent error responses across the API:

    {"error": {"code": "<ERROR_CODE>", "message": "<user-facing text>"}}
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or "ERROR"

    def to_body(self) -> Dict[str, Any]:
        return {"error": {"code": self.error_code, "message": self.detail}}


class RequestValidationFailed(APIException):
    """Malformed request body. Raised before any tool or model work."""

    def __init__(self, detail: str = "Invalid request format", field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class InvalidContentError(APIException):
    """Message content refused by the prompt guard."""

    def __init__(
        self,
        detail: str = "Your message contains content that cannot be processed. Please rephrase your question.",
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="INVALID_CONTENT"
        )


class RateLimitExceededError(APIException):
    """Admission rejected: quota for the caller is exhausted."""

    def __init__(self, limit: int, retry_after: int, reset_at: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please wait a moment before trying again.",
            error_code="RATE_LIMIT_EXCEEDED",
            headers={
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(reset_at),
                "Retry-After": str(max(1, retry_after)),
            }
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )
