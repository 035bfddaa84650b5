"""
HTTP exceptions carrying an API reason code.
"""
from typing import Dict, Optional

from fastapi import HTTPException, status

from app.models.schemas import ApiError

AUTH_ERRORS = {
    ApiError.MISSING_API_KEY,
    ApiError.INVALID_API_KEY,
    ApiError.INACTIVE_API_KEY,
    ApiError.API_KEY_VALIDATION_ERROR,
}


class ApiException(HTTPException):
    """HTTPException whose body reports a reason code."""

    def __init__(
        self,
        status_code: int,
        code: ApiError,
        headers: Optional[Dict[str, str]] = None,
        **params,
    ):
        super().__init__(status_code=status_code, detail=code.format(**params), headers=headers)
        self.code = code


def quota_exception(code: ApiError, limit: Optional[int] = None) -> ApiException:
    """Map a quota denial to its HTTP error."""
    if code == ApiError.RATE_LIMIT_CHECK_ERROR:
        return ApiException(status.HTTP_500_INTERNAL_SERVER_ERROR, code)

    headers = {"X-RateLimit-Limit": str(limit)} if limit is not None else None
    return ApiException(status.HTTP_429_TOO_MANY_REQUESTS, code, headers=headers, limit=limit)
