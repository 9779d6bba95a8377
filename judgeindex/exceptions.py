"""
Custom exceptions and error handlers
"""

from fastapi import HTTPException, status


class ValidationError(HTTPException):
    """Validation error exception"""

    def __init__(self, detail: str = "Validation error"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail
        )


class NotFoundError(HTTPException):
    """Not found error exception"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(HTTPException):
    """Conflict error exception"""

    def __init__(self, detail: str = "Resource conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ServiceUnavailableHTTPError(HTTPException):
    """Upstream dependency unavailable"""

    def __init__(
        self,
        detail: str | dict = "Service unavailable",
        retry_after: float | None = None,
    ):
        headers = {"Retry-After": str(int(retry_after))} if retry_after else None
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            headers=headers,
        )


class AnalyticsUnavailable(Exception):
    """Analytics cannot be produced for this judge (yet)."""

    def __init__(self, judge_id: str, reason: str = "not_found"):
        self.judge_id = judge_id
        self.reason = reason
        super().__init__({"judge_id": judge_id, "reason": reason})
