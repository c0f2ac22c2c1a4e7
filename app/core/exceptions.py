from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class BaseAppException(HTTPException):
    kind = "error"

    def __init__(self, status_code: int, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status_code, detail=detail)
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.detail, **self.extra}


class ValidationError(BaseAppException):
    kind = "validation_error"

    def __init__(self, detail: str = "Validation error"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(BaseAppException):
    kind = "not_found"

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthorizationError(BaseAppException):
    kind = "authorization_error"

    def __init__(self, detail: str = "Not allowed to perform this action"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidStateError(BaseAppException):
    kind = "invalid_state"

    def __init__(self, detail: str = "Operation not allowed in the current state"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class IncompletePrecondition(BaseAppException):
    kind = "incomplete_precondition"

    def __init__(self, pending_count: int, detail: Optional[str] = None):
        self.pending_count = pending_count
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{pending_count} item(s) still have no physical count",
            extra={"pending_count": pending_count},
        )


class ConflictError(BaseAppException):
    kind = "conflict"

    def __init__(self, detail: str = "Conflicting update"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ReportNotAvailableError(BaseAppException):
    kind = "report_not_available"

    def __init__(self, detail: str = "Report is not available for this audit yet"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)
