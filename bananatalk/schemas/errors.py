"""Standard error envelope."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Body returned for every error that has no dedicated wire shape."""

    error: ErrorDetail
    request_id: str | None = None
    timestamp: datetime
