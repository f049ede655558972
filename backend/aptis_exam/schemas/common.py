"""
APTIS Exam Platform - Common Schemas
Response envelope shared by every endpoint
"""
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Successful response envelope."""
    success: bool = True
    message: str = "OK"
    data: T | None = None


class ErrorBody(BaseModel):
    """Stable error kind plus optional structured details."""
    kind: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error response envelope."""
    success: bool = False
    message: str
    error: ErrorBody


class BatchSummary(BaseModel):
    """Aggregate counts for per-item batch operations."""
    total: int
    successful: int
    failed: int
