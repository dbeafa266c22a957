"""Common API response schemas."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Consistent JSON envelope for API responses."""

    data: T


class DeleteResult(BaseModel):
    """Generic delete response payload."""

    id: int | str
    deleted: bool
