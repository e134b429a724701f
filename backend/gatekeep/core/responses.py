"""Response envelope models.

Every success body is {"data": ...}; collections add {"meta": ...}; every
error body is {"error": {"code", "message", "details"}}.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Pagination metadata for collections.

    Attributes:
        total: Total number of items across all pages.
        page: Current page number (1-indexed).
        per_page: Number of items per page.
    """

    total: int
    page: int
    per_page: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources."""

    data: T


class ListResponse(BaseModel, Generic[T]):
    """Standard response envelope for collections."""

    data: list[T]
    meta: PaginationMeta


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "INVALID_TOKEN").
        message: Human-readable error message.
        details: Optional list of structured details.
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
