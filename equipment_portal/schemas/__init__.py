from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


# Common response envelope
class ResponseBase(BaseModel):
    success: bool = True


class ErrorDetail(BaseModel):
    field: Optional[str] = None
    issue: Optional[str] = None


class ErrorResponse(ResponseBase):
    success: bool = False
    error: Dict[str, Any] = Field(
        ...,
        examples=[{
            "code": "ERROR_CODE",
            "message": "Human readable message",
            "details": {"field": "offending field", "issue": "what is wrong with it"},
        }],
    )


# Common pagination parameters
class PaginationParams(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    total: int = Field(..., description="Total matching records")
    page: int = Field(..., description="Current page")
    limit: int = Field(..., description="Page size")
    pages: int = Field(..., description="Total pages")

    @classmethod
    def build(cls, total: int, params: PaginationParams) -> "Pagination":
        pages = (total + params.limit - 1) // params.limit if total else 0
        return cls(total=total, page=params.page, limit=params.limit, pages=pages)
