"""Common Pydantic schemas used across the API."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class HealthResponse(BaseSchema):
    """Health check response schema."""

    status: str
    version: str
    environment: str
    checks: dict[str, str]


class ErrorResponse(BaseSchema):
    """Error envelope for domain and unhandled errors."""

    error: str


class Pagination(BaseSchema):
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class DataResponse[T](BaseSchema):
    """Success envelope."""

    data: T
    message: str | None = None


class PaginatedResponse[T](BaseSchema):
    """Paginated success envelope."""

    data: list[T]
    pagination: Pagination
