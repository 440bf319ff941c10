"""Base schemas and common types for the MSP Reporting API."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class ReportingBaseModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM / dataclass mode
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
    )


class SuccessResponse(ReportingBaseModel):
    success: bool = True


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(ReportingBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(ReportingBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str | None = None


def error_body(error: str, message: str, details: list[ErrorDetail] | None = None) -> dict[str, Any]:
    return ErrorResponse(error=error, message=message, details=details or []).model_dump(
        by_alias=True
    )
