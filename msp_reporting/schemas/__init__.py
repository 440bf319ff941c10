"""MSP Reporting API Schemas.

Schemas are organized by area:
- base: base model, error responses
- reporting: clients, ticket stats, dashboard, sync
- inventory: NinjaOne devices, 20i domains
- profile: profile, login, public config
- admin: companies, users, domain assignments
"""

from .base import ErrorDetail, ErrorResponse, ReportingBaseModel, SuccessResponse

__all__ = [
    "ReportingBaseModel",
    "SuccessResponse",
    "ErrorDetail",
    "ErrorResponse",
]
