"""Response models of the dashboard API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from rdpanel.core.types import AuditEntry, ServerGroup


class AccountsResponse(BaseModel):
    """Accounts with masked API keys."""

    accounts: list[dict[str, Any]]
    active_account_id: str | None = None


class ServersResponse(BaseModel):
    """Cached server list with polling state."""

    servers: list[dict[str, Any]]
    last_refreshed: datetime | None = None
    error: str | None = None
    loading: bool = False
    failed_attempts: int = 0


class BatchResponse(BaseModel):
    action: str
    summary: str
    succeeded: list[str]
    failed: dict[str, dict[str, Any]]


class GroupsResponse(BaseModel):
    groups: list[ServerGroup]


class AuditResponse(BaseModel):
    entries: list[AuditEntry]


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None


def batch_response(result: Any) -> BatchResponse:
    """Build a BatchResponse from a BatchResult."""
    data = result.to_dict()
    return BatchResponse(summary=result.summary(), **data)
