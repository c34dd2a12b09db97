"""Audit log API routes."""

from fastapi import APIRouter, Depends, Query, Request

from app.core.rate_limit import RATE_LIMITS, limiter
from app.core.services import Services, get_services
from app.models.responses import AuditResponse

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=AuditResponse)
@limiter.limit(RATE_LIMITS["default"])
async def list_audit_entries(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    services: Services = Depends(get_services),
):
    """Most recent audit entries, newest first."""
    return AuditResponse(entries=services.audit.entries(limit=limit))
