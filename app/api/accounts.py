"""Account management API routes."""

from fastapi import APIRouter, Depends, Request

from app.core.rate_limit import RATE_LIMITS, limiter
from app.core.services import Services, get_services
from app.models.requests import AccountCreate
from app.models.responses import AccountsResponse, SuccessResponse

router = APIRouter(prefix="/accounts", tags=["accounts"])


def _accounts_response(services: Services) -> AccountsResponse:
    active = services.accounts.active_account
    return AccountsResponse(
        accounts=[a.public_dict() for a in services.accounts.list_accounts()],
        active_account_id=active.id if active else None,
    )


@router.get("", response_model=AccountsResponse)
@limiter.limit(RATE_LIMITS["default"])
async def list_accounts(request: Request, services: Services = Depends(get_services)):
    """List accounts. API keys are masked."""
    return _accounts_response(services)


@router.post("", status_code=201)
@limiter.limit(RATE_LIMITS["write"])
async def add_account(
    request: Request,
    body: AccountCreate,
    services: Services = Depends(get_services),
):
    """Register an account after checking its API key with the provider."""
    account = await services.accounts.add_account(body.name, body.api_key)
    return account.public_dict()


@router.post("/check", response_model=AccountsResponse)
@limiter.limit(RATE_LIMITS["default"])
async def check_accounts(request: Request, services: Services = Depends(get_services)):
    """Re-check every account against the provider."""
    await services.accounts.check_all_account_statuses()
    return _accounts_response(services)


@router.delete("/{account_id}", response_model=SuccessResponse)
@limiter.limit(RATE_LIMITS["default"])
async def remove_account(
    request: Request,
    account_id: str,
    services: Services = Depends(get_services),
):
    services.accounts.remove_account(account_id)
    return SuccessResponse(message="Account removed")


@router.post("/{account_id}/activate")
@limiter.limit(RATE_LIMITS["default"])
async def activate_account(
    request: Request,
    account_id: str,
    services: Services = Depends(get_services),
):
    """Make an account the active one."""
    account = services.accounts.set_active_account(account_id)
    return account.public_dict()
