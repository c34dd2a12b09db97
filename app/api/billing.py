"""Balance, catalog and ordering API routes."""

from fastapi import APIRouter, Depends, Request

from app.core.rate_limit import RATE_LIMITS, limiter
from app.core.services import get_active_client
from app.models.requests import OrderCreate
from rdpanel.common.client import HostingClient

router = APIRouter(tags=["billing"])


@router.get("/balance")
@limiter.limit(RATE_LIMITS["default"])
async def get_balance(request: Request, client: HostingClient = Depends(get_active_client)):
    """Balance of the active account."""
    return (await client.get_balance()).model_dump()


@router.get("/plans")
@limiter.limit(RATE_LIMITS["default"])
async def get_plans(request: Request, client: HostingClient = Depends(get_active_client)):
    return [p.model_dump() for p in await client.get_plans()]


@router.get("/regions")
@limiter.limit(RATE_LIMITS["default"])
async def get_regions(request: Request, client: HostingClient = Depends(get_active_client)):
    return [r.model_dump() for r in await client.get_regions()]


@router.get("/distros")
@limiter.limit(RATE_LIMITS["default"])
async def get_distros(request: Request, client: HostingClient = Depends(get_active_client)):
    return [d.model_dump() for d in await client.get_distros()]


@router.get("/stock")
@limiter.limit(RATE_LIMITS["default"])
async def get_stock(request: Request, client: HostingClient = Depends(get_active_client)):
    return [s.model_dump() for s in await client.get_stock()]


@router.post("/order", status_code=201)
@limiter.limit(RATE_LIMITS["write"])
async def order_server(
    request: Request,
    body: OrderCreate,
    client: HostingClient = Depends(get_active_client),
):
    """Order a new server for the active account."""
    response = await client.purchase_server(body.model_dump())
    return response.model_dump()
