"""Server API routes."""

from typing import Literal

from fastapi import APIRouter, Depends, Query, Request

from app.core.rate_limit import RATE_LIMITS, limiter
from app.core.services import Services, get_active_client, get_services
from app.models.responses import BatchResponse, ServersResponse, batch_response
from rdpanel.common.batch import stop_running_servers
from rdpanel.common.client import HostingClient
from rdpanel.common.servers import expiring_servers, filter_servers, sort_servers
from rdpanel.stores.servers import RefreshMode, ServersSnapshot

router = APIRouter(prefix="/servers", tags=["servers"])


def _servers_response(state: ServersSnapshot, servers=None) -> ServersResponse:
    servers = state.servers if servers is None else servers
    return ServersResponse(
        servers=[s.model_dump() for s in servers],
        last_refreshed=state.last_refreshed,
        error=state.error,
        loading=state.loading,
        failed_attempts=state.failed_attempts,
    )


@router.get("", response_model=ServersResponse)
@limiter.limit(RATE_LIMITS["default"])
async def list_servers(
    request: Request,
    sort: Literal["name", "distro", "expiry_date", "status"] = Query("name"),
    direction: Literal["asc", "desc"] = Query("asc"),
    distro: str | None = Query(None),
    status: str | None = Query(None, description="Comma-separated power states"),
    services: Services = Depends(get_services),
):
    """Servers from the polling cache, sorted and filtered."""
    state = services.servers.state
    power_states = [s.strip() for s in status.split(",") if s.strip()] if status else None
    servers = filter_servers(state.servers, distro=distro, power_states=power_states)
    return _servers_response(state, sort_servers(servers, sort, direction))


@router.post("/refresh", response_model=ServersResponse)
@limiter.limit(RATE_LIMITS["default"])
async def refresh_servers(request: Request, services: Services = Depends(get_services)):
    """Refresh the cache now (manual refresh)."""
    state = await services.servers.refresh_servers(RefreshMode.MANUAL)
    return _servers_response(state)


@router.get("/expiring", response_model=ServersResponse)
@limiter.limit(RATE_LIMITS["default"])
async def list_expiring_servers(
    request: Request,
    days: int = Query(7, ge=0, le=365),
    services: Services = Depends(get_services),
):
    """Cached servers expiring within the given number of days."""
    state = services.servers.state
    return _servers_response(state, expiring_servers(state.servers, days))


@router.post("/stop-all", response_model=BatchResponse)
@limiter.limit(RATE_LIMITS["default"])
async def stop_all_servers(
    request: Request,
    services: Services = Depends(get_services),
    client: HostingClient = Depends(get_active_client),
):
    """Stop every running server of the active account."""
    account = services.require_active_account()
    result = await stop_running_servers(client, services.audit, account_name=account.name)
    return batch_response(result)


@router.get("/{server_id}")
@limiter.limit(RATE_LIMITS["default"])
async def get_server(
    request: Request,
    server_id: str,
    client: HostingClient = Depends(get_active_client),
):
    server = await client.get_server(server_id)
    return server.model_dump()


@router.post("/{server_id}/power/{action}")
@limiter.limit(RATE_LIMITS["default"])
async def power_action(
    request: Request,
    server_id: str,
    action: str,
    client: HostingClient = Depends(get_active_client),
):
    """Start, stop or reset a server."""
    response = await client.power_action(server_id, action)
    return response.model_dump()
