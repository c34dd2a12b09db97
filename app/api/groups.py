"""Server group API routes."""

from fastapi import APIRouter, Depends, Request

from app.core.rate_limit import RATE_LIMITS, limiter
from app.core.services import Services, get_active_client, get_services
from app.models.requests import GroupCreate, GroupServers, GroupUpdate
from app.models.responses import BatchResponse, GroupsResponse, SuccessResponse, batch_response
from rdpanel.common.batch import run_group_action
from rdpanel.common.client import HostingClient
from rdpanel.core.errors import GroupValidationError
from rdpanel.core.types import ServerGroup

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("", response_model=GroupsResponse)
@limiter.limit(RATE_LIMITS["default"])
async def list_groups(request: Request, services: Services = Depends(get_services)):
    return GroupsResponse(groups=services.groups.list_groups())


@router.post("", response_model=ServerGroup, status_code=201)
@limiter.limit(RATE_LIMITS["default"])
async def create_group(
    request: Request,
    body: GroupCreate,
    services: Services = Depends(get_services),
):
    return services.groups.add_group(body.name, body.description, body.color)


@router.patch("/{group_id}", response_model=ServerGroup)
@limiter.limit(RATE_LIMITS["default"])
async def update_group(
    request: Request,
    group_id: str,
    body: GroupUpdate,
    services: Services = Depends(get_services),
):
    return services.groups.update_group(
        group_id, name=body.name, description=body.description, color=body.color
    )


@router.delete("/{group_id}", response_model=SuccessResponse)
@limiter.limit(RATE_LIMITS["default"])
async def delete_group(
    request: Request,
    group_id: str,
    services: Services = Depends(get_services),
):
    services.groups.remove_group(group_id)
    return SuccessResponse(message="Group deleted")


@router.post("/{group_id}/servers", response_model=ServerGroup)
@limiter.limit(RATE_LIMITS["default"])
async def add_group_servers(
    request: Request,
    group_id: str,
    body: GroupServers,
    services: Services = Depends(get_services),
):
    return services.groups.add_servers_to_group(group_id, body.server_ids)


@router.delete("/{group_id}/servers", response_model=ServerGroup)
@limiter.limit(RATE_LIMITS["default"])
async def remove_group_servers(
    request: Request,
    group_id: str,
    body: GroupServers,
    services: Services = Depends(get_services),
):
    return services.groups.remove_servers_from_group(group_id, body.server_ids)


@router.post("/{group_id}/power/{action}", response_model=BatchResponse)
@limiter.limit(RATE_LIMITS["default"])
async def group_power_action(
    request: Request,
    group_id: str,
    action: str,
    services: Services = Depends(get_services),
    client: HostingClient = Depends(get_active_client),
):
    """Run a power action on every server of the group."""
    group = services.groups.get_group_by_id(group_id)
    if group is None:
        raise GroupValidationError("Group not found", code="INVALID_GROUP", status=404)
    result = await run_group_action(client, group, action, services.audit)
    return batch_response(result)
