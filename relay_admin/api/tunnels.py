"""Tunnel API endpoints.

Creating or editing a tunnel runs the chain planner: ports are allocated for
every hop and the egress, and the tunnel's chain rows are inserted, updated
or deleted to match the submitted topology.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from relay_admin.api.deps import get_sort_items, page_size_query
from relay_admin.core import StoreClient, get_store
from relay_admin.schemas.common import Page, SortItem
from relay_admin.schemas.tunnel import (
    Chain,
    Tunnel,
    TunnelCreate,
    TunnelResponse,
    TunnelUpdate,
)
from relay_admin.services.chain_planner import HopValidationError
from relay_admin.services.ports import NodeNotFoundError, PortAllocationError
from relay_admin.services.repository import tunnel_repository
from relay_admin.services.tunnel import TunnelService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tunnels", tags=["tunnels"])


def get_tunnel_service(store: StoreClient = Depends(get_store)) -> TunnelService:
    """Dependency to get tunnel service."""
    return TunnelService(store)


def _planning_error(e: Exception) -> HTTPException:
    """Map a chain planning failure to an HTTP error."""
    if isinstance(e, NodeNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, HopValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        # not configured / exhausted
        code = status.HTTP_409_CONFLICT
    return HTTPException(status_code=code, detail=str(e))


def _not_found(tunnel_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Tunnel {tunnel_id} not found",
    )


@router.get("", response_model=Page[Tunnel])
async def list_tunnels(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Depends(page_size_query),
    sort_by: list[SortItem] = Depends(get_sort_items),
    store: StoreClient = Depends(get_store),
) -> Page[Tunnel]:
    """List tunnels with pagination (without chains)."""
    return await tunnel_repository(store).fetch_page(
        page=page, page_size=page_size, sort_by=sort_by
    )


@router.post("", response_model=TunnelResponse, status_code=status.HTTP_201_CREATED)
async def create_tunnel(
    data: TunnelCreate,
    service: TunnelService = Depends(get_tunnel_service),
) -> TunnelResponse:
    """Create a tunnel and allocate its chain.

    Without ``egress_node_id`` the tunnel is single-node: one ingress row.
    """
    try:
        return await service.create(data)
    except (PortAllocationError, HopValidationError) as e:
        logger.warning(f"Tunnel creation rejected: {e}")
        raise _planning_error(e) from e


@router.get("/{tunnel_id}", response_model=TunnelResponse)
async def get_tunnel(
    tunnel_id: int,
    service: TunnelService = Depends(get_tunnel_service),
) -> TunnelResponse:
    """Get a tunnel with its chain rows."""
    tunnel = await service.get(tunnel_id)
    if tunnel is None:
        raise _not_found(tunnel_id)
    return tunnel


@router.get("/{tunnel_id}/chains", response_model=list[Chain])
async def list_tunnel_chains(
    tunnel_id: int,
    service: TunnelService = Depends(get_tunnel_service),
) -> list[Chain]:
    """Get only the chain rows of a tunnel."""
    tunnel = await service.get(tunnel_id)
    if tunnel is None:
        raise _not_found(tunnel_id)
    return tunnel.chains


@router.put("/{tunnel_id}", response_model=TunnelResponse)
async def update_tunnel(
    tunnel_id: int,
    data: TunnelUpdate,
    service: TunnelService = Depends(get_tunnel_service),
) -> TunnelResponse:
    """Edit a tunnel and reconcile its chain with the submitted topology.

    Rows updated in place before a later allocation failure stay updated.
    """
    try:
        tunnel = await service.update(tunnel_id, data)
    except (PortAllocationError, HopValidationError) as e:
        logger.warning(f"Tunnel {tunnel_id} update rejected: {e}")
        raise _planning_error(e) from e
    if tunnel is None:
        raise _not_found(tunnel_id)
    return tunnel


@router.delete("/{tunnel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tunnel(
    tunnel_id: int,
    service: TunnelService = Depends(get_tunnel_service),
) -> None:
    """Delete a tunnel and its chain rows."""
    if not await service.delete(tunnel_id):
        raise _not_found(tunnel_id)
