"""Relay node API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from relay_admin.api.deps import get_sort_items, page_size_query
from relay_admin.core import StoreClient, get_store
from relay_admin.schemas.common import Page, SortItem
from relay_admin.schemas.node import (
    AvailablePortResponse,
    RelayNode,
    RelayNodeCreate,
    RelayNodeUpdate,
)
from relay_admin.services.ports import (
    NodeNotFoundError,
    PortAllocator,
    PortsExhaustedError,
    PortsNotConfiguredError,
)
from relay_admin.services.repository import TableRepository, node_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nodes", tags=["nodes"])


def get_node_repository(store: StoreClient = Depends(get_store)) -> TableRepository[RelayNode]:
    """Dependency to get the relay node repository."""
    return node_repository(store)


def _not_found(node_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Relay node {node_id} not found",
    )


@router.get("", response_model=Page[RelayNode])
async def list_nodes(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Depends(page_size_query),
    sort_by: list[SortItem] = Depends(get_sort_items),
    nodes: TableRepository[RelayNode] = Depends(get_node_repository),
) -> Page[RelayNode]:
    """List relay nodes with pagination."""
    return await nodes.fetch_page(page=page, page_size=page_size, sort_by=sort_by)


@router.post("", response_model=RelayNode, status_code=status.HTTP_201_CREATED)
async def create_node(
    data: RelayNodeCreate,
    nodes: TableRepository[RelayNode] = Depends(get_node_repository),
) -> RelayNode:
    """Create a relay node."""
    node = await nodes.create(data.model_dump())
    logger.info(f"Created relay node: {node.name} ({node.id})")
    return node


@router.get("/{node_id}", response_model=RelayNode)
async def get_node(
    node_id: int,
    nodes: TableRepository[RelayNode] = Depends(get_node_repository),
) -> RelayNode:
    """Get a relay node by ID."""
    node = await nodes.get(node_id)
    if node is None:
        raise _not_found(node_id)
    return node


@router.patch("/{node_id}", response_model=RelayNode)
async def update_node(
    node_id: int,
    data: RelayNodeUpdate,
    nodes: TableRepository[RelayNode] = Depends(get_node_repository),
) -> RelayNode:
    """Update a relay node.

    Narrowing ``ports`` does not move chains already listening outside the new
    ranges; they keep their port until their tunnel is edited.
    """
    values = data.model_dump(exclude_unset=True)
    if not values:
        node = await nodes.get(node_id)
        if node is None:
            raise _not_found(node_id)
        return node
    node = await nodes.update(node_id, values)
    logger.info(f"Updated relay node: {node.name} ({node.id})")
    return node


@router.delete("/{node_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_node(
    node_id: int,
    nodes: TableRepository[RelayNode] = Depends(get_node_repository),
) -> None:
    """Delete a relay node."""
    if not await nodes.delete(node_id):
        raise _not_found(node_id)
    logger.info(f"Deleted relay node {node_id}")


@router.get("/{node_id}/available-port", response_model=AvailablePortResponse)
async def get_available_port(
    node_id: int,
    store: StoreClient = Depends(get_store),
) -> AvailablePortResponse:
    """Report the port the next hop on this node would get. Nothing is written."""
    try:
        port = await PortAllocator(store).allocate(node_id)
    except NodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except (PortsNotConfiguredError, PortsExhaustedError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return AvailablePortResponse(node_id=node_id, port=port)
