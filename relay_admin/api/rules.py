"""Forwarding rule API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from relay_admin.api.deps import get_sort_items, page_size_query
from relay_admin.core import StoreClient, get_store
from relay_admin.schemas.common import Page, SortItem
from relay_admin.schemas.rule import RelayRule, RelayRuleCreate, RelayRuleUpdate
from relay_admin.services.repository import (
    TableRepository,
    rule_repository,
    tunnel_repository,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rules", tags=["rules"])


def get_rule_repository(store: StoreClient = Depends(get_store)) -> TableRepository[RelayRule]:
    """Dependency to get the rule repository."""
    return rule_repository(store)


async def _check_tunnel(store: StoreClient, tunnel_id: int | None) -> None:
    if tunnel_id is None:
        return
    if await tunnel_repository(store).get(tunnel_id) is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Tunnel {tunnel_id} not found",
        )


@router.get("", response_model=Page[RelayRule])
async def list_rules(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Depends(page_size_query),
    sort_by: list[SortItem] = Depends(get_sort_items),
    rules: TableRepository[RelayRule] = Depends(get_rule_repository),
) -> Page[RelayRule]:
    """List forwarding rules with pagination."""
    return await rules.fetch_page(page=page, page_size=page_size, sort_by=sort_by)


@router.post("", response_model=RelayRule, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: RelayRuleCreate,
    store: StoreClient = Depends(get_store),
    rules: TableRepository[RelayRule] = Depends(get_rule_repository),
) -> RelayRule:
    """Create a forwarding rule, optionally bound to a tunnel."""
    await _check_tunnel(store, data.tunnel_id)
    rule = await rules.create(data.model_dump())
    logger.info(f"Created rule: {rule.name} ({rule.id})")
    return rule


@router.get("/{rule_id}", response_model=RelayRule)
async def get_rule(
    rule_id: int,
    rules: TableRepository[RelayRule] = Depends(get_rule_repository),
) -> RelayRule:
    rule = await rules.get(rule_id)
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Rule {rule_id} not found")
    return rule


@router.patch("/{rule_id}", response_model=RelayRule)
async def update_rule(
    rule_id: int,
    data: RelayRuleUpdate,
    store: StoreClient = Depends(get_store),
    rules: TableRepository[RelayRule] = Depends(get_rule_repository),
) -> RelayRule:
    """Update a forwarding rule. Send ``tunnel_id: null`` to unbind it."""
    values = data.model_dump(exclude_unset=True)
    await _check_tunnel(store, values.get("tunnel_id"))
    if not values:
        return await get_rule(rule_id, rules)
    return await rules.update(rule_id, values)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: int,
    rules: TableRepository[RelayRule] = Depends(get_rule_repository),
) -> None:
    if not await rules.delete(rule_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Rule {rule_id} not found")
