"""Health check endpoint.

Public: it reveals only whether the hosted store's table API and auth API
answer. No session is needed and no row is read.
"""

import asyncio

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from relay_admin.core import settings
from relay_admin.core.store import StoreClient
from relay_admin.services.session import SessionClient

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    store: str
    auth: str


def _state(ok: bool) -> str:
    return "connected" if ok else "disconnected"


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Store or auth API unreachable"}},
)
async def health_check(response: Response) -> HealthResponse:
    """Report reachability of both store APIs; 503 unless both answer."""
    store_ok, auth_ok = await asyncio.gather(
        StoreClient.get_instance().ping(),
        SessionClient.get_instance().ping(),
    )
    healthy = store_ok and auth_ok
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=settings.app_version,
        store=_state(store_ok),
        auth=_state(auth_ok),
    )
