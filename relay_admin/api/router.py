"""relay-admin API router - aggregates all table routes."""

from fastapi import APIRouter

from relay_admin.api import announcements, nodes, rules, tenants, tunnels

# Main API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

api_router.include_router(nodes.router)
api_router.include_router(tunnels.router)
api_router.include_router(rules.router)
api_router.include_router(announcements.router)
api_router.include_router(tenants.router)
