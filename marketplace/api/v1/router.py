"""API v1 router aggregation."""

from fastapi import APIRouter

from marketplace.api.v1 import disputes, purchases, wallets

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(purchases.router)
api_router.include_router(disputes.router)
api_router.include_router(wallets.router)
